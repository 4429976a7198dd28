# flowbudget/services/settlement_service.py
"""Settle up: move money between two members and net out their split ledger.

A settlement runs as a small saga over separate atomic batches:

    pending -> transferred -> splits_resolved -> complete

1. a ``SettlementIntent`` is written in ``pending``;
2. one batch moves both account balances, appends the immutable
   ``Settlement`` record, pins the ids of the splits being paid for and
   flips the intent to ``transferred``;
3. one batch marks the pinned splits paid, shrinks their source
   transactions by the settled amounts and flips the intent to
   ``splits_resolved``;
4. budget spent totals are adjusted best-effort and the intent is closed.

If step 3 fails after step 2 committed, the money has moved but the splits
are still open. That is logged as ``settlement.partial_inconsistency`` and
raised as ``PartialSettlementInconsistency``; ``resume_settlement`` picks the
intent up again from the state it recorded.

Nothing here locks against concurrent writers. Splits and transactions are
re-read right before the step 3 write and drift is logged as
``settlement.stale_read``, which narrows the race but does not close it.
"""
import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from flowbudget import config
from flowbudget.errors import (
    AccountNotFound,
    AccountOwnershipError,
    InvalidSettlement,
    LedgerError,
    NotAHouseholdMember,
    OverdrawNotAllowed,
    PartialSettlementInconsistency,
)
from flowbudget.models.account import Account
from flowbudget.models.settlement import Settlement, SettlementIntent, SettlementState
from flowbudget.models.split import SharedExpenseSplit
from flowbudget.models.transaction import Transaction, TransactionType
from flowbudget.money import D, ZERO, round2
from flowbudget.services.balance_service import household_shared_transactions, household_splits
from flowbudget.services.budget_service import BudgetAggregator, LedgerBudgetAggregator
from flowbudget.services.household_service import household_user_map, is_active_member
from flowbudget.services.split_service import get_splits_for_transaction
from flowbudget.store import LedgerStore, Put

log = logging.getLogger(__name__)

CLOSED_STATES = (SettlementState.COMPLETE, SettlementState.FAILED)

# shared transactions and matched splits as read when the transfer was built
Snapshot = Tuple[Dict[str, Transaction], Dict[str, SharedExpenseSplit]]


@dataclass
class SettlementResult:
    settlement_id: str
    amount: Decimal
    new_payer_balance: Decimal
    new_receiver_balance: Decimal
    splits_settled: int


@dataclass
class SettlementView:
    settlement: Settlement
    payer_name: str
    receiver_name: str


class SettlementExecutor:
    def __init__(self, store: LedgerStore, budgets: Optional[BudgetAggregator] = None,
                 logger: Optional[logging.Logger] = None, allow_overdraw: Optional[bool] = None,
                 clock=None):
        self.store = store
        self.budgets = budgets if budgets is not None else LedgerBudgetAggregator(store)
        self.log = logger or log
        # overdraw is allowed unless configured otherwise
        self.allow_overdraw = config.ALLOW_SETTLEMENT_OVERDRAW if allow_overdraw is None else allow_overdraw
        self._now = clock or dt.datetime.utcnow

    def _event(self, level: int, event: str, msg: str, *args, exc_info=None, **fields):
        self.log.log(level, msg, *args, exc_info=exc_info, extra={"event": event, **fields})

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def create_settlement(self, payer_user_id: str, receiver_user_id: str, amount,
                          payer_account_id: str, receiver_account_id: str, household_id: str,
                          category_id: Optional[str] = None,
                          selected_split_ids: Optional[Sequence[str]] = None,
                          payee: Optional[str] = None) -> SettlementResult:
        amount = round2(amount)
        if amount <= 0:
            raise InvalidSettlement("Settlement amount must be greater than 0")
        if payer_user_id == receiver_user_id:
            raise InvalidSettlement("Payer and receiver must be different members")
        for user_id in (payer_user_id, receiver_user_id):
            if not is_active_member(self.store, household_id, user_id):
                raise NotAHouseholdMember("Payer and receiver must both be members of this household")

        payer_account, receiver_account = self._fetch_accounts(
            payer_user_id, receiver_user_id, payer_account_id, receiver_account_id, household_id)

        new_payer_balance = round2(D(payer_account.balance) - amount)
        new_receiver_balance = round2(D(receiver_account.balance) + amount)
        if new_payer_balance < 0 and not self.allow_overdraw:
            raise OverdrawNotAllowed("Settlement would overdraw the payer account")

        now = self._now()
        intent = SettlementIntent(
            household_id=household_id,
            payer_user_id=payer_user_id,
            receiver_user_id=receiver_user_id,
            amount=amount,
            payer_account_id=payer_account_id,
            receiver_account_id=receiver_account_id,
            selected_split_ids=list(selected_split_ids) if selected_split_ids else None,
            state=SettlementState.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.store.write_batch([Put(intent)])
        self._event(logging.INFO, "settlement.started", "settlement %s started", intent.id,
                    settlement_id=intent.id)

        try:
            observed = self._transfer(intent, payer_account, receiver_account, new_payer_balance,
                                      new_receiver_balance, category_id, payee)
        except Exception as exc:
            self._mark_failed(intent, exc)
            raise

        self._finish(intent, observed)
        return SettlementResult(
            settlement_id=intent.id,
            amount=amount,
            new_payer_balance=new_payer_balance,
            new_receiver_balance=new_receiver_balance,
            splits_settled=intent.splits_settled,
        )

    def resume_settlement(self, settlement_id: str) -> SettlementIntent:
        intent = self.store.get(SettlementIntent, settlement_id)
        if intent is None:
            raise InvalidSettlement(f"Unknown settlement {settlement_id}")
        self._event(logging.INFO, "settlement.resumed", "resuming settlement %s from %s",
                    intent.id, intent.state.value, settlement_id=intent.id, state=intent.state.value)

        if intent.state == SettlementState.PENDING:
            # the Settlement record and the transferred state commit together
            if self.store.get(Settlement, intent.id) is None:
                intent.state = SettlementState.FAILED
                intent.last_error = "abandoned before funds moved"
                intent.updated_at = self._now()
                self.store.write_batch([Put(intent)])
                self._event(logging.WARNING, "settlement.abandoned",
                            "settlement %s never transferred funds, marked failed", intent.id,
                            settlement_id=intent.id)
                return intent
            intent.state = SettlementState.TRANSFERRED

        if intent.state == SettlementState.TRANSFERRED:
            self._finish(intent)
        elif intent.state == SettlementState.SPLITS_RESOLVED:
            # budgets were already adjusted once; only close the intent
            self._complete(intent)
        return intent

    def find_incomplete_settlements(self, household_id: str) -> List[SettlementIntent]:
        intents = self.store.query(SettlementIntent, household_id=household_id)
        return sorted((i for i in intents if i.state not in CLOSED_STATES), key=lambda i: i.created_at)

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------

    def _fetch_accounts(self, payer_user_id, receiver_user_id, payer_account_id,
                        receiver_account_id, household_id) -> Tuple[Account, Account]:
        payer_account = self.store.get(Account, payer_account_id)
        receiver_account = self.store.get(Account, receiver_account_id)
        if payer_account is None or receiver_account is None:
            raise AccountNotFound("Account not found")
        if payer_account.user_id != payer_user_id:
            raise AccountOwnershipError("Payer account does not belong to the payer")
        if receiver_account.user_id != receiver_user_id:
            raise AccountOwnershipError("Receiver account does not belong to the receiver")
        if payer_account.household_id != household_id or receiver_account.household_id != household_id:
            raise AccountOwnershipError("Accounts do not belong to this household")
        return payer_account, receiver_account

    def _transfer(self, intent, payer_account, receiver_account, new_payer_balance,
                  new_receiver_balance, category_id, payee) -> Snapshot:
        # the splits this transfer pays for are fixed here and travel with the intent
        transactions, matched = self._matching_splits(intent)
        intent.matched_split_ids = [s.id for s in matched]
        now = self._now()
        payer_account.balance = new_payer_balance
        receiver_account.balance = new_receiver_balance
        record = Settlement(
            id=intent.id,
            household_id=intent.household_id,
            payer_user_id=intent.payer_user_id,
            receiver_user_id=intent.receiver_user_id,
            amount=intent.amount,
            payer_account_id=intent.payer_account_id,
            receiver_account_id=intent.receiver_account_id,
            category_id=category_id,
            note=f"Debt settlement: {intent.amount:.2f} {config.CURRENCY}",
            settled_at=now,
        )
        intent.state = SettlementState.TRANSFERRED
        intent.updated_at = now
        ops = [Put(payer_account), Put(receiver_account), Put(record), Put(intent)]

        if category_id:
            # books the payment against the payer's own budget; the balance already moved above
            ops.append(Put(Transaction(
                user_id=intent.payer_user_id,
                household_id=intent.household_id,
                account_id=intent.payer_account_id,
                category_id=category_id,
                type=TransactionType.EXPENSE,
                amount=intent.amount,
                date=now.date(),
                note="Debt settlement - paid to household",
                payee=payee or "Debt Settlement",
                is_shared=False,
                paid_by_user_id=intent.payer_user_id,
            )))

        self.store.write_batch(ops)
        self._event(logging.INFO, "settlement.transferred", "settlement %s transfer committed",
                    intent.id, settlement_id=intent.id)
        return transactions, {s.id: s for s in matched}

    def _finish(self, intent: SettlementIntent, observed: Optional[Snapshot] = None):
        try:
            applied = self._resolve_splits(intent, observed)
        except Exception as exc:
            self._flag_partial(intent, exc)
            raise PartialSettlementInconsistency(intent.id) from exc
        self._backfill_budgets(intent, applied)
        self._complete(intent)

    def _matching_splits(self, intent: SettlementIntent) -> Tuple[Dict[str, Transaction], List[SharedExpenseSplit]]:
        transactions = household_shared_transactions(self.store, intent.household_id)
        # owed_to_user_id is the debt direction recorded when the split was made;
        # the transaction's paid_by_user_id may have been edited since
        splits = [
            s for s in household_splits(self.store, intent.household_id, (intent.payer_user_id,), transactions)
            if not s.is_paid and s.owed_to_user_id == intent.receiver_user_id
        ]
        if intent.selected_split_ids:
            selected = set(intent.selected_split_ids)
            splits = [s for s in splits if s.id in selected]
        return transactions, splits

    def _reread_splits(self, intent, observed: Dict[str, SharedExpenseSplit]) -> List[SharedExpenseSplit]:
        fresh = []
        for split_id in intent.matched_split_ids or []:
            current = self.store.get(SharedExpenseSplit, split_id)
            if current is None or current.is_paid:
                self._event(logging.WARNING, "settlement.stale_read",
                            "split %s was paid or removed while settlement %s ran", split_id, intent.id,
                            settlement_id=intent.id)
                continue
            seen = observed.get(split_id)
            if seen is not None and D(current.split_amount) != D(seen.split_amount):
                self._event(logging.WARNING, "settlement.stale_read",
                            "split %s changed amount while settlement %s ran", split_id, intent.id,
                            settlement_id=intent.id)
            fresh.append(current)
        return fresh

    def _resolve_splits(self, intent: SettlementIntent,
                        observed: Optional[Snapshot] = None) -> List[Tuple[Transaction, Decimal]]:
        # on resume there is no snapshot, only the ids pinned at transfer time
        observed_txs, observed_splits = observed or ({}, {})
        splits = self._reread_splits(intent, observed_splits)

        owed: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for split in splits:
            owed[split.transaction_id] += D(split.split_amount)

        now = self._now()
        ops = []
        applied: List[Tuple[Transaction, Decimal]] = []
        settled_splits: List[SharedExpenseSplit] = []
        for tx_id, reduction in owed.items():
            tx = self.store.get(Transaction, tx_id)
            tx_splits = [s for s in splits if s.transaction_id == tx_id]
            if tx is None:
                self._event(logging.WARNING, "settlement.stale_read",
                            "transaction %s vanished while settlement %s ran", tx_id, intent.id,
                            settlement_id=intent.id)
                continue
            seen = observed_txs.get(tx_id)
            if seen is not None and D(seen.amount) != D(tx.amount):
                self._event(logging.WARNING, "settlement.stale_read",
                            "transaction %s changed amount while settlement %s ran", tx_id, intent.id,
                            settlement_id=intent.id)

            original = D(tx.amount)
            tx.amount = max(ZERO, round2(original - reduction))
            paying = {s.id for s in tx_splits}
            all_splits = get_splits_for_transaction(self.store, tx_id)
            if all_splits and all(s.is_paid or s.id in paying for s in all_splits):
                tx.settled = True
                tx.settled_at = now
                tx.settlement_id = intent.id
            ops.append(Put(tx))
            applied.append((tx, original - tx.amount))
            settled_splits.extend(tx_splits)

        for split in settled_splits:
            split.is_paid = True
            ops.append(Put(split))

        if sum((D(s.split_amount) for s in settled_splits), ZERO) != D(intent.amount):
            self.log.debug("settlement %s amount differs from the splits it resolves", intent.id)

        intent.state = SettlementState.SPLITS_RESOLVED
        intent.splits_settled = len(settled_splits)
        intent.settled_transaction_ids = [tx.id for tx, _ in applied]
        intent.last_error = None
        intent.updated_at = now
        ops.append(Put(intent))

        self.store.write_batch(ops)
        self._event(logging.INFO, "settlement.splits_resolved",
                    "settlement %s resolved %d split(s) across %d transaction(s)",
                    intent.id, len(settled_splits), len(applied),
                    settlement_id=intent.id, splits_settled=len(settled_splits))
        return applied

    def _backfill_budgets(self, intent: SettlementIntent, applied: List[Tuple[Transaction, Decimal]]):
        for tx, reduction in applied:
            if tx.type != TransactionType.EXPENSE or reduction <= 0 or tx.is_excluded_from_budget:
                continue
            try:
                account = self.store.get(Account, tx.account_id)
                if account is not None and account.is_excluded_from_budget:
                    continue
                period = self.budgets.get_member_budget_period(tx.user_id, tx.household_id)
                if not period.contains(tx.date):
                    continue
                spent = self.budgets.get_spent_amount(tx.user_id, tx.category_id)
                if spent is None:
                    continue
                self.budgets.update_budget_spent_amount(
                    tx.user_id, tx.category_id, period.start, max(ZERO, round2(D(spent) - reduction)))
            except Exception as exc:
                # funds already moved, never fail the settlement from here
                self._event(logging.WARNING, "settlement.budget_update_failed",
                            "budget update for transaction %s failed (non-critical)", tx.id,
                            exc_info=exc, settlement_id=intent.id)

    def _complete(self, intent: SettlementIntent):
        intent.state = SettlementState.COMPLETE
        intent.updated_at = self._now()
        try:
            self.store.write_batch([Put(intent)])
        except LedgerError as exc:
            self._event(logging.WARNING, "settlement.close_failed",
                        "settlement %s finished but its intent could not be closed", intent.id,
                        exc_info=exc, settlement_id=intent.id)
            intent.state = SettlementState.SPLITS_RESOLVED
            return
        self._event(logging.INFO, "settlement.completed", "settlement %s complete", intent.id,
                    settlement_id=intent.id)

    def _mark_failed(self, intent: SettlementIntent, exc: Exception):
        intent.state = SettlementState.FAILED
        intent.last_error = str(exc) or type(exc).__name__
        intent.updated_at = self._now()
        try:
            self.store.write_batch([Put(intent)])
        except LedgerError:
            # left pending; resume_settlement marks it failed once it sees no Settlement record
            self.log.warning("could not mark settlement %s failed", intent.id)

    def _flag_partial(self, intent: SettlementIntent, exc: Exception):
        self._event(logging.ERROR, "settlement.partial_inconsistency",
                    "settlement %s moved funds but left splits unresolved; resume required", intent.id,
                    exc_info=exc, settlement_id=intent.id)
        intent.state = SettlementState.TRANSFERRED
        intent.splits_settled = 0
        intent.settled_transaction_ids = None
        intent.last_error = str(exc) or type(exc).__name__
        intent.updated_at = self._now()
        try:
            self.store.write_batch([Put(intent)])
        except LedgerError:
            self.log.error("could not record failure on settlement %s", intent.id)


def get_settlement_history(store: LedgerStore, household_id: str) -> List[SettlementView]:
    users = household_user_map(store, household_id)

    def name(user_id):
        user = users.get(user_id)
        return user.display_name if user else "Unknown"

    records = sorted(store.query(Settlement, household_id=household_id),
                     key=lambda s: s.settled_at, reverse=True)
    return [SettlementView(settlement=s, payer_name=name(s.payer_user_id),
                           receiver_name=name(s.receiver_user_id)) for s in records]
