# flowbudget/services/transaction_service.py
"""Create and delete transactions together with their balance and split effects.

The transaction row, the account balance change and any split rows are
written in one batch. Budget spent totals follow afterwards, best-effort.
"""
import datetime as dt
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from flowbudget.errors import (
    AccountNotFound,
    AccountOwnershipError,
    BudgetUpdateFailed,
    InvalidInput,
    LedgerError,
    NotAHouseholdMember,
    TransactionNotFound,
)
from flowbudget.models.account import Account
from flowbudget.models.split import SharedExpenseSplit
from flowbudget.models.transaction import Transaction, TransactionType
from flowbudget.money import D, ZERO, round2
from flowbudget.services.budget_service import BudgetAggregator, LedgerBudgetAggregator
from flowbudget.services.household_service import is_active_member
from flowbudget.services.split_service import build_expense_splits, delete_split_ops
from flowbudget.store import Delete, LedgerStore, Put

log = logging.getLogger(__name__)


def _require_member(store: LedgerStore, household_id: str, user_id: str):
    if not is_active_member(store, household_id, user_id):
        raise NotAHouseholdMember("User is not a member of this household")


def _is_future(day: dt.date, today: Optional[dt.date] = None) -> bool:
    return day > (today or dt.date.today())


def _balance_effect(tx_type: TransactionType, amount: Decimal) -> Decimal:
    return amount if TransactionType(tx_type) == TransactionType.INCOME else -amount


def _adjust_budget(budgets: BudgetAggregator, account: Optional[Account], tx: Transaction, delta: Decimal):
    if tx.type != TransactionType.EXPENSE or tx.is_excluded_from_budget:
        return
    if account is not None and account.is_excluded_from_budget:
        return
    try:
        period = budgets.get_member_budget_period(tx.user_id, tx.household_id)
        if not period.contains(tx.date):
            return
        spent = budgets.get_spent_amount(tx.user_id, tx.category_id)
        if spent is None:
            return
        budgets.update_budget_spent_amount(tx.user_id, tx.category_id, period.start,
                                           max(ZERO, round2(D(spent) + delta)))
    except (BudgetUpdateFailed, LedgerError) as exc:
        log.warning("failed to update budget spent amount: %s", exc)


def create_transaction(store: LedgerStore, *, user_id: str, household_id: str, account_id: str,
                       category_id: str, type, amount, date: dt.date, note: Optional[str] = None,
                       payee: Optional[str] = None, is_shared: bool = False,
                       paid_by_user_id: Optional[str] = None, is_excluded_from_budget: bool = False,
                       budgets: Optional[BudgetAggregator] = None,
                       today: Optional[dt.date] = None) -> Tuple[Transaction, List[SharedExpenseSplit]]:
    amount = round2(amount)
    if amount <= 0:
        raise InvalidInput("Amount must be greater than 0")
    try:
        tx_type = TransactionType(type)
    except ValueError:
        raise InvalidInput(f"Unknown transaction type {type!r}")

    account = store.get(Account, account_id)
    if account is None:
        raise AccountNotFound("Account not found")
    if account.household_id != household_id or account.user_id != user_id:
        raise AccountOwnershipError("Account does not belong to this member of the household")
    _require_member(store, household_id, user_id)
    if is_shared and paid_by_user_id:
        _require_member(store, household_id, paid_by_user_id)

    payee = payee.strip() if payee and payee.strip() else None
    tx = Transaction(
        user_id=user_id,
        household_id=household_id,
        account_id=account_id,
        category_id=category_id,
        type=tx_type,
        amount=amount,
        date=date,
        note=note or payee,
        payee=payee,
        is_shared=is_shared,
        paid_by_user_id=(paid_by_user_id or user_id) if is_shared else user_id,
        is_excluded_from_budget=is_excluded_from_budget,
    )

    future = _is_future(date, today)
    if not future:
        account.balance = round2(D(account.balance) + _balance_effect(tx_type, amount))

    splits = []
    if is_shared and tx_type == TransactionType.EXPENSE:
        splits = build_expense_splits(store, tx.id, amount, household_id, tx.paid_by_user_id)

    store.write_batch([Put(tx), Put(account)] + [Put(s) for s in splits])
    log.info("transaction created with %d split(s)", len(splits))

    if not future:
        _adjust_budget(budgets or LedgerBudgetAggregator(store), account, tx, amount)
    return tx, splits


def delete_transaction(store: LedgerStore, transaction_id: str, *,
                       budgets: Optional[BudgetAggregator] = None,
                       today: Optional[dt.date] = None) -> int:
    """Delete a transaction, its splits, and undo its balance effect. Returns splits deleted."""
    tx = store.get(Transaction, transaction_id)
    if tx is None:
        raise TransactionNotFound("Transaction not found")
    account = store.get(Account, tx.account_id)
    if account is None:
        raise AccountNotFound("Account not found")

    future = _is_future(tx.date, today)
    if not future:
        account.balance = round2(D(account.balance) - _balance_effect(tx.type, D(tx.amount)))

    split_ops = delete_split_ops(store, transaction_id)
    store.write_batch(split_ops + [Delete(Transaction, transaction_id), Put(account)])
    log.info("transaction deleted with %d split(s)", len(split_ops))

    if not future:
        _adjust_budget(budgets or LedgerBudgetAggregator(store), account, tx, -D(tx.amount))
    return len(split_ops)


def set_transaction_shared(store: LedgerStore, transaction_id: str, is_shared: bool,
                           paid_by_user_id: Optional[str] = None) -> List[SharedExpenseSplit]:
    """Convert between personal and shared, creating or dropping split rows in the same batch."""
    tx = store.get(Transaction, transaction_id)
    if tx is None:
        raise TransactionNotFound("Transaction not found")

    ops = delete_split_ops(store, transaction_id)
    splits = []
    if is_shared and paid_by_user_id:
        _require_member(store, tx.household_id, paid_by_user_id)
    tx.is_shared = is_shared
    if is_shared:
        tx.paid_by_user_id = paid_by_user_id or tx.paid_by_user_id or tx.user_id
        if tx.type == TransactionType.EXPENSE:
            splits = build_expense_splits(store, tx.id, tx.amount, tx.household_id, tx.paid_by_user_id)
    else:
        tx.paid_by_user_id = tx.user_id
    store.write_batch(ops + [Put(tx)] + [Put(s) for s in splits])
    return splits
