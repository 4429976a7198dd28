# flowbudget/services/balance_service.py
import datetime as dt
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from flowbudget.models.split import SharedExpenseSplit
from flowbudget.models.transaction import Transaction
from flowbudget.money import D, ZERO, round2
from flowbudget.services.household_service import get_other_household_member, household_user_map
from flowbudget.models.user import User
from flowbudget.store import LedgerStore

log = logging.getLogger(__name__)


@dataclass
class DebtBalance:
    net_balance: Decimal  # > 0: user_a owes user_b, < 0: user_b owes user_a
    who_owes_user_id: str
    who_is_owed_user_id: str
    amount: Decimal

    @property
    def is_settled(self) -> bool:
        # direction fields carry no meaning once the amount is zero
        return self.amount == 0


@dataclass
class UnsettledExpense:
    split_id: str
    transaction_id: str
    date: dt.date
    category_id: str
    total_amount: Decimal
    your_share: Decimal  # > 0 you owe, < 0 you are owed
    paid_by: str
    paid_by_user_id: str
    description: str
    created_by_user_id: str
    payee: str


@dataclass
class HouseholdDebt:
    amount: Decimal  # > 0 you owe, < 0 you are owed
    other_member_id: str
    other_member_name: str
    other_member_email: str


@dataclass
class DirectionalDebt:
    you_owe: List[UnsettledExpense]
    you_are_owed: List[UnsettledExpense]
    total_you_owe: Decimal
    total_you_are_owed: Decimal
    net_debt: Decimal


def household_shared_transactions(store: LedgerStore, household_id: str) -> Dict[str, Transaction]:
    return {t.id: t for t in store.query(Transaction, household_id=household_id, is_shared=True)}


def household_splits(store: LedgerStore, household_id: str, user_ids: Iterable[str],
                     transactions: Optional[Dict[str, Transaction]] = None) -> List[SharedExpenseSplit]:
    """Splits owed by ``user_ids`` on this household's shared transactions.

    Splits carry no household id, so the scope comes from joining through the
    household's transactions.
    """
    if transactions is None:
        transactions = household_shared_transactions(store, household_id)
    found: Dict[str, SharedExpenseSplit] = {}
    for user_id in dict.fromkeys(u for u in user_ids if u):
        for split in store.query(SharedExpenseSplit, ower_user_id=user_id):
            if split.transaction_id in transactions:
                found[split.id] = split
    return list(found.values())


def calculate_debt_balance(store: LedgerStore, household_id: str, user_a: str, user_b: str) -> DebtBalance:
    net = ZERO
    for split in household_splits(store, household_id, (user_a, user_b)):
        if split.is_paid:
            continue
        if split.ower_user_id == user_a and split.owed_to_user_id == user_b:
            net += D(split.split_amount)
        elif split.ower_user_id == user_b and split.owed_to_user_id == user_a:
            net -= D(split.split_amount)

    net = round2(net)
    owes, owed = (user_b, user_a) if net < 0 else (user_a, user_b)
    return DebtBalance(net_balance=net, who_owes_user_id=owes, who_is_owed_user_id=owed, amount=abs(net))


def _describe(tx: Transaction) -> str:
    return tx.note or tx.payee or "Shared expense"


def get_unsettled_shared_expenses(store: LedgerStore, household_id: str, current_user_id: str) -> List[UnsettledExpense]:
    transactions = household_shared_transactions(store, household_id)
    if not transactions:
        return []
    other_user_id = get_other_household_member(store, current_user_id, household_id)
    splits = household_splits(store, household_id, (current_user_id, other_user_id), transactions)
    users = household_user_map(store, household_id)

    expenses = []
    for split in splits:
        if split.is_paid:
            continue
        owes = split.ower_user_id == current_user_id
        if not owes and split.owed_to_user_id != current_user_id:
            continue
        tx = transactions[split.transaction_id]
        payer: Optional[User] = users.get(tx.paid_by_user_id)
        share = D(split.split_amount)
        expenses.append(UnsettledExpense(
            split_id=split.id,
            transaction_id=tx.id,
            date=tx.date,
            category_id=tx.category_id,
            total_amount=D(tx.amount),
            your_share=share if owes else -share,
            paid_by=payer.display_name if payer else "Unknown",
            paid_by_user_id=tx.paid_by_user_id,
            description=_describe(tx),
            created_by_user_id=tx.user_id,
            payee=tx.payee or "Unknown",
        ))

    expenses.sort(key=lambda e: e.date, reverse=True)
    log.debug("%d unsettled expense(s) for user", len(expenses))
    return expenses


def calculate_household_debt(store: LedgerStore, household_id: str, current_user_id: str) -> Optional[HouseholdDebt]:
    other_user_id = get_other_household_member(store, current_user_id, household_id)
    if other_user_id is None:
        log.debug("no other member in household")
        return None
    other = store.get(User, other_user_id)
    total = sum((e.your_share for e in get_unsettled_shared_expenses(store, household_id, current_user_id)), ZERO)
    return HouseholdDebt(
        amount=round2(total),
        other_member_id=other_user_id,
        other_member_name=other.display_name if other else "Unknown",
        other_member_email=(other.email or "") if other else "",
    )


def get_unsettled_expenses_by_direction(store: LedgerStore, household_id: str, current_user_id: str) -> DirectionalDebt:
    expenses = get_unsettled_shared_expenses(store, household_id, current_user_id)
    you_owe = [e for e in expenses if e.your_share > 0]
    you_are_owed = [e for e in expenses if e.your_share < 0]
    total_owe = sum((e.your_share for e in you_owe), ZERO)
    total_owed = abs(sum((e.your_share for e in you_are_owed), ZERO))
    return DirectionalDebt(
        you_owe=you_owe,
        you_are_owed=you_are_owed,
        total_you_owe=round2(total_owe),
        total_you_are_owed=round2(total_owed),
        net_debt=round2(total_owe - total_owed),
    )
