# flowbudget/services/split_service.py
"""Per-member debt records for shared expenses.

The payer never gets a split row: their share is whatever the transaction
amount keeps after the other members' splits.
"""
import logging
from decimal import Decimal
from typing import Dict, List

from flowbudget.errors import SplitNotFound
from flowbudget.models.split import SharedExpenseSplit
from flowbudget.money import D, ZERO, percentage_of, round2, split_amount
from flowbudget.services.split_ratio_service import calculate_split_ratio
from flowbudget.store import Delete, LedgerStore, Put

log = logging.getLogger(__name__)


def build_expense_splits(store: LedgerStore, transaction_id: str, amount, household_id: str,
                         paid_by_user_id: str) -> List[SharedExpenseSplit]:
    """Unsaved split rows for a shared expense, one per non-payer member."""
    ratios = calculate_split_ratio(store, household_id)
    if not ratios:
        log.debug("no split ratios for household, expense stays personal")
        return []
    return [
        SharedExpenseSplit(
            transaction_id=transaction_id,
            ower_user_id=r.user_id,
            owed_to_user_id=paid_by_user_id,
            split_amount=percentage_of(amount, r.percentage),
            split_percentage=r.percentage,
            is_paid=False,
        )
        for r in ratios
        if r.user_id != paid_by_user_id
    ]


def create_expense_splits(store: LedgerStore, transaction_id: str, amount, household_id: str,
                          paid_by_user_id: str) -> List[SharedExpenseSplit]:
    splits = build_expense_splits(store, transaction_id, amount, household_id, paid_by_user_id)
    if not splits:
        log.debug("payer is the only member, no split rows written")
        return []
    store.write_batch([Put(s) for s in splits])
    log.debug("created %d split(s) for transaction", len(splits))
    return splits


def payer_retained_share(amount, splits: List[SharedExpenseSplit]) -> Decimal:
    return round2(D(amount) - sum((D(s.split_amount) for s in splits), ZERO))


def get_splits_for_transaction(store: LedgerStore, transaction_id: str) -> List[SharedExpenseSplit]:
    return store.query(SharedExpenseSplit, transaction_id=transaction_id)


def delete_split_ops(store: LedgerStore, transaction_id: str) -> List[Delete]:
    return [Delete(SharedExpenseSplit, s.id) for s in get_splits_for_transaction(store, transaction_id)]


def delete_expense_splits(store: LedgerStore, transaction_id: str) -> int:
    ops = delete_split_ops(store, transaction_id)
    store.write_batch(ops)
    log.debug("deleted %d split(s)", len(ops))
    return len(ops)


def mark_split_as_paid(store: LedgerStore, split_id: str) -> SharedExpenseSplit:
    """Flag a single split paid. Settlements do this in bulk; this is for manual corrections."""
    split = store.get(SharedExpenseSplit, split_id)
    if split is None:
        raise SplitNotFound(f"split {split_id} not found")
    split.is_paid = True
    store.write_batch([Put(split)])
    return split


def get_unpaid_splits_for_user(store: LedgerStore, user_id: str) -> List[SharedExpenseSplit]:
    return store.query(SharedExpenseSplit, ower_user_id=user_id, is_paid=False)


def get_unpaid_splits_owed_to_user(store: LedgerStore, user_id: str) -> List[SharedExpenseSplit]:
    return store.query(SharedExpenseSplit, owed_to_user_id=user_id, is_paid=False)


def preview_expense_split(store: LedgerStore, household_id: str, amount) -> Dict[str, Decimal]:
    """Each active member's share of ``amount``, summing exactly to it."""
    ratios = calculate_split_ratio(store, household_id)
    return split_amount(amount, {r.user_id: r.percentage for r in ratios})
