import datetime as dt
from typing import Optional
from fastapi import APIRouter, Depends, Form, HTTPException
from flowbudget.db import get_store
from flowbudget.models.transaction import Transaction, TransactionType
from flowbudget.routes.household import money_json, parse_money, require_household
from flowbudget.services.split_service import get_splits_for_transaction
from flowbudget.services.transaction_service import create_transaction, delete_transaction, set_transaction_shared
from flowbudget.store import LedgerStore

router = APIRouter()


def require_transaction(store: LedgerStore, household_id: str, transaction_id: str) -> Transaction:
    tx = store.get(Transaction, transaction_id)
    if not tx or tx.household_id != household_id:
        raise HTTPException(404, "Transaction not found")
    return tx


@router.post("/household/{household_id}/transaction/add")
def add_transaction(
    household_id: str,
    user_id: str = Form(...),
    account_id: str = Form(...),
    category_id: str = Form(...),
    amount: str = Form(...),
    date: str = Form(...),
    type: TransactionType = Form(TransactionType.EXPENSE),
    payee: str = Form(""),
    note: Optional[str] = Form(None),
    is_shared: bool = Form(False),
    paid_by_user_id: Optional[str] = Form(None),
    is_excluded_from_budget: bool = Form(False),
    store: LedgerStore = Depends(get_store),
):
    require_household(store, household_id)
    try:
        day = dt.date.fromisoformat(date)
    except ValueError:
        raise HTTPException(400, "Invalid date format")
    tx, splits = create_transaction(
        store, user_id=user_id, household_id=household_id, account_id=account_id, category_id=category_id,
        type=type, amount=parse_money(amount), date=day, note=note, payee=payee, is_shared=is_shared,
        paid_by_user_id=paid_by_user_id, is_excluded_from_budget=is_excluded_from_budget,
    )
    return money_json({"transaction": tx, "splits": splits})


@router.get("/household/{household_id}/transaction/{transaction_id}/splits")
def transaction_splits(household_id: str, transaction_id: str, store: LedgerStore = Depends(get_store)):
    require_transaction(store, household_id, transaction_id)
    return money_json(get_splits_for_transaction(store, transaction_id))


@router.post("/household/{household_id}/transaction/{transaction_id}/share")
def share_transaction(household_id: str, transaction_id: str, is_shared: bool = Form(...),
                      paid_by_user_id: Optional[str] = Form(None), store: LedgerStore = Depends(get_store)):
    require_transaction(store, household_id, transaction_id)
    splits = set_transaction_shared(store, transaction_id, is_shared, paid_by_user_id)
    return money_json({"transaction_id": transaction_id, "splits": splits})


@router.post("/household/{household_id}/transaction/{transaction_id}/delete")
def remove_transaction(household_id: str, transaction_id: str, store: LedgerStore = Depends(get_store)):
    require_transaction(store, household_id, transaction_id)
    deleted = delete_transaction(store, transaction_id)
    return {"transaction_id": transaction_id, "splits_deleted": deleted}
