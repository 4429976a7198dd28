from typing import List, Optional
from fastapi import APIRouter, Depends, Form, HTTPException
from flowbudget.db import get_store
from flowbudget.models.split import SharedExpenseSplit
from flowbudget.models.transaction import Transaction
from flowbudget.routes.household import money_json, parse_money, require_household
from flowbudget.services.balance_service import (
    calculate_debt_balance,
    calculate_household_debt,
    get_unsettled_expenses_by_direction,
)
from flowbudget.services.household_service import is_active_member
from flowbudget.services.settlement_service import SettlementExecutor, get_settlement_history
from flowbudget.services.split_service import mark_split_as_paid
from flowbudget.store import LedgerStore

router = APIRouter()


def get_executor(store: LedgerStore = Depends(get_store)) -> SettlementExecutor:
    return SettlementExecutor(store)


def require_members(store: LedgerStore, household_id: str, *user_ids: str):
    for uid in user_ids:
        if not is_active_member(store, household_id, uid):
            raise HTTPException(400, "User is not a member of this household")


@router.get("/household/{household_id}/debt")
def debt(household_id: str, user_a: str, user_b: str, store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    require_members(store, household_id, user_a, user_b)
    balance = calculate_debt_balance(store, household_id, user_a, user_b)
    return money_json({
        "net_balance": balance.net_balance,
        "who_owes_user_id": balance.who_owes_user_id,
        "who_is_owed_user_id": balance.who_is_owed_user_id,
        "amount": balance.amount,
        "is_settled": balance.is_settled,
    })


@router.get("/household/{household_id}/unsettled")
def unsettled(household_id: str, user_id: str, store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    require_members(store, household_id, user_id)
    return money_json(get_unsettled_expenses_by_direction(store, household_id, user_id))


@router.post("/household/{household_id}/settle")
def settle(
    household_id: str,
    payer_user_id: str = Form(...),
    receiver_user_id: str = Form(...),
    amount: str = Form(...),
    payer_account_id: str = Form(...),
    receiver_account_id: str = Form(...),
    category_id: Optional[str] = Form(None),
    payee: Optional[str] = Form(None),
    split_ids: Optional[List[str]] = Form(None),
    store: LedgerStore = Depends(get_store),
    executor: SettlementExecutor = Depends(get_executor),
):
    require_household(store, household_id)
    require_members(store, household_id, payer_user_id, receiver_user_id)
    return money_json(executor.create_settlement(
        payer_user_id, receiver_user_id, parse_money(amount), payer_account_id, receiver_account_id,
        household_id, category_id=category_id, selected_split_ids=split_ids, payee=payee,
    ))


@router.get("/household/{household_id}/settlements")
def settlements(household_id: str, store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    return money_json([
        {**view.settlement.model_dump(), "payer_name": view.payer_name, "receiver_name": view.receiver_name}
        for view in get_settlement_history(store, household_id)
    ])


@router.get("/household/{household_id}/settlements/incomplete")
def incomplete_settlements(household_id: str, store: LedgerStore = Depends(get_store),
                           executor: SettlementExecutor = Depends(get_executor)):
    require_household(store, household_id)
    return money_json(executor.find_incomplete_settlements(household_id))


@router.post("/household/{household_id}/settlements/{settlement_id}/resume")
def resume(household_id: str, settlement_id: str, store: LedgerStore = Depends(get_store),
           executor: SettlementExecutor = Depends(get_executor)):
    require_household(store, household_id)
    intent = next((i for i in executor.find_incomplete_settlements(household_id) if i.id == settlement_id), None)
    if intent is None:
        raise HTTPException(404, "No incomplete settlement with that id")
    return money_json(executor.resume_settlement(settlement_id))


@router.get("/household/{household_id}/summary")
def debt_summary(household_id: str, user_id: str, store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    require_members(store, household_id, user_id)
    return money_json(calculate_household_debt(store, household_id, user_id))


@router.post("/household/{household_id}/splits/{split_id}/paid")
def split_paid(household_id: str, split_id: str, store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    split = store.get(SharedExpenseSplit, split_id)
    tx = store.get(Transaction, split.transaction_id) if split else None
    if tx is None or tx.household_id != household_id:
        raise HTTPException(404, "Split not found")
    return money_json(mark_split_as_paid(store, split_id))
