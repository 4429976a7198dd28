from decimal import Decimal, InvalidOperation
from typing import List, Optional
from fastapi import APIRouter, Depends, Form, HTTPException
from fastapi.encoders import jsonable_encoder
from flowbudget.db import get_store
from flowbudget.models.account import Account, AccountType
from flowbudget.models.household import Household, HouseholdMember
from flowbudget.models.user import User
from flowbudget.money import D, round2
from flowbudget.services.household_service import is_active_member
from flowbudget.services.split_ratio_service import calculate_split_ratio, get_split_settings, update_split_settings
from flowbudget.services.split_service import preview_expense_split
from flowbudget.store import LedgerStore, Put

router = APIRouter()


def require_household(store: LedgerStore, household_id: str) -> Household:
    household = store.get(Household, household_id)
    if not household:
        raise HTTPException(404, "Household not found")
    return household


def money_json(obj):
    """JSON-ready copy of ``obj`` with every money value as a two-place string."""
    return jsonable_encoder(obj, custom_encoder={Decimal: lambda d: str(round2(d))})


def parse_money(value, field: str = "amount"):
    try:
        amount = round2(D(value))
    except (InvalidOperation, ValueError):
        raise HTTPException(400, f"Invalid {field}")
    if not amount.is_finite():
        raise HTTPException(400, f"Invalid {field}")
    return amount


@router.post("/households/create")
def create_household(name: str = Form(...), user_name: str = Form(...), email: Optional[str] = Form(None),
                     payday_day: Optional[int] = Form(None), store: LedgerStore = Depends(get_store)):
    household = Household(name=name, payday_day=payday_day)
    user = User(name=user_name, email=email)
    member = HouseholdMember(household_id=household.id, user_id=user.id)
    store.write_batch([Put(household), Put(user), Put(member)])
    return {"household_id": household.id, "user_id": user.id}


@router.post("/household/{household_id}/members/add")
def add_member(household_id: str, name: Optional[str] = Form(None), email: Optional[str] = Form(None),
               payday_day: Optional[int] = Form(None), store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    user = store.first(User, email=email) if email else None
    ops = []
    if user is None:
        if not name:
            raise HTTPException(400, "Name or known email required")
        user = User(name=name, email=email)
        ops.append(Put(user))
    if not is_active_member(store, household_id, user.id):
        ops.append(Put(HouseholdMember(household_id=household_id, user_id=user.id, payday_day=payday_day)))
    store.write_batch(ops)
    return {"household_id": household_id, "user_id": user.id}


@router.post("/household/{household_id}/accounts/add")
def add_account(household_id: str, user_id: str = Form(...), name: str = Form(...), balance: str = Form("0"),
                account_type: AccountType = Form(AccountType.ASSET), is_excluded_from_budget: bool = Form(False),
                store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    if not is_active_member(store, household_id, user_id):
        raise HTTPException(400, "User is not a member of this household")
    account = Account(user_id=user_id, household_id=household_id, name=name,
                      balance=parse_money(balance, "balance"), account_type=account_type,
                      is_excluded_from_budget=is_excluded_from_budget)
    store.write_batch([Put(account)])
    return money_json(account)


@router.get("/household/{household_id}/split-ratio")
def split_ratio(household_id: str, store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    return money_json(calculate_split_ratio(store, household_id))


@router.get("/household/{household_id}/split-settings")
def split_settings(household_id: str, store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    return money_json(get_split_settings(store, household_id))


@router.post("/household/{household_id}/split-settings")
def change_split_settings(household_id: str, split_method: str = Form(...),
                          user_ids: Optional[List[str]] = Form(None), percentages: Optional[List[str]] = Form(None),
                          store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    ratios = None
    if user_ids:
        if not percentages or len(percentages) != len(user_ids):
            raise HTTPException(400, "One percentage per member required")
        ratios = {uid: float(parse_money(p, "percentage")) for uid, p in zip(user_ids, percentages)}
    update_split_settings(store, household_id, split_method, ratios)
    return money_json(get_split_settings(store, household_id))


@router.get("/household/{household_id}/split-preview")
def split_preview(household_id: str, amount: str, store: LedgerStore = Depends(get_store)):
    require_household(store, household_id)
    return money_json(preview_expense_split(store, household_id, parse_money(amount)))
