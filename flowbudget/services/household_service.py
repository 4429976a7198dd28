# flowbudget/services/household_service.py
from typing import Dict, List, Optional
from flowbudget.models.household import HouseholdMember, MemberStatus
from flowbudget.models.user import User
from flowbudget.store import LedgerStore


def active_members(store: LedgerStore, household_id: str) -> List[HouseholdMember]:
    members = store.query(HouseholdMember, household_id=household_id, status=MemberStatus.ACTIVE)
    # join order decides who absorbs rounding remainders
    return sorted(members, key=lambda m: (m.joined_at, m.id))


def is_active_member(store: LedgerStore, household_id: str, user_id: str) -> bool:
    return store.first(HouseholdMember, household_id=household_id, user_id=user_id,
                       status=MemberStatus.ACTIVE) is not None


def get_user_household_id(store: LedgerStore, user_id: str) -> Optional[str]:
    member = store.first(HouseholdMember, user_id=user_id, status=MemberStatus.ACTIVE)
    return member.household_id if member else None


def get_other_household_member(store: LedgerStore, user_id: str, household_id: str) -> Optional[str]:
    for m in active_members(store, household_id):
        if m.user_id != user_id:
            return m.user_id
    return None


def household_user_map(store: LedgerStore, household_id: str) -> Dict[str, User]:
    # users are fetched one by one through membership, never as a full table scan
    users = {}
    for m in active_members(store, household_id):
        user = store.get(User, m.user_id)
        if user:
            users[user.id] = user
    return users
