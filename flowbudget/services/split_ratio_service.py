# flowbudget/services/split_ratio_service.py
"""Who carries what share of a shared expense.

Ratios are never persisted: they are recomputed from the members' latest
declared incomes (or the household's manual ratios) every time a shared
expense is created or a split view is rendered.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from flowbudget.errors import HouseholdNotFound, InvalidInput
from flowbudget.models.budget import BudgetSummary
from flowbudget.models.household import Household, HouseholdMember, SplitMethod
from flowbudget.money import D, ZERO, absorb_remainder, even_percentages, proportional_percentages, round2
from flowbudget.services.household_service import active_members, household_user_map
from flowbudget.store import LedgerStore, Put

log = logging.getLogger(__name__)

RATIO_TOLERANCE = Decimal("0.01")


@dataclass
class SplitRatio:
    user_id: str
    percentage: Decimal
    income: Decimal


@dataclass
class MemberShare:
    user_id: str
    name: str
    percentage: Decimal


@dataclass
class SplitSettings:
    split_method: SplitMethod
    members: List[MemberShare]


def latest_income(store: LedgerStore, user_id: str) -> Decimal:
    summaries = store.query(BudgetSummary, user_id=user_id)
    if not summaries:
        return ZERO
    latest = max(summaries, key=lambda s: s.period_start)
    return D(latest.total_income)


def _manual_percentages(household: Optional[Household], members: List[HouseholdMember]) -> Optional[List[Decimal]]:
    if household is None or household.split_method != SplitMethod.MANUAL:
        return None
    ratios = household.manual_split_ratios or {}
    missing = [m.user_id for m in members if m.user_id not in ratios]
    if missing:
        log.warning("manual split ratios do not cover %d active member(s); using automatic split", len(missing))
        return None
    return absorb_remainder([round2(ratios[m.user_id]) for m in members])


def calculate_split_ratio(store: LedgerStore, household_id: str) -> List[SplitRatio]:
    members = active_members(store, household_id)
    if not members:
        log.debug("household has no active members, no split possible")
        return []

    incomes = [latest_income(store, m.user_id) for m in members]
    percentages = _manual_percentages(store.get(Household, household_id), members)
    if percentages is None:
        if sum(incomes, ZERO) == 0:
            percentages = even_percentages(len(members))
        else:
            percentages = proportional_percentages(incomes)

    return [SplitRatio(user_id=m.user_id, percentage=p, income=i)
            for m, p, i in zip(members, percentages, incomes)]


def get_split_settings(store: LedgerStore, household_id: str) -> Optional[SplitSettings]:
    household = store.get(Household, household_id)
    if household is None:
        return None
    users = household_user_map(store, household_id)
    ratios = calculate_split_ratio(store, household_id)
    return SplitSettings(
        split_method=SplitMethod(household.split_method),
        members=[MemberShare(user_id=r.user_id,
                             name=users[r.user_id].display_name if r.user_id in users else "Unknown",
                             percentage=r.percentage) for r in ratios],
    )


def update_split_settings(store: LedgerStore, household_id: str, split_method,
                          manual_ratios: Optional[Dict[str, float]] = None) -> Household:
    household = store.get(Household, household_id)
    if household is None:
        raise HouseholdNotFound(f"household {household_id} not found")
    try:
        split_method = SplitMethod(split_method)
    except ValueError:
        raise InvalidInput(f"Unknown split method {split_method!r}")

    if split_method == SplitMethod.MANUAL:
        if not manual_ratios:
            raise InvalidInput("Manual split needs a percentage for every member")
        total = sum((D(v) for v in manual_ratios.values()), ZERO)
        if abs(total - 100) > RATIO_TOLERANCE:
            raise InvalidInput("Percentages must total 100%")
        if any(D(v) < 0 for v in manual_ratios.values()):
            raise InvalidInput("Percentages must not be negative")
        household.manual_split_ratios = {k: float(round2(v)) for k, v in manual_ratios.items()}
    else:
        household.manual_split_ratios = None
    household.split_method = split_method

    store.write_batch([Put(household)])
    log.info("split settings updated", extra={"event": "split_settings.updated"})
    return household
