# flowbudget/services/budget_service.py
"""Budget period and spent-total adapter used by the settlement and transaction services.

Only the narrow surface those callers need lives here: the member's current
payday period and a "set spent amount" update that keeps the per-user summary
in step. Allocation, rollover and recomputation-from-scratch belong elsewhere.
"""
import calendar
import datetime as dt
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from flowbudget import config
from flowbudget.errors import BudgetUpdateFailed, LedgerError
from flowbudget.models.budget import Budget, BudgetSummary
from flowbudget.models.household import Household, HouseholdMember, MemberStatus
from flowbudget.money import ZERO, round2
from flowbudget.store import LedgerStore, Put

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetPeriod:
    start: dt.date
    end: dt.date

    def contains(self, day: dt.date) -> bool:
        return self.start <= day <= self.end


class BudgetAggregator(Protocol):
    def get_member_budget_period(self, user_id: str, household_id: str) -> BudgetPeriod: ...

    def get_spent_amount(self, user_id: str, category_id: str) -> Optional[Decimal]: ...

    def update_budget_spent_amount(self, user_id: str, category_id: str,
                                   period_start: dt.date, new_spent_amount: Decimal) -> None: ...


def _payday_in(year: int, month: int, payday_day: int) -> dt.date:
    last = calendar.monthrange(year, month)[1]
    return dt.date(year, month, min(payday_day, last))


def _shift_month(year: int, month: int, delta: int):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def payday_period(payday_day: int, today: dt.date) -> BudgetPeriod:
    this_payday = _payday_in(today.year, today.month, payday_day)
    if today >= this_payday:
        start = this_payday
    else:
        start = _payday_in(*_shift_month(today.year, today.month, -1), payday_day)
    next_start = _payday_in(*_shift_month(start.year, start.month, 1), payday_day)
    return BudgetPeriod(start=start, end=next_start - dt.timedelta(days=1))


class LedgerBudgetAggregator:
    def __init__(self, store: LedgerStore, today=None):
        self.store = store
        self._today = today or dt.date.today

    def get_member_budget_period(self, user_id: str, household_id: str) -> BudgetPeriod:
        member = self.store.first(HouseholdMember, user_id=user_id, household_id=household_id,
                                  status=MemberStatus.ACTIVE)
        payday = member.payday_day if member else None
        if not payday:
            household = self.store.get(Household, household_id)
            payday = (household.payday_day if household else None) or config.DEFAULT_PAYDAY_DAY
        return payday_period(payday, self._today())

    def _active_budget(self, user_id: str, category_id: str) -> Optional[Budget]:
        return self.store.first(Budget, user_id=user_id, category_id=category_id, is_active=True)

    def get_spent_amount(self, user_id: str, category_id: str) -> Optional[Decimal]:
        budget = self._active_budget(user_id, category_id)
        return None if budget is None else budget.spent_amount

    def update_budget_spent_amount(self, user_id, category_id, period_start, new_spent_amount):
        budgets = self.store.query(Budget, user_id=user_id, is_active=True)
        target = next((b for b in budgets if b.category_id == category_id), None)
        if target is None:
            raise BudgetUpdateFailed(f"no active budget for category {category_id}")

        target.spent_amount = max(ZERO, round2(new_spent_amount))
        ops = [Put(target)]
        # stored period_start can lag behind a payday change, so fall back to the latest summary
        summaries = sorted(self.store.query(BudgetSummary, user_id=user_id),
                           key=lambda s: s.period_start, reverse=True)
        summary = next((s for s in summaries if s.period_start == period_start), None)
        if summary is None and summaries:
            summary = summaries[0]
        if summary is not None:
            summary.total_spent = round2(sum(
                (target.spent_amount if b.id == target.id else b.spent_amount for b in budgets), ZERO))
            ops.append(Put(summary))
        try:
            self.store.write_batch(ops)
        except LedgerError as exc:
            raise BudgetUpdateFailed("could not write budget spent amount") from exc
        log.debug("budget spent updated for one category")
