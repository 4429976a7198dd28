import datetime as dt
from dataclasses import dataclass
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from flowbudget.db import init_db
from flowbudget.models.account import Account
from flowbudget.models.budget import Budget, BudgetSummary
from flowbudget.models.household import Household, HouseholdMember
from flowbudget.models.user import User
from flowbudget.store import LedgerStore, Put

TODAY = dt.date(2024, 3, 10)
PERIOD_START = dt.date(2024, 2, 25)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    return engine


@pytest.fixture
def store(engine):
    return LedgerStore(engine)


@dataclass
class Home:
    household: Household
    alice: User
    bob: User
    alice_account: Account
    bob_account: Account

    @property
    def id(self):
        return self.household.id


@pytest.fixture
def home(store):
    """Alice earns 6000 and Bob 4000, so shared costs split 60/40."""
    household = Household(name="Flat", payday_day=25)
    alice = User(name="Alice", email="alice@example.com")
    bob = User(name="Bob", email="bob@example.com")
    alice_account = Account(user_id=alice.id, household_id=household.id, name="Alice checking",
                            balance=Decimal("1000.00"))
    bob_account = Account(user_id=bob.id, household_id=household.id, name="Bob checking",
                          balance=Decimal("1000.00"))
    store.write_batch([
        Put(household), Put(alice), Put(bob), Put(alice_account), Put(bob_account),
        Put(HouseholdMember(household_id=household.id, user_id=alice.id,
                            joined_at=dt.datetime(2024, 1, 1, 9, 0))),
        Put(HouseholdMember(household_id=household.id, user_id=bob.id,
                            joined_at=dt.datetime(2024, 1, 2, 9, 0))),
        Put(BudgetSummary(user_id=alice.id, household_id=household.id, period_start=PERIOD_START,
                          total_income=Decimal("6000"))),
        Put(BudgetSummary(user_id=bob.id, household_id=household.id, period_start=PERIOD_START,
                          total_income=Decimal("4000"))),
    ])
    return Home(household, alice, bob, alice_account, bob_account)


@pytest.fixture
def groceries_budget(store, home):
    budget = Budget(user_id=home.alice.id, household_id=home.id, category_id="groceries",
                    period_start=PERIOD_START, allocated_amount=Decimal("500"), spent_amount=Decimal("0"))
    store.write_batch([Put(budget)])
    return budget
