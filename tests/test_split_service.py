import datetime as dt
from decimal import Decimal

import pytest

from flowbudget.models.household import Household, HouseholdMember
from flowbudget.models.split import SharedExpenseSplit
from flowbudget.models.user import User
from flowbudget.services.split_service import (
    build_expense_splits,
    create_expense_splits,
    delete_expense_splits,
    get_splits_for_transaction,
    get_unpaid_splits_for_user,
    get_unpaid_splits_owed_to_user,
    mark_split_as_paid,
    payer_retained_share,
    preview_expense_split,
)
from flowbudget.store import Put


def test_payer_gets_no_split_row(store, home):
    splits = create_expense_splits(store, "tx-1", Decimal("100"), home.id, home.alice.id)
    assert len(splits) == 1
    split = splits[0]
    assert split.ower_user_id == home.bob.id
    assert split.owed_to_user_id == home.alice.id
    assert split.split_amount == Decimal("40.00")
    assert split.split_percentage == Decimal("40.00")
    assert not split.is_paid
    assert payer_retained_share(Decimal("100"), splits) == Decimal("60.00")


def test_split_amount_rounds_half_up(store, home):
    splits = build_expense_splits(store, "tx-2", Decimal("33.33"), home.id, home.alice.id)
    assert splits[0].split_amount == Decimal("13.33")
    assert payer_retained_share(Decimal("33.33"), splits) == Decimal("20.00")


def test_no_members_means_no_splits(store):
    assert create_expense_splits(store, "tx-3", Decimal("10"), "missing", "someone") == []


def test_unpaid_lookups_and_mark_paid(store, home):
    split = create_expense_splits(store, "tx-4", Decimal("50"), home.id, home.alice.id)[0]
    assert [s.id for s in get_unpaid_splits_for_user(store, home.bob.id)] == [split.id]
    assert [s.id for s in get_unpaid_splits_owed_to_user(store, home.alice.id)] == [split.id]

    mark_split_as_paid(store, split.id)
    assert store.get(SharedExpenseSplit, split.id).is_paid
    assert get_unpaid_splits_for_user(store, home.bob.id) == []
    assert get_unpaid_splits_owed_to_user(store, home.alice.id) == []


def test_mark_unknown_split(store):
    with pytest.raises(LookupError):
        mark_split_as_paid(store, "missing")


def test_delete_expense_splits(store, home):
    create_expense_splits(store, "tx-5", Decimal("20"), home.id, home.bob.id)
    assert delete_expense_splits(store, "tx-5") == 1
    assert get_splits_for_transaction(store, "tx-5") == []
    assert delete_expense_splits(store, "tx-5") == 0


def test_single_member_household_writes_nothing(store, monkeypatch):
    household = Household(name="Solo")
    user = User(name="Sam")
    store.write_batch([Put(household), Put(user),
                       Put(HouseholdMember(household_id=household.id, user_id=user.id))])
    writes = []
    monkeypatch.setattr(store, "write_batch", writes.append)

    assert create_expense_splits(store, "tx-6", Decimal("80"), household.id, user.id) == []
    assert writes == []


def test_zero_income_household_splits_evenly(store):
    household = Household(name="New")
    alice, bob = User(name="Alice"), User(name="Bob")
    store.write_batch([
        Put(household), Put(alice), Put(bob),
        Put(HouseholdMember(household_id=household.id, user_id=alice.id, joined_at=dt.datetime(2024, 1, 1))),
        Put(HouseholdMember(household_id=household.id, user_id=bob.id, joined_at=dt.datetime(2024, 1, 2))),
    ])
    splits = create_expense_splits(store, "tx-7", Decimal("50"), household.id, bob.id)
    assert [(s.ower_user_id, s.split_amount) for s in splits] == [(alice.id, Decimal("25.00"))]


@pytest.mark.parametrize("amount", ["100", "33.33", "0.01", "1234.57"])
def test_splits_plus_payer_share_conserve_amount(store, home, amount):
    splits = build_expense_splits(store, "tx-8", Decimal(amount), home.id, home.bob.id)
    assert sum(s.split_amount for s in splits) + payer_retained_share(Decimal(amount), splits) == Decimal(amount)


def test_preview_shares_sum_to_amount(store, home):
    shares = preview_expense_split(store, home.id, Decimal("99.99"))
    assert shares == {home.alice.id: Decimal("59.99"), home.bob.id: Decimal("40.00")}
    assert preview_expense_split(store, "missing", Decimal("10")) == {}
