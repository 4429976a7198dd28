import datetime as dt
import logging
from decimal import Decimal

import pytest

from flowbudget.errors import (
    AccountNotFound,
    AccountOwnershipError,
    BudgetUpdateFailed,
    InvalidSettlement,
    LedgerUnavailable,
    NotAHouseholdMember,
    OverdrawNotAllowed,
    PartialSettlementInconsistency,
)
from flowbudget.models.account import Account
from flowbudget.models.budget import Budget
from flowbudget.models.settlement import Settlement, SettlementIntent, SettlementState
from flowbudget.models.split import SharedExpenseSplit
from flowbudget.models.transaction import Transaction
from flowbudget.services.balance_service import calculate_debt_balance
from flowbudget.services.budget_service import BudgetPeriod, LedgerBudgetAggregator
from flowbudget.services.settlement_service import SettlementExecutor, get_settlement_history
from flowbudget.services.split_service import mark_split_as_paid
from flowbudget.services.transaction_service import create_transaction
from flowbudget.store import Put

from conftest import PERIOD_START, TODAY

NOW = dt.datetime(2024, 3, 10, 12, 0)


def alice_pays(store, home, amount="100", budgets=None):
    return create_transaction(store, user_id=home.alice.id, household_id=home.id,
                              account_id=home.alice_account.id, category_id="groceries", type="expense",
                              amount=Decimal(amount), date=TODAY, payee="Market", is_shared=True,
                              budgets=budgets, today=TODAY)


def executor(store, **kwargs):
    kwargs.setdefault("budgets", LedgerBudgetAggregator(store, today=lambda: TODAY))
    return SettlementExecutor(store, clock=lambda: NOW, **kwargs)


def bob_settles(ex, home, amount="40", **kwargs):
    return ex.create_settlement(home.bob.id, home.alice.id, Decimal(amount), home.bob_account.id,
                                home.alice_account.id, home.id, **kwargs)


def balance(store, account):
    return store.get(Account, account.id).balance


def events(caplog, name):
    return [r for r in caplog.records if getattr(r, "event", None) == name]


def test_settle_up_moves_money_and_nets_splits(store, home):
    tx, splits = alice_pays(store, home)
    result = bob_settles(executor(store), home)

    assert result.amount == Decimal("40.00")
    assert result.splits_settled == 1
    assert result.new_payer_balance == Decimal("960.00")
    assert result.new_receiver_balance == Decimal("940.00")
    assert balance(store, home.bob_account) == Decimal("960.00")
    assert balance(store, home.alice_account) == Decimal("940.00")

    assert store.get(SharedExpenseSplit, splits[0].id).is_paid
    settled_tx = store.get(Transaction, tx.id)
    assert settled_tx.amount == Decimal("60.00")
    assert settled_tx.settled
    assert settled_tx.settlement_id == result.settlement_id

    assert calculate_debt_balance(store, home.id, home.alice.id, home.bob.id).is_settled
    assert store.get(SettlementIntent, result.settlement_id).state == SettlementState.COMPLETE
    record = store.get(Settlement, result.settlement_id)
    assert record.amount == Decimal("40.00")
    assert record.note.startswith("Debt settlement: 40.00")


def test_settling_twice_leaves_no_open_splits(store, home):
    alice_pays(store, home)
    ex = executor(store)
    bob_settles(ex, home)
    second = bob_settles(ex, home, amount="5")
    assert second.splits_settled == 0
    assert balance(store, home.bob_account) == Decimal("955.00")


def test_only_selected_splits_are_settled(store, home):
    _, first = alice_pays(store, home, "100")
    _, second = alice_pays(store, home, "50")
    result = bob_settles(executor(store), home, amount="20", selected_split_ids=[second[0].id])

    assert result.splits_settled == 1
    assert store.get(SharedExpenseSplit, second[0].id).is_paid
    assert not store.get(SharedExpenseSplit, first[0].id).is_paid
    assert calculate_debt_balance(store, home.id, home.bob.id, home.alice.id).amount == Decimal("40.00")


def test_category_books_payment_as_payer_expense(store, home):
    alice_pays(store, home)
    bob_settles(executor(store), home, category_id="debt", payee="Alice")

    booked = store.query(Transaction, user_id=home.bob.id, category_id="debt")
    assert len(booked) == 1
    assert booked[0].amount == Decimal("40.00")
    assert booked[0].date == TODAY
    assert not booked[0].is_shared
    # the payment expense does not move the balance a second time
    assert balance(store, home.bob_account) == Decimal("960.00")


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_amount_must_be_positive(store, home, amount):
    with pytest.raises(InvalidSettlement):
        bob_settles(executor(store), home, amount=amount)


def test_payer_and_receiver_must_differ(store, home):
    with pytest.raises(InvalidSettlement):
        executor(store).create_settlement(home.bob.id, home.bob.id, Decimal("10"), home.bob_account.id,
                                          home.bob_account.id, home.id)


def test_missing_account_writes_nothing(store, home):
    with pytest.raises(AccountNotFound):
        executor(store).create_settlement(home.bob.id, home.alice.id, Decimal("10"), "missing",
                                          home.alice_account.id, home.id)
    assert store.query(SettlementIntent) == []
    assert store.query(Settlement) == []


def test_accounts_must_belong_to_the_members(store, home):
    with pytest.raises(AccountOwnershipError):
        executor(store).create_settlement(home.bob.id, home.alice.id, Decimal("10"), home.alice_account.id,
                                          home.alice_account.id, home.id)
    assert balance(store, home.alice_account) == Decimal("1000.00")


def test_overdraw_allowed_when_configured(store, home, monkeypatch):
    monkeypatch.setattr("flowbudget.config.ALLOW_SETTLEMENT_OVERDRAW", True)
    alice_pays(store, home)
    result = bob_settles(executor(store), home, amount="1040")
    assert result.new_payer_balance == Decimal("-40.00")


def test_overdraw_can_be_refused(store, home):
    alice_pays(store, home)
    with pytest.raises(OverdrawNotAllowed):
        bob_settles(executor(store, allow_overdraw=False), home, amount="1040")
    assert balance(store, home.bob_account) == Decimal("1000.00")
    assert store.query(SettlementIntent) == []


def test_settlement_lowers_receiver_budget_spent(store, home, groceries_budget):
    budgets = LedgerBudgetAggregator(store, today=lambda: TODAY)
    alice_pays(store, home, budgets=budgets)
    assert store.get(Budget, groceries_budget.id).spent_amount == Decimal("100.00")

    bob_settles(executor(store, budgets=budgets), home)
    assert store.get(Budget, groceries_budget.id).spent_amount == Decimal("60.00")


class BrokenBudgets:
    def get_member_budget_period(self, user_id, household_id):
        return BudgetPeriod(start=PERIOD_START, end=TODAY)

    def get_spent_amount(self, user_id, category_id):
        return Decimal("100")

    def update_budget_spent_amount(self, user_id, category_id, period_start, new_spent_amount):
        raise BudgetUpdateFailed("budget store offline")


def test_budget_failure_does_not_fail_settlement(store, home, caplog):
    caplog.set_level(logging.INFO)
    alice_pays(store, home)
    result = bob_settles(executor(store, budgets=BrokenBudgets()), home)

    assert result.splits_settled == 1
    assert len(events(caplog, "settlement.budget_update_failed")) == 1
    assert events(caplog, "settlement.completed")
    assert store.get(SettlementIntent, result.settlement_id).state == SettlementState.COMPLETE


def fail_on_call(store, monkeypatch, call_number):
    real = store.write_batch
    calls = []

    def flaky(operations):
        calls.append(operations)
        if len(calls) == call_number:
            raise LedgerUnavailable("connection reset")
        return real(operations)

    monkeypatch.setattr(store, "write_batch", flaky)


def test_failed_transfer_marks_intent_failed(store, home, monkeypatch):
    alice_pays(store, home)
    # 1: pending intent, 2: transfer
    fail_on_call(store, monkeypatch, 2)
    with pytest.raises(LedgerUnavailable):
        bob_settles(executor(store), home)

    assert balance(store, home.bob_account) == Decimal("1000.00")
    intent = store.query(SettlementIntent)[0]
    assert intent.state == SettlementState.FAILED
    assert "connection reset" in intent.last_error
    assert store.query(Settlement) == []


def test_partial_failure_is_reported_and_resumable(store, home, monkeypatch, caplog):
    caplog.set_level(logging.INFO)
    _, splits = alice_pays(store, home)
    # 1: pending intent, 2: transfer, 3: split resolution
    fail_on_call(store, monkeypatch, 3)
    ex = executor(store)

    with pytest.raises(PartialSettlementInconsistency) as err:
        bob_settles(ex, home)
    settlement_id = err.value.settlement_id

    flagged = events(caplog, "settlement.partial_inconsistency")
    assert len(flagged) == 1 and flagged[0].levelno == logging.ERROR
    assert balance(store, home.bob_account) == Decimal("960.00")
    assert not store.get(SharedExpenseSplit, splits[0].id).is_paid
    assert [i.id for i in ex.find_incomplete_settlements(home.id)] == [settlement_id]
    assert store.get(SettlementIntent, settlement_id).state == SettlementState.TRANSFERRED

    monkeypatch.undo()
    intent = ex.resume_settlement(settlement_id)
    assert intent.state == SettlementState.COMPLETE
    assert intent.splits_settled == 1
    assert store.get(SharedExpenseSplit, splits[0].id).is_paid
    # resuming never moves money again
    assert balance(store, home.bob_account) == Decimal("960.00")
    assert ex.find_incomplete_settlements(home.id) == []
    assert events(caplog, "settlement.resumed")


def test_resume_abandoned_pending_intent(store, home, caplog):
    intent = SettlementIntent(household_id=home.id, payer_user_id=home.bob.id, receiver_user_id=home.alice.id,
                              amount=Decimal("10"), payer_account_id=home.bob_account.id,
                              receiver_account_id=home.alice_account.id)
    store.write_batch([Put(intent)])

    resumed = executor(store).resume_settlement(intent.id)
    assert resumed.state == SettlementState.FAILED
    assert store.get(SettlementIntent, intent.id).state == SettlementState.FAILED
    assert events(caplog, "settlement.abandoned")
    assert balance(store, home.bob_account) == Decimal("1000.00")


def test_resume_unknown_settlement(store):
    with pytest.raises(InvalidSettlement):
        executor(store).resume_settlement("missing")


def test_split_paid_mid_settlement_is_skipped(store, home, monkeypatch, caplog):
    _, splits = alice_pays(store, home)
    ex = executor(store)
    real = ex._matching_splits

    def racing(intent):
        found = real(intent)
        mark_split_as_paid(store, splits[0].id)
        return found

    monkeypatch.setattr(ex, "_matching_splits", racing)
    result = bob_settles(ex, home)

    assert result.splits_settled == 0
    assert events(caplog, "settlement.stale_read")


def test_settlement_history_newest_first(store, home):
    alice_pays(store, home)
    bob_settles(executor(store), home, amount="10")
    later = SettlementExecutor(store, clock=lambda: NOW + dt.timedelta(hours=1))
    later.create_settlement(home.alice.id, home.bob.id, Decimal("5"), home.alice_account.id,
                            home.bob_account.id, home.id)

    history = get_settlement_history(store, home.id)
    assert [(v.payer_name, v.receiver_name, v.settlement.amount) for v in history] == [
        ("Alice", "Bob", Decimal("5.00")),
        ("Bob", "Alice", Decimal("10.00")),
    ]


def test_alice_settles_bobs_expense(store, home):
    tx, splits = create_transaction(store, user_id=home.bob.id, household_id=home.id,
                                    account_id=home.bob_account.id, category_id="groceries", type="expense",
                                    amount=Decimal("100"), date=TODAY, is_shared=True,
                                    paid_by_user_id=home.bob.id, today=TODAY)
    assert [(s.ower_user_id, s.split_amount) for s in splits] == [(home.alice.id, Decimal("60.00"))]

    executor(store).create_settlement(home.alice.id, home.bob.id, Decimal("60"), home.alice_account.id,
                                      home.bob_account.id, home.id)
    assert balance(store, home.alice_account) == Decimal("940.00")
    assert balance(store, home.bob_account) == Decimal("960.00")
    assert store.get(SharedExpenseSplit, splits[0].id).is_paid
    assert store.get(Transaction, tx.id).amount == Decimal("40.00")


def test_resume_settles_only_the_splits_the_transfer_paid_for(store, home, monkeypatch):
    _, first = alice_pays(store, home)
    fail_on_call(store, monkeypatch, 3)
    ex = executor(store)
    with pytest.raises(PartialSettlementInconsistency) as err:
        bob_settles(ex, home)
    settlement_id = err.value.settlement_id
    assert store.get(SettlementIntent, settlement_id).matched_split_ids == [first[0].id]

    monkeypatch.undo()
    _, later = alice_pays(store, home, "500")
    intent = ex.resume_settlement(settlement_id)

    assert intent.splits_settled == 1
    assert store.get(SharedExpenseSplit, first[0].id).is_paid
    assert not store.get(SharedExpenseSplit, later[0].id).is_paid
    assert calculate_debt_balance(store, home.id, home.bob.id, home.alice.id).amount == Decimal("200.00")


def test_settlement_members_must_belong_to_the_household(store, home):
    with pytest.raises(NotAHouseholdMember):
        executor(store).create_settlement("stranger", home.alice.id, Decimal("10"), home.bob_account.id,
                                          home.alice_account.id, home.id)
    assert store.query(SettlementIntent) == []
    assert balance(store, home.bob_account) == Decimal("1000.00")
