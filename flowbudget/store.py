"""Ledger store: equality queries and atomic batched writes over SQLModel tables.

Every ``write_batch`` call is one database transaction, so a batch either
fully commits or is fully rejected. Nothing spans two batches; callers that
need multi-step consistency track it themselves (see the settlement intent).
"""
import datetime as dt
import logging
from dataclasses import dataclass, field
from decimal import InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from flowbudget.errors import InvalidRecord, LedgerUnavailable
from flowbudget.models.account import Account, AccountType
from flowbudget.models.budget import Budget, BudgetSummary
from flowbudget.models.household import Household, HouseholdMember, MemberStatus, SplitMethod
from flowbudget.models.settlement import Settlement, SettlementIntent, SettlementState
from flowbudget.models.split import SharedExpenseSplit
from flowbudget.models.transaction import Transaction, TransactionType
from flowbudget.models.user import User
from flowbudget.money import round2

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rule:
    required: Tuple[str, ...] = ()
    money: Tuple[str, ...] = ()          # >= 0
    signed_money: Tuple[str, ...] = ()
    percentages: Tuple[str, ...] = ()
    enums: Dict[str, Type[Enum]] = field(default_factory=dict)
    dates: Tuple[str, ...] = ()


RULES: Dict[Type[SQLModel], Rule] = {
    User: Rule(required=("id",)),
    Household: Rule(required=("id",), enums={"split_method": SplitMethod}),
    HouseholdMember: Rule(required=("id", "household_id", "user_id"), enums={"status": MemberStatus}),
    Account: Rule(required=("id", "user_id", "household_id"), signed_money=("balance",),
                  enums={"account_type": AccountType}),
    Transaction: Rule(required=("id", "user_id", "household_id", "account_id", "category_id"),
                      money=("amount",), enums={"type": TransactionType}, dates=("date",)),
    SharedExpenseSplit: Rule(required=("id", "transaction_id", "ower_user_id", "owed_to_user_id"),
                             money=("split_amount",), percentages=("split_percentage",)),
    Settlement: Rule(required=("id", "household_id", "payer_user_id", "receiver_user_id",
                               "payer_account_id", "receiver_account_id"), money=("amount",)),
    SettlementIntent: Rule(required=("id", "household_id", "payer_user_id", "receiver_user_id",
                                     "payer_account_id", "receiver_account_id"),
                           money=("amount",), enums={"state": SettlementState}),
    Budget: Rule(required=("id", "user_id", "category_id"),
                 money=("allocated_amount", "spent_amount"), dates=("period_start",)),
    BudgetSummary: Rule(required=("id", "user_id"),
                        money=("total_income", "total_allocated", "total_spent"), dates=("period_start",)),
}


def validate_record(record: SQLModel) -> SQLModel:
    """Coerce and check a record in place. Raises InvalidRecord."""
    model = type(record)
    rule = RULES.get(model)
    if rule is None:
        raise InvalidRecord(f"{model.__name__} is not a ledger collection")
    name = model.__name__

    for attr in rule.required:
        if not getattr(record, attr, None):
            raise InvalidRecord(f"{name}.{attr} is required")

    for attr in rule.money + rule.signed_money + rule.percentages:
        value = getattr(record, attr)
        if value is None:
            raise InvalidRecord(f"{name}.{attr} is required")
        try:
            amount = round2(value)
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidRecord(f"{name}.{attr} is not a number: {value!r}")
        if attr in rule.money and amount < 0:
            raise InvalidRecord(f"{name}.{attr} must not be negative")
        if attr in rule.percentages and not (0 <= amount <= 100):
            raise InvalidRecord(f"{name}.{attr} must be between 0 and 100")
        setattr(record, attr, amount)

    for attr, enum_type in rule.enums.items():
        value = getattr(record, attr)
        try:
            setattr(record, attr, enum_type(value))
        except ValueError:
            raise InvalidRecord(f"{name}.{attr} has unknown value {value!r}")

    for attr in rule.dates:
        value = getattr(record, attr)
        # datetime is a date subclass but carries a time component
        if not isinstance(value, dt.date) or isinstance(value, dt.datetime):
            raise InvalidRecord(f"{name}.{attr} must be a calendar date, got {value!r}")
    return record


@dataclass(frozen=True)
class Put:
    """Create or replace ``record`` by id."""
    record: SQLModel


@dataclass(frozen=True)
class Delete:
    model: Type[SQLModel]
    record_id: str


Operation = Union[Put, Delete]


class LedgerStore:
    def __init__(self, engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def query(self, model: Type[SQLModel], **filters: Any) -> List[Any]:
        stmt = select(model)
        for attr, value in filters.items():
            stmt = stmt.where(getattr(model, attr) == value)
        try:
            with self._session() as s:
                return list(s.exec(stmt).all())
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"query on {model.__name__} failed") from exc

    def first(self, model: Type[SQLModel], **filters: Any) -> Optional[Any]:
        rows = self.query(model, **filters)
        return rows[0] if rows else None

    def get(self, model: Type[SQLModel], record_id: str) -> Optional[Any]:
        try:
            with self._session() as s:
                return s.get(model, record_id)
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"lookup of {model.__name__} {record_id} failed") from exc

    def write_batch(self, operations: Sequence[Operation]) -> None:
        operations = list(operations)
        if not operations:
            return
        for op in operations:
            if isinstance(op, Put):
                validate_record(op.record)
            elif not isinstance(op, Delete):
                raise InvalidRecord(f"unsupported batch operation {op!r}")

        try:
            with self._session() as s:
                for op in operations:
                    if isinstance(op, Put):
                        s.merge(op.record)
                    else:
                        existing = s.get(op.model, op.record_id)
                        if existing is not None:
                            s.delete(existing)
                s.commit()
        except SQLAlchemyError as exc:
            raise LedgerUnavailable("batch write rejected") from exc
        log.debug("committed batch of %d operations", len(operations))

