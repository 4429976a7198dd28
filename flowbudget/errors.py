"""Exceptions raised by the ledger store and the services."""


class LedgerError(Exception):
    """Base class for ledger store failures."""


class LedgerUnavailable(LedgerError):
    """The store could not be reached or rejected a batch. Safe to retry."""


class InvalidRecord(LedgerError, ValueError):
    """A record failed validation at the store boundary."""


class InvalidInput(ValueError):
    """Caller input the services refuse before touching the store."""


class NotAHouseholdMember(InvalidInput):
    pass


class NotFound(LookupError):
    """A referenced record does not exist."""


class HouseholdNotFound(NotFound):
    pass


class TransactionNotFound(NotFound):
    pass


class SplitNotFound(NotFound):
    pass


class SettlementError(Exception):
    """Base class for settlement failures surfaced to the caller."""


class InvalidSettlement(SettlementError, ValueError):
    pass


class AccountNotFound(SettlementError, NotFound):
    pass


class AccountOwnershipError(SettlementError):
    pass


class OverdrawNotAllowed(SettlementError):
    pass


class PartialSettlementInconsistency(SettlementError):
    """Money moved but the split ledger was not netted.

    The settlement intent stays in ``transferred`` and can be finished with
    ``SettlementExecutor.resume_settlement``.
    """

    def __init__(self, settlement_id, message=None):
        self.settlement_id = settlement_id
        super().__init__(message or f"settlement {settlement_id} transferred funds but left splits unresolved")


class BudgetUpdateFailed(Exception):
    """Soft failure while adjusting budget spent totals. Never fatal."""
