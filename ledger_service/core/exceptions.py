"""
Error kinds raised by the ledger engine.

Every error carries a ``detail`` message and a suggested ``status_code`` so
that an API layer can map it to a response without inspecting the message.
"""


class LedgerError(Exception):
    """Base class for all recoverable ledger errors."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidExpense(LedgerError):
    """Malformed amount/participants or a reference to an unknown member."""


class InvalidSettlement(LedgerError):
    """Settlement fields do not match its kind."""


class Forbidden(LedgerError):
    """Actor lacks authority for the requested mutation."""

    status_code = 403


class GroupSettled(Forbidden):
    """Group is closed for new balance-affecting operations."""


class InvalidTransition(LedgerError):
    """Status change from a terminal state or to an unreachable state."""

    status_code = 409


class UnknownMember(LedgerError):
    status_code = 404


class DuplicateMember(LedgerError):
    status_code = 409


class UnbalancedLedger(LedgerError, ValueError):
    """Balances do not sum to zero within the tolerance."""

    status_code = 500
