"""Error taxonomy for wallet payment sessions and settlement."""

from __future__ import annotations

from decimal import Decimal


class WalletEngineError(Exception):
    """Base class for all wallet engine errors."""


class SessionCreationFailed(WalletEngineError):
    """Raised when a payment session cannot be opened.

    Covers gateway transport failures as well as requests rejected before or
    by the gateway (invalid amount, invalid phone, invalid invoice state).
    Never retried automatically; the caller re-triggers the flow.
    """

    def __init__(self, message: str, *, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PollingTransportError(WalletEngineError):
    """Transient failure while querying a session's status."""

    def __init__(self, session_id: str, message: str):
        self.session_id = session_id
        super().__init__(f"Status query for session {session_id} failed: {message}")


class SessionExpired(WalletEngineError):
    """The gateway reported that the session lapsed on its side."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} expired at the gateway")


class SettlementRejected(WalletEngineError):
    """The backend refused to record a settlement.

    Business-rule violation: never retried, since replaying a rejected
    settlement risks inconsistent crediting.
    """

    def __init__(self, reason: str, *, session_id: str, invoice_ref: str, amount: Decimal):
        self.reason = reason
        self.session_id = session_id
        self.invoice_ref = invoice_ref
        self.amount = amount
        super().__init__(reason)


class InvalidTransitionError(WalletEngineError):
    """Raised when a session event is not allowed from the current status."""

    def __init__(self, from_status: str, event: str, reason: str | None = None):
        self.from_status = from_status
        self.event = event
        self.reason = reason
        msg = f"Event '{event}' is not allowed from status '{from_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class RetryNotAllowed(WalletEngineError):
    """Raised when retry is requested outside a retryable state."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Retry is not allowed while the flow is '{state}'")


class LedgerEntryImmutable(WalletEngineError):
    """Raised when something tries to update or delete a ledger entry."""

    def __init__(self, receipt_number: str, operation: str):
        self.receipt_number = receipt_number
        self.operation = operation
        super().__init__(f"Ledger entry {receipt_number} is immutable ({operation} refused)")
