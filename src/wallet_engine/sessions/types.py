"""Payment session value types.

A PaymentSession is a short-lived, client-side handle on one collection
attempt at the wallet gateway. It is never persisted; only the settlement it
leads to is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


class WalletProvider(str, Enum):
    """Supported mobile-money wallets."""

    WALLET_A = "WALLET_A"
    WALLET_B = "WALLET_B"


class PaymentMethod(str, Enum):
    """How a ledger entry was paid."""

    WALLET_A = "WALLET_A"
    WALLET_B = "WALLET_B"
    CASH = "CASH"

    @classmethod
    def for_provider(cls, provider: WalletProvider) -> PaymentMethod:
        return cls(provider.value)


class SessionStatus(str, Enum):
    """Session status values."""

    INITIATING = "INITIATING"
    AWAITING_ACTION = "AWAITING_ACTION"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.TIMED_OUT}
)


class SessionEvent(str, Enum):
    """Named events that move a session between statuses."""

    PRESENTED = "presented"  # new session, payment artifact available
    RESUMED = "resumed"  # gateway handed back an already-active session
    ACTIVITY = "activity"  # payer started acting on the request
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"  # gateway-side lapse
    TIMED_OUT = "timed_out"  # client-side ceiling reached


class InitiationKind(str, Enum):
    """Whether the initiator opened a session or reattached to one."""

    NEW = "new"
    REUSED = "reused"


@dataclass(frozen=True)
class Presentation:
    """What the payer scans or opens to authorize the payment.

    Tagged by provider; provider-specific link requirements are checked once,
    when the session is created (see sessions.wallets).
    """

    provider: WalletProvider
    qr_code: str
    deep_link_primary: str | None = None
    deep_link_fallback: str | None = None

    @property
    def action_links(self) -> list[str]:
        """Links in preference order: native app first, web fallback second."""
        return [link for link in (self.deep_link_primary, self.deep_link_fallback) if link]


@dataclass
class PaymentSession:
    """One collection attempt, owned by the flow that opened it.

    `status` is only ever changed through `SessionStateMachine.apply`.
    """

    session_id: str
    provider: WalletProvider
    invoice_ref: str
    amount: Decimal
    payer_phone: str | None = None
    status: SessionStatus = SessionStatus.INITIATING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    failure_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class InitiationOutcome:
    """Result of acquire-or-reuse at the gateway.

    `presentation` is None on the reuse path: the payer already holds the
    artifact from the earlier attempt.
    """

    kind: InitiationKind
    session: PaymentSession
    presentation: Presentation | None = None

    @property
    def reused(self) -> bool:
        return self.kind == InitiationKind.REUSED


@dataclass(frozen=True)
class PaymentCompletion:
    """A COMPLETED terminal event, forwarded to settlement."""

    session_id: str
    invoice_ref: str
    provider: WalletProvider
    amount: Decimal
    provider_reference: str | None
    payer_phone: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)
