"""Domain event types for payment sessions and settlement.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata
- Serializable for logging and notification fan-out
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    SESSION = "session"
    SETTLEMENT = "settlement"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: str  # flow id, links every event of one payment attempt
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        correlation_id: str | None = None,
        source_service: str = "wallet_engine",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4().hex,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    category: ClassVar[EventCategory]

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return _serialize_dict(data)

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Session Events
# =============================================================================


@dataclass(frozen=True)
class SessionDomainEvent(DomainEvent):
    category: ClassVar[EventCategory] = EventCategory.SESSION


@dataclass(frozen=True)
class SessionOpened(SessionDomainEvent):
    """A gateway session was opened or reattached."""

    session_id: str
    provider: str
    invoice_ref: str
    amount: Decimal
    reused: bool


@dataclass(frozen=True)
class SessionStatusChanged(SessionDomainEvent):
    """A session moved from one status to another."""

    session_id: str
    previous_status: str
    new_status: str
    gateway_status: str | None = None


@dataclass(frozen=True)
class SessionCompleted(SessionDomainEvent):
    """The gateway confirmed payment for a session."""

    session_id: str
    invoice_ref: str
    amount: Decimal
    provider_reference: str | None


@dataclass(frozen=True)
class SessionFailed(SessionDomainEvent):
    """The gateway reported failure or expiry."""

    session_id: str
    reason: str
    expired: bool = False


@dataclass(frozen=True)
class SessionTimedOut(SessionDomainEvent):
    """The client-side ceiling elapsed before a terminal gateway status."""

    session_id: str
    elapsed_seconds: float
    queries_issued: int


@dataclass(frozen=True)
class SessionCanceled(SessionDomainEvent):
    """The flow was abandoned; polling stopped."""

    session_id: str


# =============================================================================
# Settlement Events
# =============================================================================


@dataclass(frozen=True)
class SettlementDomainEvent(DomainEvent):
    category: ClassVar[EventCategory] = EventCategory.SETTLEMENT


@dataclass(frozen=True)
class SettlementRecorded(SettlementDomainEvent):
    """A settlement was recorded (or an existing one returned)."""

    session_id: str
    invoice_ref: str
    amount: Decimal
    receipt_number: str
    new_amount_remaining: Decimal
    is_new: bool


@dataclass(frozen=True)
class SettlementDeclined(SettlementDomainEvent):
    """The backend refused a settlement.

    When the session already reported COMPLETED, the payer was charged but
    the ledger was not updated; `requires_reconciliation` flags that case.
    """

    session_id: str
    invoice_ref: str
    amount: Decimal
    reason: str
    requires_reconciliation: bool
