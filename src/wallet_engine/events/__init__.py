"""Domain events for payment sessions and settlement."""

from wallet_engine.events.emitter import AsyncEventEmitter, EventHandler
from wallet_engine.events.types import (
    DomainEvent,
    EventCategory,
    EventMetadata,
    SessionCanceled,
    SessionCompleted,
    SessionDomainEvent,
    SessionFailed,
    SessionOpened,
    SessionStatusChanged,
    SessionTimedOut,
    SettlementDeclined,
    SettlementDomainEvent,
    SettlementRecorded,
)

__all__ = [
    "AsyncEventEmitter",
    "EventHandler",
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    "SessionCanceled",
    "SessionCompleted",
    "SessionDomainEvent",
    "SessionFailed",
    "SessionOpened",
    "SessionStatusChanged",
    "SessionTimedOut",
    "SettlementDeclined",
    "SettlementDomainEvent",
    "SettlementRecorded",
]
