"""Tests for domain events and the event emitter.

Tests verify:
1. Event types are properly structured and serializable
2. Event emitter routes to correct handlers
3. Handler errors are isolated
4. Async handlers are awaited
"""

import json
from decimal import Decimal

from wallet_engine.events import (
    AsyncEventEmitter,
    EventCategory,
    EventMetadata,
    SessionDomainEvent,
    SessionOpened,
    SessionTimedOut,
    SettlementDomainEvent,
    SettlementRecorded,
)
from wallet_engine.sessions import SessionEvent


def _opened() -> SessionOpened:
    return SessionOpened(
        metadata=EventMetadata.create(correlation_id="flow-1"),
        session_id="S1",
        provider="WALLET_A",
        invoice_ref="INV-1",
        amount=Decimal("5000"),
        reused=False,
    )


def _recorded() -> SettlementRecorded:
    return SettlementRecorded(
        metadata=EventMetadata.create(),
        session_id="S1",
        invoice_ref="INV-1",
        amount=Decimal("5000"),
        receipt_number="REC-INV-1-001",
        new_amount_remaining=Decimal("0"),
        is_new=True,
    )


class TestEventTypes:
    """Event structure and serialization."""

    def test_metadata_defaults(self):
        meta = EventMetadata.create()

        assert meta.event_id is not None
        assert meta.timestamp.tzinfo is not None
        assert meta.correlation_id
        assert meta.source_service == "wallet_engine"
        assert meta.version == 1

    def test_to_dict_serializes_values(self):
        data = _opened().to_dict()

        assert data["event_type"] == "SessionOpened"
        assert data["amount"] == "5000"
        assert data["metadata"]["correlation_id"] == "flow-1"
        assert isinstance(data["metadata"]["event_id"], str)

    def test_to_json_round_trips_through_json(self):
        parsed = json.loads(_recorded().to_json())
        assert parsed["receipt_number"] == "REC-INV-1-001"
        assert parsed["event_type"] == "SettlementRecorded"

    def test_categories(self):
        assert _opened().category == EventCategory.SESSION
        assert _recorded().category == EventCategory.SETTLEMENT

    def test_category_bases_stay_apart_from_session_events(self):
        assert isinstance(_opened(), SessionDomainEvent)
        assert isinstance(_recorded(), SettlementDomainEvent)
        assert not isinstance(_opened(), SettlementDomainEvent)
        assert SessionDomainEvent is not SessionEvent
        assert issubclass(SessionEvent, str)


class TestAsyncEventEmitter:
    """Routing and isolation."""

    async def test_routes_by_type(self):
        emitter = AsyncEventEmitter()
        seen = []
        emitter.on(SessionOpened, seen.append)

        await emitter.emit(_opened())
        await emitter.emit(_recorded())

        assert [e.event_type for e in seen] == ["SessionOpened"]

    async def test_routes_by_category_and_list_of_types(self):
        emitter = AsyncEventEmitter()
        settlement, session = [], []
        emitter.on_category(EventCategory.SETTLEMENT, settlement.append)
        emitter.on([SessionOpened, SessionTimedOut], session.append)

        await emitter.emit(_opened())
        await emitter.emit(_recorded())

        assert len(settlement) == 1
        assert len(session) == 1

    async def test_handler_errors_are_isolated(self, caplog):
        emitter = AsyncEventEmitter()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        async def broken_async(event):
            raise ValueError("async boom")

        emitter.on_all(broken)
        emitter.on_all(broken_async)
        emitter.on_all(seen.append)

        errors = await emitter.emit(_opened())

        assert len(seen) == 1
        assert sorted(type(e).__name__ for e in errors) == ["RuntimeError", "ValueError"]
        assert "failed for event SessionOpened" in caplog.text

    async def test_async_handlers_are_awaited(self):
        emitter = AsyncEventEmitter()
        seen = []

        async def handler(event):
            seen.append(event.session_id)

        emitter.on(SessionOpened, handler)
        await emitter.emit(_opened())

        assert seen == ["S1"]

    async def test_off(self):
        emitter = AsyncEventEmitter()
        seen = []
        handler = seen.append
        emitter.on_all(handler)
        emitter.off(handler)

        await emitter.emit(_opened())

        assert seen == []
