"""Pytest fixtures for wallet engine tests."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from wallet_engine.config import FlowConfig, Settings
from wallet_engine.database import create_schema, make_session_factory
from wallet_engine.events import AsyncEventEmitter, DomainEvent
from wallet_engine.gateway import StubWalletGateway
from wallet_engine.settlement import SettlementRecorder, SqlSettlementBackend

# One shared in-memory SQLite connection per test (StaticPool), so every
# session of the test sees the same database.
TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Sleep that advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def flow_config() -> FlowConfig:
    """Poll every second, give up after two minutes."""
    return FlowConfig(poll_interval_seconds=1.0, timeout_seconds=120.0)


@pytest.fixture
def gateway() -> StubWalletGateway:
    return StubWalletGateway()


@pytest.fixture
def emitter() -> AsyncEventEmitter:
    return AsyncEventEmitter()


@pytest.fixture
def events(emitter: AsyncEventEmitter) -> list[DomainEvent]:
    """Every event emitted during the test, in order."""
    captured: list[DomainEvent] = []
    emitter.on_all(captured.append)
    return captured


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with the schema in place."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    return make_session_factory(engine)


@pytest.fixture
def backend(session_factory) -> SqlSettlementBackend:
    return SqlSettlementBackend(session_factory)


@pytest.fixture
def recorder(backend: SqlSettlementBackend, emitter: AsyncEventEmitter) -> SettlementRecorder:
    return SettlementRecorder(backend, emitter=emitter)


@pytest_asyncio.fixture
async def invoice(backend: SqlSettlementBackend):
    """An UNPAID invoice of 10000."""
    return await backend.create_invoice(
        "INV-1001",
        Decimal("10000"),
        customer_name="Boutique Ndiaye",
        line_items=[{"label": "Consultation", "quantity": 1, "unit_price": "10000"}],
    )


@pytest.fixture
def make_settings():
    """Build Settings without touching the environment."""

    def _make(**overrides) -> Settings:
        values = {
            "database_url": TEST_DATABASE_URL,
            "gateway_mode": "stub",
            "gateway_base_url": "https://gateway.test/api",
            "gateway_app_name": "BACKOFFICE",
            "gateway_timeout_seconds": 5.0,
            "merchant_name": "Test Merchant",
            "webhook_secret": None,
            "poll_interval_seconds": 5.0,
            "session_timeout_seconds": 120.0,
            "host": "127.0.0.1",
            "port": 8000,
            "debug": False,
            "log_level": "INFO",
        }
        values.update(overrides)
        return Settings(**values)

    return _make
