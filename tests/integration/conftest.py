"""API test fixtures: the FastAPI app on the stub gateway and in-memory SQLite."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from wallet_engine.api.app import create_app
from wallet_engine.config import FlowConfig

WEBHOOK_SECRET = "whsec-test"

# Real sleeps, kept short: flows poll in background tasks while the test
# drives the HTTP API.
FAST_FLOW = FlowConfig(
    poll_interval_seconds=0.01,
    timeout_seconds=2.0,
    transport_retry_delay_seconds=0.0,
)


@pytest.fixture
def webhook_secret() -> str:
    return WEBHOOK_SECRET


@pytest.fixture
def make_app(make_settings, webhook_secret, gateway, session_factory, emitter):
    """Build an app wired to the test gateway and database."""

    def _make(flow_config: FlowConfig = FAST_FLOW) -> FastAPI:
        return create_app(
            make_settings(webhook_secret=webhook_secret),
            gateway=gateway,
            session_factory=session_factory,
            flow_config=flow_config,
            emitter=emitter,
        )

    return _make


@pytest.fixture
def app(make_app) -> FastAPI:
    return make_app()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app; stops background flows on teardown."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await app.state.registry.shutdown()
