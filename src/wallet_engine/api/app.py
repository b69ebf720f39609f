"""FastAPI application factory."""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from wallet_engine.api.routes import (
    health_router,
    invoices_router,
    notifications_router,
    payments_router,
)
from wallet_engine.config import FlowConfig, Settings, get_settings
from wallet_engine.database import create_schema, get_engine, make_session_factory
from wallet_engine.errors import RetryNotAllowed, SessionCreationFailed, SettlementRejected
from wallet_engine.events import AsyncEventEmitter
from wallet_engine.gateway import HttpWalletGateway, StubWalletGateway, WalletGateway
from wallet_engine.sessions.registry import FlowRegistry
from wallet_engine.settlement import SettlementRecorder, SqlSettlementBackend

logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> WalletGateway:
    """Gateway adapter selected by GATEWAY_MODE."""
    if settings.gateway_mode == "stub":
        logger.warning("Using the in-memory stub wallet gateway")
        return StubWalletGateway()
    return HttpWalletGateway(
        settings.gateway_base_url,
        app_name=settings.gateway_app_name,
        merchant_name=settings.merchant_name,
        timeout_seconds=settings.gateway_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    engine: AsyncEngine | None = app.state.engine
    if engine is not None:
        await create_schema(engine)
    yield
    # Shutdown
    await app.state.registry.shutdown()
    aclose = getattr(app.state.gateway, "aclose", None)
    if aclose is not None:
        await aclose()
    if engine is not None:
        await engine.dispose()


def _error(status_code: int, detail: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def create_app(
    settings: Settings | None = None,
    *,
    gateway: WalletGateway | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    flow_config: FlowConfig | None = None,
    emitter: AsyncEventEmitter | None = None,
    clock=time.monotonic,
    sleep=asyncio.sleep,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Everything the routes need hangs off `app.state`. Tests pass their own
    gateway and session factory; otherwise both are built from settings.
    """
    settings = settings or get_settings()

    engine: AsyncEngine | None = None
    if session_factory is None:
        engine = get_engine(settings.database_url)
        session_factory = make_session_factory(engine)

    gateway = gateway or build_gateway(settings)
    emitter = emitter or AsyncEventEmitter()
    backend = SqlSettlementBackend(session_factory)
    recorder = SettlementRecorder(backend, emitter=emitter)

    app = FastAPI(
        title="Wallet Engine API",
        description="Mobile-money wallet payments with idempotent invoice settlement",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.gateway = gateway
    app.state.emitter = emitter
    app.state.backend = backend
    app.state.recorder = recorder
    app.state.webhook_secret = settings.webhook_secret
    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET is unset; gateway notifications are not signature-checked")
    app.state.registry = FlowRegistry(
        gateway=gateway,
        recorder=recorder,
        config=flow_config or settings.flow_config(),
        emitter=emitter,
        clock=clock,
        sleep=sleep,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(SessionCreationFailed)
    async def session_creation_failed_handler(
        request: Request, exc: SessionCreationFailed
    ) -> JSONResponse:
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc), "SESSION_CREATION_FAILED")

    @app.exception_handler(SettlementRejected)
    async def settlement_rejected_handler(
        request: Request, exc: SettlementRejected
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, exc.reason, "SETTLEMENT_REJECTED")

    @app.exception_handler(RetryNotAllowed)
    async def retry_not_allowed_handler(request: Request, exc: RetryNotAllowed) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc), "RETRY_NOT_ALLOWED")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred",
            "INTERNAL_ERROR",
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payments_router, prefix="/api/v1")
    app.include_router(notifications_router, prefix="/api/v1")
    app.include_router(invoices_router, prefix="/api/v1")

    return app
