"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_engine.gateway.base import WalletGateway
from wallet_engine.sessions.controller import PaymentFlow
from wallet_engine.sessions.registry import FlowRegistry
from wallet_engine.settlement.backend import SqlSettlementBackend
from wallet_engine.settlement.recorder import SettlementRecorder


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_registry(request: Request) -> FlowRegistry:
    return request.app.state.registry


def get_gateway(request: Request) -> WalletGateway:
    return request.app.state.gateway


def get_backend(request: Request) -> SqlSettlementBackend:
    return request.app.state.backend


def get_recorder(request: Request) -> SettlementRecorder:
    return request.app.state.recorder


def get_flow(
    flow_id: Annotated[str, Path()],
    registry: Annotated[FlowRegistry, Depends(get_registry)],
) -> PaymentFlow:
    """Resolve a flow id, 404 if unknown."""
    flow = registry.get(flow_id)
    if flow is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Payment flow {flow_id} not found",
        )
    return flow


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Registry = Annotated[FlowRegistry, Depends(get_registry)]
Gateway = Annotated[WalletGateway, Depends(get_gateway)]
Backend = Annotated[SqlSettlementBackend, Depends(get_backend)]
Recorder = Annotated[SettlementRecorder, Depends(get_recorder)]
Flow = Annotated[PaymentFlow, Depends(get_flow)]
