"""Wallet gateway adapters."""

from wallet_engine.gateway.base import (
    CreateSessionRequest,
    CreateSessionResult,
    StatusResult,
    WalletGateway,
)
from wallet_engine.gateway.http_client import HttpWalletGateway
from wallet_engine.gateway.stub import StubWalletGateway

__all__ = [
    "CreateSessionRequest",
    "CreateSessionResult",
    "StatusResult",
    "WalletGateway",
    "HttpWalletGateway",
    "StubWalletGateway",
]
