"""Base protocol and types for wallet gateway clients.

All gateway adapters must implement the WalletGateway protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from wallet_engine.sessions.types import WalletProvider


@dataclass(frozen=True)
class CreateSessionRequest:
    """Request to open a collection session."""

    provider: WalletProvider
    invoice_ref: str
    amount: Decimal
    payer_phone: str | None = None
    payer_name: str | None = None


@dataclass(frozen=True)
class CreateSessionResult:
    """Result of a create-session call.

    When `reused` is True the gateway handed back an already-active session
    for the same invoice+provider pair and the presentation fields are empty.
    """

    session_id: str
    reused: bool = False
    presentation_payload: str = ""  # QR code, raw base64 or data URI
    deep_link_primary: str | None = None
    deep_link_fallback: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusResult:
    """Result of a status query."""

    status: str  # PENDING/PROCESSING/COMPLETED/FAILED/EXPIRED, anything else is ignored
    provider_reference: str | None = None
    amount: Decimal | None = None
    invoice_ref: str | None = None  # only when the gateway reports it
    raw_payload: dict[str, Any] = field(default_factory=dict)


class WalletGateway(Protocol):
    """Protocol for wallet gateway adapters.

    Implementations raise SessionCreationFailed from create_session and
    PollingTransportError from query_status; every other outcome is data.
    """

    gateway_name: str

    async def create_session(self, request: CreateSessionRequest) -> CreateSessionResult:
        """Open a session, or return the active one for the same invoice+provider.

        Args:
            request: Provider, invoice reference, amount and optional payer phone.

        Returns:
            CreateSessionResult with the session id and presentation payload.
        """
        ...

    async def query_status(self, session_id: str) -> StatusResult:
        """Query the current status of a session.

        Args:
            session_id: The id returned from create_session()

        Returns:
            StatusResult with the gateway status and its raw payload.
        """
        ...
