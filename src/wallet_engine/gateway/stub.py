"""Wallet gateway stub for local development and testing.

Replace with HttpWalletGateway (or another real adapter) for production.
"""

from __future__ import annotations

import base64
import datetime
import uuid
from collections import deque
from decimal import Decimal
from typing import Any

from wallet_engine.errors import PollingTransportError, SessionCreationFailed
from wallet_engine.gateway.base import CreateSessionRequest, CreateSessionResult, StatusResult
from wallet_engine.sessions.types import WalletProvider

_OPEN_STATUSES = ("PENDING", "PROCESSING")


class StubWalletGateway:
    """In-memory wallet gateway.

    Behaves like the real gateway where the engine cares:
    - At most one active session per (invoice_ref, provider); a second create
      returns the active one with reused=True.
    - Sessions stay PENDING until a simulate_* helper moves them.
    - Transport failures and scripted status sequences can be injected.
    """

    gateway_name = "stub"

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, Any]] = {}
        self._active: dict[tuple[str, WalletProvider], str] = {}
        self._scripts: dict[str, deque[str]] = {}
        self._pending_transport_failures = 0
        self._create_error: SessionCreationFailed | None = None
        self.create_calls = 0
        self.status_queries: list[str] = []

    async def create_session(self, request: CreateSessionRequest) -> CreateSessionResult:
        """Open a stub session, or hand back the active one."""
        self.create_calls += 1
        if self._create_error is not None:
            error, self._create_error = self._create_error, None
            raise error

        key = (request.invoice_ref, request.provider)
        active_id = self._active.get(key)
        if active_id is not None:
            return CreateSessionResult(
                session_id=active_id,
                reused=True,
                raw_payload={"uuid": active_id, "status": "EXISTING"},
            )

        session_id = f"WSTUB-{uuid.uuid4().hex[:12].upper()}"
        self._sessions[session_id] = {
            "invoice_ref": request.invoice_ref,
            "provider": request.provider,
            "amount": request.amount,
            "payer_phone": request.payer_phone,
            "status": "PENDING",
            "provider_reference": None,
            "created_at": datetime.datetime.now(datetime.timezone.utc),
        }
        self._active[key] = session_id

        if request.provider == WalletProvider.WALLET_A:
            primary = f"wallet-a://pay?session={session_id}"
            fallback = f"https://wallet-a.example/pay/{session_id}"
        else:
            primary = None
            fallback = f"https://wallet-b.example/checkout/{session_id}"

        return CreateSessionResult(
            session_id=session_id,
            reused=False,
            presentation_payload=base64.b64encode(f"STUB-QR:{session_id}".encode()).decode(),
            deep_link_primary=primary,
            deep_link_fallback=fallback,
            raw_payload={"uuid": session_id, "status": "PENDING"},
        )

    async def query_status(self, session_id: str) -> StatusResult:
        """Return the stub session's current (or next scripted) status."""
        self.status_queries.append(session_id)
        if self._pending_transport_failures > 0:
            self._pending_transport_failures -= 1
            raise PollingTransportError(session_id, "stub transport failure")

        record = self._sessions.get(session_id)
        if record is None:
            return StatusResult(status="UNKNOWN", raw_payload={"uuid": session_id})

        script = self._scripts.get(session_id)
        if script:
            self._set_status(session_id, script.popleft())

        payload = {
            "status": "success",
            "uuid": session_id,
            "data": {
                "uuid": session_id,
                "statut": record["status"],
                "reference_externe": record["provider_reference"],
                "montant": str(record["amount"]),
                "telephone": record["payer_phone"],
            },
        }
        return StatusResult(
            status=record["status"],
            provider_reference=record["provider_reference"],
            amount=Decimal(str(record["amount"])),
            invoice_ref=record["invoice_ref"],
            raw_payload=payload,
        )

    def active_session_count(self, invoice_ref: str, provider: WalletProvider) -> int:
        """Number of gateway-side active sessions for an invoice+provider pair."""
        return sum(
            1
            for record in self._sessions.values()
            if record["invoice_ref"] == invoice_ref
            and record["provider"] == provider
            and record["status"] in _OPEN_STATUSES
        )

    def queries_for(self, session_id: str) -> int:
        """Number of status queries received for a session."""
        return self.status_queries.count(session_id)

    def fail_next_create(self, message: str = "Gateway rejected the request") -> None:
        """Make the next create_session call raise SessionCreationFailed."""
        self._create_error = SessionCreationFailed(message)

    def fail_next_queries(self, count: int) -> None:
        """Make the next `count` status queries raise PollingTransportError."""
        self._pending_transport_failures = count

    def script_statuses(self, session_id: str, statuses: list[str]) -> None:
        """Apply one status per subsequent query (for testing)."""
        self._scripts[session_id] = deque(statuses)

    def simulate_activity(self, session_id: str) -> None:
        """Simulate the payer opening the payment request."""
        self._set_status(session_id, "PROCESSING")

    def simulate_completion(self, session_id: str, provider_reference: str | None = None) -> None:
        """Simulate a successful payment."""
        self._sessions[session_id]["provider_reference"] = (
            provider_reference or f"TX-{uuid.uuid4().hex[:10].upper()}"
        )
        self._set_status(session_id, "COMPLETED")

    def simulate_failure(self, session_id: str) -> None:
        """Simulate an explicit payment failure."""
        self._set_status(session_id, "FAILED")

    def simulate_expiry(self, session_id: str) -> None:
        """Simulate the session lapsing on the gateway side."""
        self._set_status(session_id, "EXPIRED")

    def _set_status(self, session_id: str, status: str) -> None:
        record = self._sessions[session_id]
        record["status"] = status
        if status == "COMPLETED" and not record["provider_reference"]:
            record["provider_reference"] = f"TX-{uuid.uuid4().hex[:10].upper()}"
        if status not in _OPEN_STATUSES:
            key = (record["invoice_ref"], record["provider"])
            if self._active.get(key) == session_id:
                del self._active[key]
