"""HTTP adapter for the wallet gateway's JSON API.

Endpoints:
    POST {base}/add_payement              open (or reuse) a session
    GET  {base}/payment_status/{uuid}     query a session's status
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from wallet_engine.errors import PollingTransportError, SessionCreationFailed
from wallet_engine.gateway.base import CreateSessionRequest, CreateSessionResult, StatusResult
from wallet_engine.sessions.types import WalletProvider
from wallet_engine.sessions.wallets import DEFAULT_WALLETS, WalletConfig

logger = logging.getLogger(__name__)

# Gateway status meaning "an active session already exists for this invoice"
REUSED_STATUS = "EXISTING"


class HttpWalletGateway:
    """Wallet gateway client over HTTP.

    The underlying httpx.AsyncClient can be injected (tests pass one built on
    httpx.MockTransport); otherwise one is created and owned by this adapter.
    """

    gateway_name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        app_name: str,
        merchant_name: str,
        timeout_seconds: float = 30.0,
        wallets: dict[WalletProvider, WalletConfig] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.app_name = app_name
        self.merchant_name = merchant_name
        self.wallets = wallets or DEFAULT_WALLETS
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    async def create_session(self, request: CreateSessionRequest) -> CreateSessionResult:
        """Open a collection session at the gateway."""
        config = self.wallets[request.provider]
        body = {
            "pAppName": self.app_name,
            "pMethode": config.gateway_method,
            "pReference": request.invoice_ref,
            "pClientTel": request.payer_phone or "",
            "pMontant": _amount_to_wire(request.amount),
            "pServiceName": config.service_name,
            "pNomClient": request.payer_name or "",
            "pnom_structure": self.merchant_name,
        }

        try:
            response = await self._client.post(
                f"{self.base_url}/add_payement",
                json=body,
                headers={"Accept": "application/json", "X-Request-ID": uuid.uuid4().hex},
            )
        except httpx.HTTPError as e:
            logger.warning("Gateway unreachable for invoice %s: %s", request.invoice_ref, e)
            raise SessionCreationFailed(f"Gateway unreachable: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "Gateway rejected session for invoice %s (%s): %s",
                request.invoice_ref,
                response.status_code,
                message,
            )
            raise SessionCreationFailed(message, status_code=response.status_code)

        data = _json_body(response)
        session_id = data.get("uuid")
        if not session_id:
            raise SessionCreationFailed("Gateway response carries no session id")

        reused = bool(data.get("reused")) or str(data.get("status", "")).upper() == REUSED_STATUS
        if reused:
            return CreateSessionResult(session_id=str(session_id), reused=True, raw_payload=data)

        if request.provider == WalletProvider.WALLET_A:
            primary, fallback = data.get("om"), data.get("maxit")
        else:
            primary, fallback = None, data.get("payment_url")

        return CreateSessionResult(
            session_id=str(session_id),
            reused=False,
            presentation_payload=data.get("qrCode") or "",
            deep_link_primary=primary,
            deep_link_fallback=fallback,
            raw_payload=data,
        )

    async def query_status(self, session_id: str) -> StatusResult:
        """Query a session's status."""
        try:
            response = await self._client.get(
                f"{self.base_url}/payment_status/{session_id}",
                headers={"Accept": "application/json", "X-Request-ID": uuid.uuid4().hex},
            )
        except httpx.HTTPError as e:
            raise PollingTransportError(session_id, str(e)) from e

        if response.is_error:
            raise PollingTransportError(session_id, f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise PollingTransportError(session_id, "malformed JSON body") from e
        if not isinstance(payload, dict):
            raise PollingTransportError(session_id, "malformed JSON body")

        details = payload.get("data") or {}
        status = details.get("statut") or payload.get("status") or ""
        return StatusResult(
            status=str(status).upper(),
            provider_reference=details.get("reference_externe"),
            amount=_amount_from_wire(details.get("montant")),
            raw_payload=payload,
        )


def _amount_to_wire(amount: Decimal) -> int | str:
    """Whole amounts go out as integers, fractional ones as strings."""
    if amount == amount.to_integral_value():
        return int(amount)
    return str(amount)


def _amount_from_wire(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise SessionCreationFailed("Gateway returned a malformed response") from e
    if not isinstance(data, dict):
        raise SessionCreationFailed("Gateway returned a malformed response")
    return data


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Gateway error: HTTP {response.status_code}"
