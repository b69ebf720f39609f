"""Gateway completion notifications.

The gateway may push a terminal status instead of (or before) the poller
seeing it. A push is only a hint: the session is confirmed with a status
query before anything is settled, and the settled amount and provider
reference come from that query, never from the request body.

A notification for a session still being polled is left to the poller. A
confirmed COMPLETED session nobody is polling any more (timed out, canceled,
or lost on restart) is settled directly; settlement is idempotent per
session_id, so a later poll or a repeated push is a no-op.
"""

import hashlib
import hmac
import logging

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import ValidationError

from wallet_engine.api.dependencies import Gateway, Recorder, Registry
from wallet_engine.api.schemas import ErrorResponse, GatewayNotification, NotificationResponse
from wallet_engine.errors import PollingTransportError
from wallet_engine.sessions.controller import DisplayState
from wallet_engine.sessions.types import PaymentCompletion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

SIGNATURE_HEADER = "X-Gateway-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _ignored(notification: GatewayNotification, why: str) -> NotificationResponse:
    logger.warning("Notification for session %s ignored: %s", notification.session_id, why)
    return NotificationResponse(accepted=True, action="ignored")


@router.post(
    "/notifications",
    response_model=NotificationResponse,
    responses={
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def receive_notification(
    request: Request,
    registry: Registry,
    recorder: Recorder,
    gateway: Gateway,
) -> NotificationResponse:
    """Accept a gateway status push."""
    body = await request.body()

    secret = request.app.state.webhook_secret
    if secret:
        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not hmac.compare_digest(signature, sign_payload(secret, body)):
            logger.warning("Rejected gateway notification with a bad signature")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid notification signature",
            )

    try:
        notification = GatewayNotification.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=f"Malformed notification: {e.error_count()} invalid field(s)",
        )

    gateway_status = notification.status.upper()
    if gateway_status != "COMPLETED":
        logger.info(
            "Notification %s for session %s ignored", gateway_status, notification.session_id
        )
        return NotificationResponse(accepted=True, action="ignored")

    flow = registry.find_by_session(notification.session_id)
    if flow is not None and flow.display_state == DisplayState.IN_PROGRESS:
        logger.info(
            "Session %s is being polled by flow %s; deferring to the poller",
            notification.session_id,
            flow.flow_id,
        )
        return NotificationResponse(accepted=True, action="deferred")

    try:
        confirmed = await gateway.query_status(notification.session_id)
    except PollingTransportError as e:
        logger.warning("Could not confirm session %s: %s", notification.session_id, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gateway status unavailable, deliver the notification again later",
        )

    if confirmed.status != "COMPLETED":
        return _ignored(notification, f"gateway reports {confirmed.status or 'no status'}")

    if flow is not None:
        invoice_ref = flow.request.invoice_ref
        provider = flow.request.provider
        payer_phone = flow.session.payer_phone if flow.session is not None else None
    else:
        invoice_ref = notification.invoice_ref
        provider = notification.provider
        payer_phone = notification.payer_phone
    if confirmed.invoice_ref and confirmed.invoice_ref != invoice_ref:
        return _ignored(
            notification, f"gateway reports invoice {confirmed.invoice_ref}, not {invoice_ref}"
        )

    amount = confirmed.amount
    if amount is None and flow is not None:
        amount = flow.request.amount
    if amount is None or amount <= 0:
        return _ignored(notification, "gateway reports no settled amount")

    result = await recorder.record(
        PaymentCompletion(
            session_id=notification.session_id,
            invoice_ref=invoice_ref,
            provider=provider,
            amount=amount,
            provider_reference=confirmed.provider_reference,
            payer_phone=payer_phone,
            raw_payload=confirmed.raw_payload,
        ),
        correlation_id=flow.flow_id if flow is not None else None,
    )
    return NotificationResponse(
        accepted=True, action="settled", receipt_number=result.receipt_number
    )
