"""Payment flow endpoints: start, status, retry, cancel."""

from fastapi import APIRouter, status

from wallet_engine.api.dependencies import Flow, Registry
from wallet_engine.api.schemas import ErrorResponse, FlowCreate, FlowResponse
from wallet_engine.sessions.controller import FlowRequest

router = APIRouter(prefix="/payments/flows", tags=["payments"])


@router.post(
    "",
    response_model=FlowResponse,
    status_code=status.HTTP_201_CREATED,
    responses={502: {"model": ErrorResponse}},
)
async def start_flow(registry: Registry, payload: FlowCreate) -> FlowResponse:
    """Open a wallet session for an invoice and start polling it.

    The response carries the presentation (QR code and links) for a new
    session; a reused session has none since the payer already holds it.
    """
    flow = await registry.start(
        FlowRequest(
            invoice_ref=payload.invoice_ref,
            amount=payload.amount,
            provider=payload.provider,
            payer_phone=payload.payer_phone,
            payer_name=payload.payer_name,
        )
    )
    return FlowResponse.from_flow(flow)


@router.get(
    "/{flow_id}",
    response_model=FlowResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_flow(flow: Flow) -> FlowResponse:
    """Current display state of a flow."""
    return FlowResponse.from_flow(flow)


@router.post(
    "/{flow_id}/retry",
    response_model=FlowResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def retry_flow(registry: Registry, flow: Flow) -> FlowResponse:
    """Retry a FAILED or TIMED_OUT flow."""
    await registry.retry(flow)
    return FlowResponse.from_flow(flow)


@router.post(
    "/{flow_id}/cancel",
    response_model=FlowResponse,
    responses={404: {"model": ErrorResponse}},
)
async def cancel_flow(registry: Registry, flow: Flow) -> FlowResponse:
    """Stop polling; a finished flow is returned unchanged."""
    await registry.cancel(flow)
    return FlowResponse.from_flow(flow)
