"""Invoice endpoints: create, read with receipts, cash payments."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from wallet_engine.api.dependencies import Backend, DbSession, Recorder
from wallet_engine.api.schemas import (
    CashPaymentCreate,
    ErrorResponse,
    InvoiceCreate,
    InvoiceResponse,
    LedgerEntryResponse,
    SettlementResponse,
)
from wallet_engine.models import Invoice, LedgerEntry

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def create_invoice(backend: Backend, payload: InvoiceCreate) -> InvoiceResponse:
    """Create an UNPAID invoice."""
    try:
        invoice = await backend.create_invoice(
            payload.reference,
            payload.total_amount,
            customer_name=payload.customer_name,
            line_items=payload.line_items,
        )
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Invoice {payload.reference} already exists",
        )
    return InvoiceResponse.model_validate(invoice)


@router.get(
    "/{invoice_ref}",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_invoice(
    db: DbSession,
    invoice_ref: Annotated[str, Path()],
) -> InvoiceResponse:
    """Get an invoice with its balance and receipts."""
    invoice = await db.scalar(select(Invoice).where(Invoice.reference == invoice_ref))
    if invoice is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Invoice {invoice_ref} not found",
        )

    entries = await db.scalars(
        select(LedgerEntry)
        .where(LedgerEntry.invoice_id == invoice.invoice_id)
        .order_by(LedgerEntry.receipt_number)
    )
    response = InvoiceResponse.model_validate(invoice)
    response.receipts = [LedgerEntryResponse.model_validate(entry) for entry in entries]
    return response


@router.post(
    "/{invoice_ref}/cash-payments",
    response_model=SettlementResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def record_cash_payment(
    recorder: Recorder,
    invoice_ref: Annotated[str, Path()],
    payload: CashPaymentCreate,
) -> SettlementResponse:
    """Record a cash payment through the same settlement operation."""
    result = await recorder.record_cash(
        invoice_ref=invoice_ref,
        amount=payload.amount,
        payer_phone=payload.payer_phone,
        session_id=f"CASH-{payload.idempotency_key}" if payload.idempotency_key else None,
    )
    return SettlementResponse(
        receipt_number=result.receipt_number,
        new_amount_remaining=result.new_amount_remaining,
        is_new=result.is_new,
    )
