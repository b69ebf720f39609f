"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from wallet_engine.sessions.controller import PaymentFlow
from wallet_engine.sessions.types import WalletProvider


class ErrorResponse(BaseModel):
    """Error body returned by the exception handlers."""

    detail: str
    code: str


# ============================================================================
# Payment flow schemas
# ============================================================================


class FlowCreate(BaseModel):
    """Schema for starting a wallet payment."""

    invoice_ref: str = Field(min_length=1, max_length=64)
    amount: Decimal = Field(gt=0)
    provider: WalletProvider
    payer_phone: str | None = None
    payer_name: str | None = None


class PresentationResponse(BaseModel):
    """What the payer scans or opens."""

    model_config = ConfigDict(from_attributes=True)

    provider: WalletProvider
    qr_code: str
    deep_link_primary: str | None = None
    deep_link_fallback: str | None = None
    action_links: list[str] = []


class FlowResponse(BaseModel):
    """Current state of a payment flow."""

    flow_id: str
    invoice_ref: str
    amount: Decimal
    provider: WalletProvider
    display_state: str
    message: str
    retryable: bool
    attempts: int
    reused: bool
    session_id: str | None = None
    session_status: str | None = None
    presentation: PresentationResponse | None = None
    receipt_number: str | None = None
    amount_remaining: Decimal | None = None

    @classmethod
    def from_flow(cls, flow: PaymentFlow) -> FlowResponse:
        settlement = flow.settlement
        return cls(
            flow_id=flow.flow_id,
            invoice_ref=flow.request.invoice_ref,
            amount=flow.request.amount,
            provider=flow.request.provider,
            display_state=flow.display_state.value,
            message=flow.message,
            retryable=flow.retryable,
            attempts=flow.attempts,
            reused=flow.reused,
            session_id=flow.session.session_id if flow.session is not None else None,
            session_status=flow.session_status.value if flow.session_status else None,
            presentation=(
                PresentationResponse.model_validate(flow.presentation)
                if flow.presentation is not None
                else None
            ),
            receipt_number=settlement.receipt_number if settlement else None,
            amount_remaining=settlement.new_amount_remaining if settlement else None,
        )


# ============================================================================
# Gateway notification schemas
# ============================================================================


class GatewayNotification(BaseModel):
    """Completion push sent by the wallet gateway."""

    session_id: str
    status: str
    invoice_ref: str
    provider: WalletProvider
    amount: Decimal = Field(gt=0)
    provider_reference: str | None = None
    payer_phone: str | None = None


class NotificationResponse(BaseModel):
    """Acknowledgement of a gateway notification."""

    accepted: bool
    action: str  # ignored / deferred / settled
    receipt_number: str | None = None


# ============================================================================
# Invoice schemas
# ============================================================================


class InvoiceCreate(BaseModel):
    """Schema for creating an invoice."""

    reference: str = Field(min_length=1, max_length=64)
    total_amount: Decimal = Field(gt=0)
    customer_name: str | None = None
    line_items: list[dict[str, Any]] = []


class LedgerEntryResponse(BaseModel):
    """Proof of payment."""

    model_config = ConfigDict(from_attributes=True)

    receipt_number: str
    session_id: str
    provider_reference: str | None = None
    amount: Decimal
    method: str
    payer_phone: str | None = None
    created_at: datetime


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    model_config = ConfigDict(from_attributes=True)

    reference: str
    customer_name: str | None = None
    total_amount: Decimal
    amount_settled: Decimal
    amount_remaining: Decimal
    state: str
    line_items: list[dict[str, Any]] = []
    created_at: datetime
    receipts: list[LedgerEntryResponse] = []


class CashPaymentCreate(BaseModel):
    """Schema for recording a cash payment."""

    amount: Decimal = Field(gt=0)
    payer_phone: str | None = None
    idempotency_key: str | None = Field(default=None, max_length=64)


class SettlementResponse(BaseModel):
    """Outcome of a recorded settlement."""

    receipt_number: str
    new_amount_remaining: Decimal
    is_new: bool
