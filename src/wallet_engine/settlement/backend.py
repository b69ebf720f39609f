"""Record Settlement - the atomic backend operation behind the recorder.

One call, one transaction:
1. Lock the invoice row.
2. If a ledger entry already exists for the session_id, return its receipt
   (no-op; duplicate COMPLETED delivery).
3. Validate: amount > 0, invoice not PAID, amount <= amount_remaining.
4. Insert the ledger entry with the next receipt number.
5. Update amount_settled / amount_remaining / state.

Rejections are returned as data ({success: false, reason}); the caller
decides how to surface them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet_engine.models import Invoice, InvoiceState, LedgerEntry
from wallet_engine.sessions.types import PaymentMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementRequest:
    """Input of the Record Settlement operation."""

    invoice_ref: str
    session_id: str  # idempotency key; CASH-... for cash payments
    amount: Decimal
    provider_reference: str | None
    method: PaymentMethod
    payer_phone: str | None = None


@dataclass(frozen=True)
class SettlementResult:
    """Result of a Record Settlement call.

    IMPORTANT: `is_new=False` on success means the session was already
    settled and the existing receipt was returned; nothing was credited.
    """

    success: bool
    receipt_number: str | None = None
    new_amount_remaining: Decimal | None = None
    reason: str | None = None
    is_new: bool = False

    @classmethod
    def accepted(
        cls, receipt_number: str, new_amount_remaining: Decimal, *, is_new: bool
    ) -> SettlementResult:
        return cls(
            success=True,
            receipt_number=receipt_number,
            new_amount_remaining=new_amount_remaining,
            is_new=is_new,
        )

    @classmethod
    def rejected(cls, reason: str) -> SettlementResult:
        return cls(success=False, reason=reason)


class SettlementBackend(Protocol):
    """Anything that can perform Record Settlement atomically."""

    async def record_settlement(self, request: SettlementRequest) -> SettlementResult:
        ...


def format_receipt_number(invoice_ref: str, sequence: int) -> str:
    return f"REC-{invoice_ref}-{sequence:03d}"


class SqlSettlementBackend:
    """Record Settlement on SQLAlchemy.

    Notes:
    - The invoice row is locked (SELECT ... FOR UPDATE) for the whole
      operation, so receipt sequences and balances never interleave.
    - payment_ledger_entry.session_id is unique; a concurrent duplicate that
      loses the race gets the winner's receipt.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record_settlement(self, request: SettlementRequest) -> SettlementResult:
        """Perform the settlement, or return the existing receipt for the session."""
        try:
            return await self._record(request)
        except IntegrityError:
            existing = await self._existing_result(request.session_id)
            if existing is None:
                raise
            logger.info(
                "Session %s was settled concurrently; returning receipt %s",
                request.session_id,
                existing.receipt_number,
            )
            return existing

    async def _record(self, request: SettlementRequest) -> SettlementResult:
        async with self.session_factory() as db:
            async with db.begin():
                invoice = await db.scalar(
                    select(Invoice)
                    .where(Invoice.reference == request.invoice_ref)
                    .with_for_update()
                )
                if invoice is None:
                    return self._reject(request, f"Invoice {request.invoice_ref} not found")

                existing = await db.scalar(
                    select(LedgerEntry).where(LedgerEntry.session_id == request.session_id)
                )
                if existing is not None:
                    logger.info(
                        "Session %s already settled as %s",
                        request.session_id,
                        existing.receipt_number,
                    )
                    return SettlementResult.accepted(
                        existing.receipt_number, invoice.amount_remaining, is_new=False
                    )

                amount = Decimal(request.amount)
                if amount <= 0:
                    return self._reject(request, "Settlement amount must be positive")
                if invoice.state == InvoiceState.PAID.value:
                    return self._reject(
                        request, f"Invoice {request.invoice_ref} is already fully paid"
                    )
                if amount > invoice.amount_remaining:
                    return self._reject(
                        request,
                        f"Amount {amount} exceeds the remaining balance "
                        f"{invoice.amount_remaining} of invoice {request.invoice_ref}",
                    )

                count = await db.scalar(
                    select(func.count())
                    .select_from(LedgerEntry)
                    .where(LedgerEntry.invoice_id == invoice.invoice_id)
                )
                receipt_number = format_receipt_number(invoice.reference, (count or 0) + 1)

                db.add(
                    LedgerEntry(
                        invoice_id=invoice.invoice_id,
                        invoice_ref=invoice.reference,
                        session_id=request.session_id,
                        provider_reference=request.provider_reference,
                        amount=amount,
                        method=request.method.value,
                        payer_phone=request.payer_phone,
                        receipt_number=receipt_number,
                    )
                )
                invoice.apply_settlement(amount)
                remaining = invoice.amount_remaining

        logger.info(
            "Settled %s on invoice %s via %s: receipt %s, remaining %s",
            amount,
            request.invoice_ref,
            request.method.value,
            receipt_number,
            remaining,
        )
        return SettlementResult.accepted(receipt_number, remaining, is_new=True)

    def _reject(self, request: SettlementRequest, reason: str) -> SettlementResult:
        logger.warning(
            "Settlement refused for session %s on invoice %s: %s",
            request.session_id,
            request.invoice_ref,
            reason,
        )
        return SettlementResult.rejected(reason)

    async def _existing_result(self, session_id: str) -> SettlementResult | None:
        async with self.session_factory() as db:
            row = (
                await db.execute(
                    select(LedgerEntry.receipt_number, Invoice.amount_remaining)
                    .join(Invoice, Invoice.invoice_id == LedgerEntry.invoice_id)
                    .where(LedgerEntry.session_id == session_id)
                )
            ).first()
        if row is None:
            return None
        return SettlementResult.accepted(row[0], row[1], is_new=False)

    # ------------------------------------------------------------------
    # Invoice access
    # ------------------------------------------------------------------

    async def create_invoice(
        self,
        reference: str,
        total_amount: Decimal,
        *,
        customer_name: str | None = None,
        line_items: list[dict[str, Any]] | None = None,
    ) -> Invoice:
        """Create an UNPAID invoice."""
        total_amount = Decimal(total_amount)
        if total_amount <= 0:
            raise ValueError("Invoice total must be positive")

        invoice = Invoice(
            reference=reference,
            customer_name=customer_name,
            total_amount=total_amount,
            amount_settled=Decimal("0"),
            amount_remaining=total_amount,
            state=InvoiceState.UNPAID.value,
            line_items=line_items or [],
        )
        async with self.session_factory() as db:
            async with db.begin():
                db.add(invoice)
        return invoice

    async def get_invoice(self, reference: str) -> Invoice | None:
        async with self.session_factory() as db:
            return await db.scalar(select(Invoice).where(Invoice.reference == reference))

    async def list_ledger_entries(self, reference: str) -> list[LedgerEntry]:
        """Ledger entries of an invoice, oldest first."""
        async with self.session_factory() as db:
            result = await db.scalars(
                select(LedgerEntry)
                .where(LedgerEntry.invoice_ref == reference)
                .order_by(LedgerEntry.receipt_number)
            )
            return list(result)
