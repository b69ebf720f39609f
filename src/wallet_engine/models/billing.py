"""Invoice and proof-of-payment ledger models."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Numeric,
    String,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wallet_engine.errors import LedgerEntryImmutable
from wallet_engine.models.base import Base, TimestampMixin


class InvoiceState(str, Enum):
    """Payment state of an invoice, derived from its remaining balance."""

    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


def invoice_state_for(total_amount: Decimal, amount_remaining: Decimal) -> InvoiceState:
    """0 remaining is PAID, the full total is UNPAID, anything between is PARTIAL."""
    if amount_remaining <= 0:
        return InvoiceState.PAID
    if amount_remaining >= total_amount:
        return InvoiceState.UNPAID
    return InvoiceState.PARTIAL


class Invoice(Base, TimestampMixin):
    """Customer invoice settled by wallet or cash payments."""

    __tablename__ = "invoice"

    invoice_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    customer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    amount_settled: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    amount_remaining: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    state: Mapped[str] = mapped_column(
        String, nullable=False, default=InvoiceState.UNPAID.value
    )
    line_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="invoice_total_positive"),
        CheckConstraint("amount_remaining >= 0", name="invoice_remaining_non_negative"),
        CheckConstraint("amount_settled <= total_amount", name="invoice_settled_within_total"),
        CheckConstraint(
            "state IN ('UNPAID', 'PARTIAL', 'PAID')",
            name="invoice_state_check",
        ),
    )

    # Relationships
    ledger_entries: Mapped[list[LedgerEntry]] = relationship(
        back_populates="invoice",
        order_by="LedgerEntry.created_at",
    )

    @property
    def is_paid(self) -> bool:
        return self.state == InvoiceState.PAID.value

    def apply_settlement(self, amount: Decimal) -> None:
        """Move `amount` from remaining to settled and re-derive the state."""
        if amount <= 0:
            raise ValueError("Settlement amount must be positive")
        if amount > self.amount_remaining:
            raise ValueError("Settlement amount exceeds the remaining balance")
        self.amount_settled = self.amount_settled + amount
        self.amount_remaining = self.total_amount - self.amount_settled
        self.state = invoice_state_for(self.total_amount, self.amount_remaining).value


class LedgerEntry(Base, TimestampMixin):
    """Proof of payment: one per settled session, never changed afterwards."""

    __tablename__ = "payment_ledger_entry"

    ledger_entry_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    invoice_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoice.invoice_id", ondelete="RESTRICT"),
        nullable=False,
    )
    invoice_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    provider_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    method: Mapped[str] = mapped_column(String, nullable=False)
    payer_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    receipt_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="payment_ledger_entry_amount_positive"),
        CheckConstraint(
            "method IN ('WALLET_A', 'WALLET_B', 'CASH')",
            name="payment_ledger_entry_method_check",
        ),
    )

    # Relationships
    invoice: Mapped[Invoice] = relationship(back_populates="ledger_entries")


@event.listens_for(LedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target: LedgerEntry) -> None:
    raise LedgerEntryImmutable(target.receipt_number, "update")


@event.listens_for(LedgerEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target: LedgerEntry) -> None:
    raise LedgerEntryImmutable(target.receipt_number, "delete")
