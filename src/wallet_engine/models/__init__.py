"""ORM models."""

from wallet_engine.models.base import Base, TimestampMixin
from wallet_engine.models.billing import Invoice, InvoiceState, LedgerEntry, invoice_state_for

__all__ = [
    "Base",
    "TimestampMixin",
    "Invoice",
    "InvoiceState",
    "LedgerEntry",
    "invoice_state_for",
]
