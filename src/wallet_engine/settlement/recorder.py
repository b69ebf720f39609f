"""Settlement Recorder - turn a COMPLETED session into a ledger entry.

The recorder issues exactly one Record Settlement call per completion and
never retries a rejection: replaying a refused settlement risks crediting
an invoice inconsistently.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from wallet_engine.errors import SettlementRejected
from wallet_engine.events import (
    AsyncEventEmitter,
    EventMetadata,
    SettlementDeclined,
    SettlementRecorded,
)
from wallet_engine.sessions.types import PaymentCompletion, PaymentMethod
from wallet_engine.settlement.backend import (
    SettlementBackend,
    SettlementRequest,
    SettlementResult,
)

logger = logging.getLogger(__name__)


def new_cash_session_id() -> str:
    """Idempotency key for a cash payment (there is no gateway session)."""
    return f"CASH-{uuid.uuid4().hex[:12].upper()}"


class SettlementRecorder:
    """Records wallet completions and cash payments against invoices."""

    def __init__(self, backend: SettlementBackend, *, emitter: AsyncEventEmitter | None = None):
        self.backend = backend
        self.emitter = emitter

    async def record(
        self, completion: PaymentCompletion, *, correlation_id: str | None = None
    ) -> SettlementResult:
        """Settle a COMPLETED wallet session.

        Delivering the same completion twice returns the first receipt.

        Raises:
            SettlementRejected: the backend refused. The payer was already
                charged, so the refusal is flagged for manual reconciliation.
        """
        request = SettlementRequest(
            invoice_ref=completion.invoice_ref,
            session_id=completion.session_id,
            amount=completion.amount,
            provider_reference=completion.provider_reference,
            method=PaymentMethod.for_provider(completion.provider),
            payer_phone=completion.payer_phone,
        )
        return await self._submit(
            request, requires_reconciliation=True, correlation_id=correlation_id
        )

    async def record_cash(
        self,
        *,
        invoice_ref: str,
        amount: Decimal,
        payer_phone: str | None = None,
        session_id: str | None = None,
        correlation_id: str | None = None,
    ) -> SettlementResult:
        """Settle a cash payment through the same backend operation.

        Pass `session_id` to make a resubmission idempotent; otherwise a new
        CASH-... key is generated.
        """
        request = SettlementRequest(
            invoice_ref=invoice_ref,
            session_id=session_id or new_cash_session_id(),
            amount=Decimal(amount),
            provider_reference=None,
            method=PaymentMethod.CASH,
            payer_phone=payer_phone,
        )
        return await self._submit(
            request, requires_reconciliation=False, correlation_id=correlation_id
        )

    async def _submit(
        self,
        request: SettlementRequest,
        *,
        requires_reconciliation: bool,
        correlation_id: str | None,
    ) -> SettlementResult:
        result = await self.backend.record_settlement(request)
        metadata = EventMetadata.create(correlation_id=correlation_id)

        if not result.success:
            reason = result.reason or "Settlement rejected"
            if requires_reconciliation:
                logger.error(
                    "Session %s COMPLETED but settlement on invoice %s was refused (%s); "
                    "provider reference %s needs manual reconciliation",
                    request.session_id,
                    request.invoice_ref,
                    reason,
                    request.provider_reference,
                )
            await self._emit(
                SettlementDeclined(
                    metadata=metadata,
                    session_id=request.session_id,
                    invoice_ref=request.invoice_ref,
                    amount=request.amount,
                    reason=reason,
                    requires_reconciliation=requires_reconciliation,
                )
            )
            raise SettlementRejected(
                reason,
                session_id=request.session_id,
                invoice_ref=request.invoice_ref,
                amount=request.amount,
            )

        await self._emit(
            SettlementRecorded(
                metadata=metadata,
                session_id=request.session_id,
                invoice_ref=request.invoice_ref,
                amount=request.amount,
                receipt_number=result.receipt_number,
                new_amount_remaining=result.new_amount_remaining,
                is_new=result.is_new,
            )
        )
        return result

    async def _emit(self, event) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)
