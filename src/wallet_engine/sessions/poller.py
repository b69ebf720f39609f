"""Status Poller - drive a session to a terminal status by sequential queries.

Loop, one tick per poll interval:
1. Stop if the flow was canceled.
2. Let the ceiling guard force TIMED_OUT once the session timeout has elapsed.
3. Issue one status query (retrying transient transport errors in place).
4. Map the gateway status onto a session event and apply it.

Exactly one query is ever in flight: the next one is not issued until the
previous one resolved. A result that arrives after cancel is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from wallet_engine.config import FlowConfig
from wallet_engine.errors import PollingTransportError, SessionExpired
from wallet_engine.events import (
    AsyncEventEmitter,
    EventMetadata,
    SessionCompleted,
    SessionFailed,
    SessionStatusChanged,
)
from wallet_engine.gateway.base import StatusResult, WalletGateway
from wallet_engine.sessions.state_machine import SessionStateMachine
from wallet_engine.sessions.types import (
    PaymentCompletion,
    PaymentSession,
    SessionEvent,
    SessionStatus,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

GATEWAY_STATUS_EVENTS: dict[str, SessionEvent] = {
    "PROCESSING": SessionEvent.ACTIVITY,
    "COMPLETED": SessionEvent.SUCCEEDED,
    "FAILED": SessionEvent.FAILED,
    "EXPIRED": SessionEvent.EXPIRED,
}


class TickGuard(Protocol):
    """Checked by the poller on every tick (see controller.TimeoutGuard)."""

    def expired(self) -> bool:
        """True once the session timeout has elapsed."""
        ...

    async def enforce(self, session: PaymentSession, queries_issued: int) -> bool:
        """Force TIMED_OUT if expired; return True when it did."""
        ...


@dataclass(frozen=True)
class PollResult:
    """How a polling run ended."""

    session: PaymentSession
    queries_issued: int
    canceled: bool = False
    completion: PaymentCompletion | None = None

    @property
    def status(self) -> SessionStatus:
        return self.session.status


class StatusPoller:
    """Sequential status poller for one session.

    A poller instance serves a single run; cancel() is cooperative and
    permanent for that instance.
    """

    def __init__(
        self,
        gateway: WalletGateway,
        *,
        config: FlowConfig | None = None,
        sleep: Sleep = asyncio.sleep,
        emitter: AsyncEventEmitter | None = None,
        correlation_id: str | None = None,
    ):
        self.gateway = gateway
        self.config = config or FlowConfig()
        self._sleep = sleep
        self.emitter = emitter
        self.correlation_id = correlation_id
        self._canceled = False
        self.queries_issued = 0

    @property
    def canceled(self) -> bool:
        return self._canceled

    def cancel(self) -> None:
        """Stop scheduling queries; an in-flight result will be discarded."""
        self._canceled = True

    async def run(self, session: PaymentSession, guard: TickGuard | None = None) -> PollResult:
        """Poll until a terminal status, cancellation or the guard's ceiling.

        Args:
            session: Session in AWAITING_ACTION or PROCESSING
            guard: Optional ceiling guard consulted on every tick

        Returns:
            PollResult; `completion` is set when the session COMPLETED
        """
        if session.is_terminal:
            return PollResult(session=session, queries_issued=self.queries_issued)

        while True:
            if self._canceled:
                return self._canceled_result(session)

            if guard is not None and await guard.enforce(session, self.queries_issued):
                return PollResult(session=session, queries_issued=self.queries_issued)

            result = await self._query_with_retries(session, guard)

            if self._canceled:
                if result is not None:
                    logger.info(
                        "Discarding status %s for canceled session %s",
                        result.status,
                        session.session_id,
                    )
                return self._canceled_result(session)

            if result is not None:
                completion = await self._apply(session, result)
                if session.is_terminal:
                    return PollResult(
                        session=session,
                        queries_issued=self.queries_issued,
                        completion=completion,
                    )

            await self._sleep(self.config.poll_interval_seconds)

    async def _query_with_retries(
        self, session: PaymentSession, guard: TickGuard | None
    ) -> StatusResult | None:
        """One tick's query; transport errors are retried, then treated as a stall."""
        attempts = self.config.max_transport_retries
        for attempt in range(1, attempts + 1):
            self.queries_issued += 1
            try:
                return await self.gateway.query_status(session.session_id)
            except PollingTransportError as e:
                logger.warning(
                    "Status query %d/%d for session %s failed: %s",
                    attempt,
                    attempts,
                    session.session_id,
                    e,
                )

            if attempt == attempts or self._canceled:
                break
            if guard is not None and guard.expired():
                break
            if self.config.transport_retry_delay_seconds:
                await self._sleep(self.config.transport_retry_delay_seconds)

        logger.warning(
            "Session %s stalled: no status after %d attempts", session.session_id, attempts
        )
        return None

    async def _apply(
        self, session: PaymentSession, result: StatusResult
    ) -> PaymentCompletion | None:
        """Map a gateway status onto the session; unknown or unchanged is a no-op."""
        gateway_status = result.status.upper()
        event = GATEWAY_STATUS_EVENTS.get(gateway_status)
        if event is None or not SessionStateMachine.can_apply(session.status, event):
            logger.debug("Session %s still %s (gateway: %s)", session.session_id, session.status.value, gateway_status)
            return None

        reason = None
        if event == SessionEvent.EXPIRED:
            reason = str(SessionExpired(session.session_id))
        elif event == SessionEvent.FAILED:
            reason = str(result.raw_payload.get("message") or "payment failed at the gateway")

        previous = SessionStateMachine.apply(session, event, reason=reason)
        logger.info(
            "Session %s: %s -> %s",
            session.session_id,
            previous.value,
            session.status.value,
        )
        await self._emit(
            SessionStatusChanged(
                metadata=self._metadata(),
                session_id=session.session_id,
                previous_status=previous.value,
                new_status=session.status.value,
                gateway_status=gateway_status,
            )
        )

        if session.status == SessionStatus.COMPLETED:
            completion = PaymentCompletion(
                session_id=session.session_id,
                invoice_ref=session.invoice_ref,
                provider=session.provider,
                amount=result.amount if result.amount is not None else session.amount,
                provider_reference=result.provider_reference,
                payer_phone=session.payer_phone,
                raw_payload=result.raw_payload,
            )
            await self._emit(
                SessionCompleted(
                    metadata=self._metadata(),
                    session_id=session.session_id,
                    invoice_ref=session.invoice_ref,
                    amount=completion.amount,
                    provider_reference=completion.provider_reference,
                )
            )
            return completion

        if session.status == SessionStatus.FAILED:
            await self._emit(
                SessionFailed(
                    metadata=self._metadata(),
                    session_id=session.session_id,
                    reason=session.failure_reason or "failed",
                    expired=event == SessionEvent.EXPIRED,
                )
            )
        return None

    def _canceled_result(self, session: PaymentSession) -> PollResult:
        logger.info("Polling stopped for canceled session %s", session.session_id)
        return PollResult(session=session, queries_issued=self.queries_issued, canceled=True)

    def _metadata(self) -> EventMetadata:
        return EventMetadata.create(correlation_id=self.correlation_id)

    async def _emit(self, event) -> None:
        if self.emitter is not None:
            await self.emitter.emit(event)
