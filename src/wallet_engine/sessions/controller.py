"""Timeout/Retry Controller - one payment attempt, end to end.

PaymentFlow wires the pieces together:

    open()  ->  Session Initiator (NEW or REUSED)
    run_until_terminal()  ->  Status Poller under a TimeoutGuard
                          ->  Settlement Recorder on COMPLETED
    retry() ->  discard the session, open() again (gateway reuse applies)
    cancel() -> stop polling, discard late results

The flow also owns the user-visible display state.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable

from wallet_engine.config import FlowConfig
from wallet_engine.errors import RetryNotAllowed, SessionCreationFailed, SettlementRejected
from wallet_engine.events import AsyncEventEmitter, EventMetadata, SessionCanceled, SessionTimedOut
from wallet_engine.gateway.base import WalletGateway
from wallet_engine.sessions.initiator import SessionInitiator
from wallet_engine.sessions.poller import PollResult, Sleep, StatusPoller
from wallet_engine.sessions.state_machine import SessionStateMachine
from wallet_engine.sessions.types import (
    InitiationOutcome,
    PaymentSession,
    Presentation,
    SessionEvent,
    SessionStatus,
    WalletProvider,
)
from wallet_engine.settlement.backend import SettlementResult
from wallet_engine.settlement.recorder import SettlementRecorder

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class DisplayState(str, Enum):
    """What the operator sees for a flow."""

    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"  # retry offered
    TIMED_OUT = "TIMED_OUT"  # retry offered
    SETTLEMENT_REJECTED = "SETTLEMENT_REJECTED"  # payer charged, ledger not updated
    SETTLEMENT_ERROR = "SETTLEMENT_ERROR"  # payer charged, recording failed
    CANCELED = "CANCELED"


RETRYABLE_STATES = frozenset({DisplayState.FAILED, DisplayState.TIMED_OUT})


class TimeoutGuard:
    """Ceiling on elapsed time since session creation.

    Armed when the session is created. enforce() forces TIMED_OUT at most
    once; a session that already reached a terminal status is left alone.
    """

    def __init__(
        self,
        timeout_seconds: float,
        *,
        clock: Clock = time.monotonic,
        emitter: AsyncEventEmitter | None = None,
        correlation_id: str | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self.started_at = clock()
        self.emitter = emitter
        self.correlation_id = correlation_id
        self.fired = False

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def expired(self) -> bool:
        return self.elapsed() >= self.timeout_seconds

    async def enforce(self, session: PaymentSession, queries_issued: int) -> bool:
        if self.fired or session.is_terminal or not self.expired():
            return False

        elapsed = self.elapsed()
        SessionStateMachine.apply(
            session,
            SessionEvent.TIMED_OUT,
            reason=f"no terminal status after {elapsed:g}s",
        )
        self.fired = True
        logger.warning(
            "Session %s timed out after %.1fs (%d status queries)",
            session.session_id,
            elapsed,
            queries_issued,
        )
        if self.emitter is not None:
            await self.emitter.emit(
                SessionTimedOut(
                    metadata=EventMetadata.create(correlation_id=self.correlation_id),
                    session_id=session.session_id,
                    elapsed_seconds=elapsed,
                    queries_issued=queries_issued,
                )
            )
        return True


@dataclass(frozen=True)
class FlowRequest:
    """What the operator asked to collect."""

    invoice_ref: str
    amount: Decimal
    provider: WalletProvider
    payer_phone: str | None = None
    payer_name: str | None = None


class PaymentFlow:
    """One wallet payment attempt for an invoice, including its retries.

    Not safe to drive from two tasks at once; the API runs one background
    task per flow.
    """

    def __init__(
        self,
        request: FlowRequest,
        *,
        gateway: WalletGateway,
        recorder: SettlementRecorder,
        config: FlowConfig | None = None,
        initiator: SessionInitiator | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        emitter: AsyncEventEmitter | None = None,
        flow_id: str | None = None,
    ):
        self.flow_id = flow_id or uuid.uuid4().hex
        self.request = request
        self.gateway = gateway
        self.recorder = recorder
        self.config = config or FlowConfig()
        self.emitter = emitter
        self.initiator = initiator or SessionInitiator(gateway, emitter=emitter)
        self._clock = clock
        self._sleep = sleep

        self.session: PaymentSession | None = None
        self.presentation: Presentation | None = None
        self.reused = False
        self.attempts = 0
        self.display_state = DisplayState.IN_PROGRESS
        self.message = ""
        self.settlement: SettlementResult | None = None
        self.last_poll: PollResult | None = None
        self._poller: StatusPoller | None = None
        self._guard: TimeoutGuard | None = None

    @property
    def retryable(self) -> bool:
        return self.display_state in RETRYABLE_STATES

    @property
    def session_status(self) -> SessionStatus | None:
        return self.session.status if self.session is not None else None

    async def open(self) -> InitiationOutcome:
        """Acquire a session (new or reused) and arm the timeout guard.

        Raises:
            SessionCreationFailed: the flow is left FAILED and retryable
        """
        self.attempts += 1
        self.display_state = DisplayState.IN_PROGRESS
        self.message = "Opening payment session"
        try:
            outcome = await self.initiator.open_session(
                invoice_ref=self.request.invoice_ref,
                amount=self.request.amount,
                provider=self.request.provider,
                payer_phone=self.request.payer_phone,
                payer_name=self.request.payer_name,
                correlation_id=self.flow_id,
            )
        except SessionCreationFailed as e:
            self.display_state = DisplayState.FAILED
            self.message = str(e)
            logger.warning("Flow %s: session creation failed: %s", self.flow_id, e)
            raise

        self.session = outcome.session
        self.reused = outcome.reused
        if outcome.presentation is not None:
            self.presentation = outcome.presentation
        self._guard = TimeoutGuard(
            self.config.timeout_seconds,
            clock=self._clock,
            emitter=self.emitter,
            correlation_id=self.flow_id,
        )
        self._poller = StatusPoller(
            self.gateway,
            config=self.config,
            sleep=self._sleep,
            emitter=self.emitter,
            correlation_id=self.flow_id,
        )
        self.message = (
            "Payment already in progress, waiting for confirmation"
            if outcome.reused
            else "Waiting for the payer to confirm"
        )
        return outcome

    async def run_until_terminal(self) -> DisplayState:
        """Poll the open session to its end, then settle on success."""
        if self.session is None or self._poller is None:
            return self.display_state

        result = await self._poller.run(self.session, guard=self._guard)
        self.last_poll = result

        if result.canceled:
            return self.display_state

        status = result.status
        if status == SessionStatus.TIMED_OUT:
            self.display_state = DisplayState.TIMED_OUT
            self.message = "The payment was not confirmed in time. You can retry."
        elif status == SessionStatus.FAILED:
            self.display_state = DisplayState.FAILED
            self.message = self.session.failure_reason or "Payment failed"
        elif status == SessionStatus.COMPLETED and result.completion is not None:
            await self._settle(result)
        return self.display_state

    async def run(self) -> DisplayState:
        """open() then run_until_terminal(); creation failure ends as FAILED."""
        try:
            await self.open()
        except SessionCreationFailed:
            return self.display_state
        return await self.run_until_terminal()

    async def retry(self) -> InitiationOutcome:
        """Discard the current session and initiate again.

        Raises:
            RetryNotAllowed: unless the flow is FAILED or TIMED_OUT
            SessionCreationFailed: the new attempt could not be opened
        """
        if not self.retryable:
            raise RetryNotAllowed(self.display_state.value)

        previous = self.session.session_id if self.session is not None else None
        logger.info("Flow %s: retrying (previous session %s)", self.flow_id, previous)
        self.session = None
        self.last_poll = None
        self._poller = None
        self._guard = None
        return await self.open()

    async def cancel(self) -> None:
        """Abandon the flow. Any in-flight status result is discarded."""
        if self.display_state != DisplayState.IN_PROGRESS:
            return
        if self._poller is not None:
            self._poller.cancel()
        self.display_state = DisplayState.CANCELED
        self.message = "Payment canceled"

        if self.session is not None:
            logger.info("Flow %s: canceled session %s", self.flow_id, self.session.session_id)
            if self.emitter is not None:
                await self.emitter.emit(
                    SessionCanceled(
                        metadata=EventMetadata.create(correlation_id=self.flow_id),
                        session_id=self.session.session_id,
                    )
                )

    async def _settle(self, result: PollResult) -> None:
        completion = result.completion
        reference = completion.provider_reference or completion.session_id
        try:
            self.settlement = await self.recorder.record(completion, correlation_id=self.flow_id)
        except SettlementRejected as e:
            self.display_state = DisplayState.SETTLEMENT_REJECTED
            self.message = (
                f"{e.reason}. The payment was collected (reference {reference}) but not "
                "recorded on the invoice; reconcile it manually."
            )
            return
        except Exception:
            logger.exception(
                "Flow %s: recording the completed session %s failed; needs manual reconciliation",
                self.flow_id,
                completion.session_id,
            )
            self.display_state = DisplayState.SETTLEMENT_ERROR
            self.message = (
                f"The payment was collected (reference {reference}) but could not be "
                "recorded on the invoice; reconcile it manually."
            )
            return

        self.display_state = DisplayState.SUCCESS
        self.message = f"Payment recorded, receipt {self.settlement.receipt_number}"
