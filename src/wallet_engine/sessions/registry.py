"""In-process registry of payment flows and their polling tasks."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict

from wallet_engine.config import FlowConfig
from wallet_engine.events import AsyncEventEmitter
from wallet_engine.gateway.base import WalletGateway
from wallet_engine.sessions.controller import Clock, DisplayState, FlowRequest, PaymentFlow
from wallet_engine.sessions.poller import Sleep
from wallet_engine.settlement.recorder import SettlementRecorder

logger = logging.getLogger(__name__)

DEFAULT_MAX_FINISHED_FLOWS = 1000


class FlowRegistry:
    """Starts flows and keeps one background polling task per flow.

    Flows live in memory only: a restart forgets them, and a payment that
    completes afterwards is picked up by the gateway notification instead.
    Finished flows stay readable until ``max_finished_flows`` newer ones
    have finished; the oldest are then forgotten.
    """

    def __init__(
        self,
        *,
        gateway: WalletGateway,
        recorder: SettlementRecorder,
        config: FlowConfig | None = None,
        emitter: AsyncEventEmitter | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        max_finished_flows: int = DEFAULT_MAX_FINISHED_FLOWS,
    ):
        if max_finished_flows < 0:
            raise ValueError("max_finished_flows cannot be negative")
        self.gateway = gateway
        self.recorder = recorder
        self.config = config or FlowConfig()
        self.emitter = emitter
        self.max_finished_flows = max_finished_flows
        self._clock = clock
        self._sleep = sleep
        self._flows: dict[str, PaymentFlow] = {}
        self._by_session: dict[str, PaymentFlow] = {}
        self._tasks: dict[str, asyncio.Task[DisplayState]] = {}
        self._finished: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._flows)

    @property
    def active_count(self) -> int:
        """Flows still waiting on the payer."""
        return sum(1 for f in self._flows.values() if f.display_state == DisplayState.IN_PROGRESS)

    def get(self, flow_id: str) -> PaymentFlow | None:
        return self._flows.get(flow_id)

    def find_by_session(self, session_id: str) -> PaymentFlow | None:
        """The flow that opened a gateway session, if still known."""
        return self._by_session.get(session_id)

    async def start(self, request: FlowRequest) -> PaymentFlow:
        """Open a session for a new flow and start polling it.

        Raises:
            SessionCreationFailed: nothing is registered
        """
        flow = PaymentFlow(
            request,
            gateway=self.gateway,
            recorder=self.recorder,
            config=self.config,
            clock=self._clock,
            sleep=self._sleep,
            emitter=self.emitter,
        )
        await flow.open()
        self._flows[flow.flow_id] = flow
        self._index(flow, previous_session_id=None)
        self._spawn(flow)
        return flow

    async def retry(self, flow: PaymentFlow) -> PaymentFlow:
        """Retry a FAILED or TIMED_OUT flow and resume polling.

        Raises:
            RetryNotAllowed: flow is not in a retryable state
            SessionCreationFailed: the flow stays FAILED
        """
        previous = flow.session.session_id if flow.session is not None else None
        try:
            await flow.retry()
        finally:
            self._index(flow, previous_session_id=previous)
        self._finished.pop(flow.flow_id, None)
        self._spawn(flow)
        return flow

    async def cancel(self, flow: PaymentFlow) -> PaymentFlow:
        await flow.cancel()
        return flow

    async def wait(self, flow_id: str) -> DisplayState | None:
        """Wait for a flow's polling task to finish."""
        task = self._tasks.get(flow_id)
        if task is None:
            flow = self._flows.get(flow_id)
            return flow.display_state if flow is not None else None
        return await task

    async def shutdown(self) -> None:
        """Cancel every running flow and wait for the tasks to unwind."""
        for flow in list(self._flows.values()):
            await flow.cancel()
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _index(self, flow: PaymentFlow, *, previous_session_id: str | None) -> None:
        current = flow.session.session_id if flow.session is not None else None
        if previous_session_id is not None and previous_session_id != current:
            if self._by_session.get(previous_session_id) is flow:
                del self._by_session[previous_session_id]
        if current is not None:
            self._by_session[current] = flow

    def _spawn(self, flow: PaymentFlow) -> None:
        task = asyncio.create_task(flow.run_until_terminal(), name=f"flow-{flow.flow_id}")
        self._tasks[flow.flow_id] = task
        task.add_done_callback(lambda t: self._on_task_done(flow.flow_id, t))

    def _on_task_done(self, flow_id: str, task: asyncio.Task[DisplayState]) -> None:
        if self._tasks.get(flow_id) is task:
            del self._tasks[flow_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Flow task %s crashed", task.get_name(), exc_info=task.exception())
        self._retire(flow_id)

    def _retire(self, flow_id: str) -> None:
        """Queue a finished flow for eviction, dropping the oldest over the cap."""
        if flow_id not in self._flows or flow_id in self._tasks:
            return
        self._finished[flow_id] = None
        self._finished.move_to_end(flow_id)
        while len(self._finished) > self.max_finished_flows:
            evicted_id, _ = self._finished.popitem(last=False)
            evicted = self._flows.pop(evicted_id, None)
            if evicted is None:
                continue
            session_id = evicted.session.session_id if evicted.session is not None else None
            if session_id is not None and self._by_session.get(session_id) is evicted:
                del self._by_session[session_id]
            logger.debug("Forgot finished flow %s", evicted_id)
