"""Tests for PaymentFlow: timeout, retry, cancel and settlement outcome."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from wallet_engine.errors import RetryNotAllowed
from wallet_engine.events import SessionCanceled, SettlementDeclined, SettlementRecorded
from wallet_engine.sessions import SessionStatus, WalletProvider
from wallet_engine.sessions.controller import DisplayState, FlowRequest, PaymentFlow


@pytest.fixture
def make_flow(gateway, recorder, flow_config, clock, sleep, emitter):
    def _make(amount="4000", provider=WalletProvider.WALLET_B, invoice_ref="INV-1001"):
        return PaymentFlow(
            FlowRequest(invoice_ref=invoice_ref, amount=Decimal(amount), provider=provider),
            gateway=gateway,
            recorder=recorder,
            config=flow_config,
            clock=clock,
            sleep=sleep,
            emitter=emitter,
        )

    return _make


class TestSuccessfulFlow:
    """Open, poll, settle."""

    async def test_completion_settles_invoice(self, make_flow, gateway, backend, invoice, events):
        flow = make_flow()
        outcome = await flow.open()
        assert flow.display_state == DisplayState.IN_PROGRESS
        assert flow.presentation is outcome.presentation
        gateway.script_statuses(outcome.session.session_id, ["PENDING", "COMPLETED"])

        state = await flow.run_until_terminal()

        assert state == DisplayState.SUCCESS
        assert flow.settlement.receipt_number == "REC-INV-1001-001"
        assert flow.settlement.new_amount_remaining == Decimal("6000")
        assert "REC-INV-1001-001" in flow.message
        assert flow.retryable is False

        stored = await backend.get_invoice("INV-1001")
        assert stored.amount_remaining == Decimal("6000")
        assert stored.state == "PARTIAL"

        recorded = [e for e in events if isinstance(e, SettlementRecorded)]
        assert len(recorded) == 1
        assert recorded[0].metadata.correlation_id == flow.flow_id

    async def test_retry_refused_after_success(self, make_flow, gateway, invoice):
        flow = make_flow()
        outcome = await flow.open()
        gateway.simulate_completion(outcome.session.session_id)
        await flow.run_until_terminal()

        with pytest.raises(RetryNotAllowed):
            await flow.retry()


class TestTimeoutAndRetry:
    """Retry after TIMED_OUT must not open a second chargeable session."""

    async def test_retry_after_timeout_reuses_gateway_session(
        self, make_flow, gateway, clock, invoice
    ):
        flow = make_flow()

        state = await flow.run()

        assert state == DisplayState.TIMED_OUT
        assert flow.session.status == SessionStatus.TIMED_OUT
        assert flow.retryable is True
        assert clock.now == 120.0
        first_session_id = flow.session.session_id

        outcome = await flow.retry()

        assert outcome.reused is True
        assert outcome.presentation is None
        assert flow.session.session_id == first_session_id
        assert flow.session.status == SessionStatus.AWAITING_ACTION
        assert flow.attempts == 2
        assert flow.reused is True
        # the first attempt's QR code is still what the payer holds
        assert flow.presentation is not None
        assert gateway.create_calls == 2
        assert gateway.active_session_count("INV-1001", WalletProvider.WALLET_B) == 1

        gateway.simulate_completion(first_session_id)
        assert await flow.run_until_terminal() == DisplayState.SUCCESS

    async def test_retry_refused_while_in_progress(self, make_flow, invoice):
        flow = make_flow()
        await flow.open()

        with pytest.raises(RetryNotAllowed) as exc_info:
            await flow.retry()

        assert exc_info.value.state == "IN_PROGRESS"

    async def test_retry_after_gateway_failure_opens_new_session(self, make_flow, gateway, invoice):
        flow = make_flow()
        first = await flow.open()
        gateway.simulate_failure(first.session.session_id)

        assert await flow.run_until_terminal() == DisplayState.FAILED
        assert flow.retryable is True

        second = await flow.retry()

        assert second.reused is False
        assert second.session.session_id != first.session.session_id
        assert second.presentation is not None

    async def test_retry_after_creation_failure(self, make_flow, gateway, invoice):
        flow = make_flow()
        gateway.fail_next_create("Gateway down")

        state = await flow.run()

        assert state == DisplayState.FAILED
        assert flow.session is None
        assert flow.message == "Gateway down"
        assert flow.retryable is True

        outcome = await flow.retry()
        assert outcome.reused is False
        assert flow.display_state == DisplayState.IN_PROGRESS


class TestSettlementRejection:
    """A refused settlement after COMPLETED is flagged, not retracted."""

    async def test_rejection_after_completion(
        self, make_flow, gateway, backend, recorder, invoice, events, caplog
    ):
        await recorder.record_cash(invoice_ref="INV-1001", amount=Decimal("5000"))
        flow = make_flow(amount="7000")
        outcome = await flow.open()
        gateway.simulate_completion(outcome.session.session_id, provider_reference="TX-777")

        state = await flow.run_until_terminal()

        assert state == DisplayState.SETTLEMENT_REJECTED
        assert flow.session.status == SessionStatus.COMPLETED
        assert "exceeds the remaining balance" in flow.message
        assert "TX-777" in flow.message
        assert flow.retryable is False

        declined = [e for e in events if isinstance(e, SettlementDeclined)]
        assert len(declined) == 1
        assert declined[0].requires_reconciliation is True
        assert declined[0].amount == Decimal("7000")

        stored = await backend.get_invoice("INV-1001")
        assert stored.amount_remaining == Decimal("5000")
        assert "manual reconciliation" in caplog.text

    async def test_backend_failure_ends_the_flow(
        self, make_flow, gateway, backend, invoice, caplog, monkeypatch
    ):
        async def unavailable(request):
            raise OperationalError("INSERT", {}, ConnectionError("database is gone"))

        monkeypatch.setattr(backend, "record_settlement", unavailable)
        flow = make_flow()
        outcome = await flow.open()
        gateway.simulate_completion(outcome.session.session_id, provider_reference="TX-900")

        state = await flow.run_until_terminal()

        assert state == DisplayState.SETTLEMENT_ERROR
        assert flow.session.status == SessionStatus.COMPLETED
        assert flow.settlement is None
        assert flow.retryable is False
        assert "TX-900" in flow.message
        assert "reconcile it manually" in flow.message
        assert "needs manual reconciliation" in caplog.text


class TestCancel:
    """Cancel stops polling."""

    async def test_cancel_before_polling(self, make_flow, gateway, events, invoice):
        flow = make_flow()
        outcome = await flow.open()

        await flow.cancel()
        state = await flow.run_until_terminal()

        assert state == DisplayState.CANCELED
        assert flow.last_poll.canceled is True
        assert gateway.queries_for(outcome.session.session_id) == 0
        assert [e.session_id for e in events if isinstance(e, SessionCanceled)] == [
            outcome.session.session_id
        ]

    async def test_cancel_is_noop_once_finished(self, make_flow, gateway, invoice):
        flow = make_flow()
        outcome = await flow.open()
        gateway.simulate_failure(outcome.session.session_id)
        await flow.run_until_terminal()

        await flow.cancel()

        assert flow.display_state == DisplayState.FAILED
