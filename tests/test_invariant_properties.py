"""Property-based tests for session and balance invariants.

Random event and payment sequences; the invariants must hold whatever the
order or combination.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from wallet_engine.errors import InvalidTransitionError
from wallet_engine.models import Invoice, InvoiceState
from wallet_engine.sessions import SessionEvent, SessionStateMachine, SessionStatus

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("100000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


def _invoice(total: Decimal) -> Invoice:
    return Invoice(
        reference="INV-P",
        total_amount=total,
        amount_settled=Decimal("0"),
        amount_remaining=total,
        state=InvoiceState.UNPAID.value,
        line_items=[],
    )


class TestSessionStatusInvariants:
    """Whatever the gateway reports, status only moves forward."""

    @given(events=st.lists(st.sampled_from(list(SessionEvent)), max_size=20))
    @settings(max_examples=200)
    def test_terminal_status_is_final(self, events: list[SessionEvent]):
        status = SessionStatus.INITIATING
        reached_terminal = None

        for event in events:
            if not SessionStateMachine.can_apply(status, event):
                with pytest.raises(InvalidTransitionError):
                    SessionStateMachine.next_status(status, event)
                continue
            status = SessionStateMachine.next_status(status, event)
            if reached_terminal is not None:
                pytest.fail(f"{reached_terminal} accepted {event}")
            if status.is_terminal:
                reached_terminal = status

        if reached_terminal is not None:
            assert status == reached_terminal

    @given(events=st.lists(st.sampled_from(list(SessionEvent)), max_size=20))
    def test_never_returns_to_initiating(self, events: list[SessionEvent]):
        status = SessionStatus.INITIATING
        for event in events:
            if SessionStateMachine.can_apply(status, event):
                status = SessionStateMachine.next_status(status, event)
                assert status != SessionStatus.INITIATING


class TestInvoiceBalanceInvariants:
    """settled + remaining == total after every accepted payment."""

    @given(total=amounts, payments=st.lists(amounts, max_size=15))
    @settings(max_examples=200)
    def test_balance_always_adds_up(self, total: Decimal, payments: list[Decimal]):
        invoice = _invoice(total)

        for amount in payments:
            if amount > invoice.amount_remaining:
                with pytest.raises(ValueError):
                    invoice.apply_settlement(amount)
            else:
                invoice.apply_settlement(amount)

            assert invoice.amount_settled + invoice.amount_remaining == invoice.total_amount
            assert Decimal("0") <= invoice.amount_remaining <= invoice.total_amount
            if invoice.amount_remaining == 0:
                assert invoice.state == InvoiceState.PAID.value
            elif invoice.amount_settled == 0:
                assert invoice.state == InvoiceState.UNPAID.value
            else:
                assert invoice.state == InvoiceState.PARTIAL.value

    @given(total=amounts)
    def test_full_payment_pays_the_invoice(self, total: Decimal):
        invoice = _invoice(total)

        invoice.apply_settlement(total)

        assert invoice.is_paid
        with pytest.raises(ValueError):
            invoice.apply_settlement(Decimal("0.01"))
