"""Tests for the Session Initiator (acquire-or-reuse)."""

from decimal import Decimal

import pytest

from wallet_engine.errors import SessionCreationFailed
from wallet_engine.events import SessionOpened
from wallet_engine.sessions import InitiationKind, SessionStatus, WalletProvider
from wallet_engine.sessions.initiator import SessionInitiator


@pytest.fixture
def initiator(gateway, emitter):
    return SessionInitiator(gateway, emitter=emitter)


class TestNewSession:
    """First create call for an invoice+provider pair."""

    async def test_new_session_has_presentation(self, initiator, gateway, events):
        outcome = await initiator.open_session(
            invoice_ref="INV-1",
            amount=Decimal("5000"),
            provider=WalletProvider.WALLET_A,
            payer_phone="+221 77 123 45 67",
            correlation_id="flow-1",
        )

        assert outcome.kind == InitiationKind.NEW
        assert outcome.reused is False
        assert outcome.session.status == SessionStatus.AWAITING_ACTION
        assert outcome.session.payer_phone == "771234567"

        presentation = outcome.presentation
        assert presentation is not None
        assert presentation.qr_code.startswith("data:image/png;base64,")
        assert presentation.deep_link_primary.startswith("wallet-a://")
        assert len(presentation.action_links) == 2

        opened = [e for e in events if isinstance(e, SessionOpened)]
        assert len(opened) == 1
        assert opened[0].session_id == outcome.session.session_id
        assert opened[0].reused is False
        assert opened[0].metadata.correlation_id == "flow-1"

    async def test_providers_get_separate_sessions(self, initiator):
        a = await initiator.open_session(
            invoice_ref="INV-1", amount=Decimal("5000"), provider=WalletProvider.WALLET_A
        )
        b = await initiator.open_session(
            invoice_ref="INV-1", amount=Decimal("5000"), provider=WalletProvider.WALLET_B
        )

        assert b.kind == InitiationKind.NEW
        assert a.session.session_id != b.session.session_id
        assert b.presentation.deep_link_primary is None


class TestReusedSession:
    """The gateway hands back the active session."""

    async def test_second_open_reuses_active_session(self, initiator, gateway, events):
        first = await initiator.open_session(
            invoice_ref="INV-1", amount=Decimal("5000"), provider=WalletProvider.WALLET_B
        )
        second = await initiator.open_session(
            invoice_ref="INV-1", amount=Decimal("5000"), provider=WalletProvider.WALLET_B
        )

        assert second.kind == InitiationKind.REUSED
        assert second.presentation is None
        assert second.session.session_id == first.session.session_id
        assert second.session.status == SessionStatus.AWAITING_ACTION
        assert gateway.active_session_count("INV-1", WalletProvider.WALLET_B) == 1
        assert [e.reused for e in events if isinstance(e, SessionOpened)] == [False, True]

    async def test_finished_session_is_not_reused(self, initiator, gateway):
        first = await initiator.open_session(
            invoice_ref="INV-1", amount=Decimal("5000"), provider=WalletProvider.WALLET_B
        )
        gateway.simulate_failure(first.session.session_id)

        second = await initiator.open_session(
            invoice_ref="INV-1", amount=Decimal("5000"), provider=WalletProvider.WALLET_B
        )

        assert second.kind == InitiationKind.NEW
        assert second.session.session_id != first.session.session_id


class TestCreationFailures:
    """SessionCreationFailed paths."""

    async def test_gateway_rejection(self, initiator, gateway):
        gateway.fail_next_create("Service temporarily unavailable")

        with pytest.raises(SessionCreationFailed, match="temporarily unavailable"):
            await initiator.open_session(
                invoice_ref="INV-1", amount=Decimal("5000"), provider=WalletProvider.WALLET_B
            )

    async def test_invalid_phone_fails_before_gateway_call(self, initiator, gateway):
        with pytest.raises(SessionCreationFailed):
            await initiator.open_session(
                invoice_ref="INV-1",
                amount=Decimal("5000"),
                provider=WalletProvider.WALLET_A,
                payer_phone="701234567",
            )
        assert gateway.create_calls == 0

    async def test_amount_over_limit_fails_before_gateway_call(self, initiator, gateway):
        with pytest.raises(SessionCreationFailed, match="Maximum"):
            await initiator.open_session(
                invoice_ref="INV-1",
                amount=Decimal("2500000"),
                provider=WalletProvider.WALLET_A,
            )
        assert gateway.create_calls == 0

    async def test_missing_invoice_reference(self, initiator):
        with pytest.raises(SessionCreationFailed, match="Invoice reference"):
            await initiator.open_session(
                invoice_ref="", amount=Decimal("5000"), provider=WalletProvider.WALLET_B
            )
