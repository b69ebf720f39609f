"""Session Initiator - acquire-or-reuse a gateway collection session.

A create call either opens a new session (with a presentation artifact) or,
when the gateway already holds an active session for the same
invoice+provider pair, hands that one back. Both come out as a single
InitiationOutcome so callers never special-case reuse.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from wallet_engine.errors import SessionCreationFailed
from wallet_engine.events import AsyncEventEmitter, EventMetadata, SessionOpened
from wallet_engine.gateway.base import CreateSessionRequest, WalletGateway
from wallet_engine.sessions.state_machine import SessionStateMachine
from wallet_engine.sessions.types import (
    InitiationKind,
    InitiationOutcome,
    PaymentSession,
    SessionEvent,
    WalletProvider,
)
from wallet_engine.sessions.wallets import (
    DEFAULT_WALLETS,
    WalletConfig,
    build_presentation,
    validate_amount,
    validate_phone,
)

logger = logging.getLogger(__name__)


class SessionInitiator:
    """Opens collection sessions at the wallet gateway."""

    def __init__(
        self,
        gateway: WalletGateway,
        *,
        wallets: dict[WalletProvider, WalletConfig] | None = None,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.gateway = gateway
        self.wallets = wallets or DEFAULT_WALLETS
        self.emitter = emitter

    async def open_session(
        self,
        *,
        invoice_ref: str,
        amount: Decimal,
        provider: WalletProvider,
        payer_phone: str | None = None,
        payer_name: str | None = None,
        correlation_id: str | None = None,
    ) -> InitiationOutcome:
        """Open a new session or reattach to the active one.

        Args:
            invoice_ref: Invoice reference the payment is collected for
            amount: Amount to collect
            provider: Wallet to collect through
            payer_phone: Optional payer phone, normalized before sending
            payer_name: Optional payer display name
            correlation_id: Flow id stamped on emitted events

        Returns:
            InitiationOutcome (NEW with presentation, or REUSED without)

        Raises:
            SessionCreationFailed: validation, transport or gateway rejection
        """
        config = self.wallets.get(provider)
        if config is None:
            raise SessionCreationFailed(f"Wallet {provider.value} is not configured")
        if not invoice_ref:
            raise SessionCreationFailed("Invoice reference is required")

        amount = Decimal(amount)
        validate_amount(amount, config)
        normalized_phone = validate_phone(payer_phone, config) if payer_phone else None

        result = await self.gateway.create_session(
            CreateSessionRequest(
                provider=provider,
                invoice_ref=invoice_ref,
                amount=amount,
                payer_phone=normalized_phone,
                payer_name=payer_name,
            )
        )

        session = PaymentSession(
            session_id=result.session_id,
            provider=provider,
            invoice_ref=invoice_ref,
            amount=amount,
            payer_phone=normalized_phone,
        )

        if result.reused:
            SessionStateMachine.apply(session, SessionEvent.RESUMED)
            outcome = InitiationOutcome(kind=InitiationKind.REUSED, session=session)
            logger.info(
                "Reusing active session %s for invoice %s (%s)",
                session.session_id,
                invoice_ref,
                provider.value,
            )
        else:
            presentation = build_presentation(
                config,
                qr_code=result.presentation_payload,
                deep_link_primary=result.deep_link_primary,
                deep_link_fallback=result.deep_link_fallback,
            )
            SessionStateMachine.apply(session, SessionEvent.PRESENTED)
            outcome = InitiationOutcome(
                kind=InitiationKind.NEW, session=session, presentation=presentation
            )
            logger.info(
                "Opened session %s for invoice %s: %s %s",
                session.session_id,
                invoice_ref,
                amount,
                provider.value,
            )

        if self.emitter is not None:
            await self.emitter.emit(
                SessionOpened(
                    metadata=EventMetadata.create(correlation_id=correlation_id),
                    session_id=session.session_id,
                    provider=provider.value,
                    invoice_ref=invoice_ref,
                    amount=amount,
                    reused=outcome.reused,
                )
            )

        return outcome
