"""Payment sessions: types, state machine and per-wallet rules.

The initiator, poller and controller live in their own modules
(wallet_engine.sessions.initiator / .poller / .controller) and are imported
from there.
"""

from wallet_engine.sessions.state_machine import SessionStateMachine
from wallet_engine.sessions.types import (
    TERMINAL_STATUSES,
    InitiationKind,
    InitiationOutcome,
    PaymentCompletion,
    PaymentMethod,
    PaymentSession,
    Presentation,
    SessionEvent,
    SessionStatus,
    WalletProvider,
)
from wallet_engine.sessions.wallets import DEFAULT_WALLETS, WalletConfig

__all__ = [
    "DEFAULT_WALLETS",
    "InitiationKind",
    "InitiationOutcome",
    "PaymentCompletion",
    "PaymentMethod",
    "PaymentSession",
    "Presentation",
    "SessionEvent",
    "SessionStateMachine",
    "SessionStatus",
    "TERMINAL_STATUSES",
    "WalletConfig",
    "WalletProvider",
]
