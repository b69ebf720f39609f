"""Payment session state machine with transition validation."""

from __future__ import annotations

from wallet_engine.errors import InvalidTransitionError
from wallet_engine.sessions.types import PaymentSession, SessionEvent, SessionStatus


class SessionStateMachine:
    """State machine for payment session status transitions.

    Allowed transitions:
    - initiating → awaiting_action (presented, resumed)
    - awaiting_action → processing (activity)
    - awaiting_action/processing → completed (succeeded)
    - awaiting_action/processing → failed (failed, expired)
    - awaiting_action/processing → timed_out (timed_out)

    Terminal statuses accept no events.
    """

    VALID_TRANSITIONS: dict[SessionStatus, dict[SessionEvent, SessionStatus]] = {
        SessionStatus.INITIATING: {
            SessionEvent.PRESENTED: SessionStatus.AWAITING_ACTION,
            SessionEvent.RESUMED: SessionStatus.AWAITING_ACTION,
        },
        SessionStatus.AWAITING_ACTION: {
            SessionEvent.ACTIVITY: SessionStatus.PROCESSING,
            SessionEvent.SUCCEEDED: SessionStatus.COMPLETED,
            SessionEvent.FAILED: SessionStatus.FAILED,
            SessionEvent.EXPIRED: SessionStatus.FAILED,
            SessionEvent.TIMED_OUT: SessionStatus.TIMED_OUT,
        },
        SessionStatus.PROCESSING: {
            SessionEvent.SUCCEEDED: SessionStatus.COMPLETED,
            SessionEvent.FAILED: SessionStatus.FAILED,
            SessionEvent.EXPIRED: SessionStatus.FAILED,
            SessionEvent.TIMED_OUT: SessionStatus.TIMED_OUT,
        },
        SessionStatus.COMPLETED: {},
        SessionStatus.FAILED: {},
        SessionStatus.TIMED_OUT: {},
    }

    @classmethod
    def can_apply(cls, status: SessionStatus, event: SessionEvent) -> bool:
        """Check if an event is accepted in this status."""
        return event in cls.VALID_TRANSITIONS.get(status, {})

    @classmethod
    def next_status(cls, status: SessionStatus, event: SessionEvent) -> SessionStatus:
        """Resolve the status an event leads to, raising if not allowed."""
        allowed = cls.VALID_TRANSITIONS.get(status, {})
        if event not in allowed:
            reason = "session is terminal" if status.is_terminal else None
            raise InvalidTransitionError(status.value, event.value, reason)
        return allowed[event]

    @classmethod
    def apply(
        cls,
        session: PaymentSession,
        event: SessionEvent,
        *,
        reason: str | None = None,
    ) -> SessionStatus:
        """Apply an event to a session and return its previous status."""
        previous = session.status
        session.status = cls.next_status(previous, event)
        if session.status == SessionStatus.FAILED:
            session.failure_reason = reason or event.value
        elif session.status == SessionStatus.TIMED_OUT:
            session.failure_reason = reason or "timed out"
        return previous

    @classmethod
    def get_next_events(cls, status: SessionStatus) -> list[SessionEvent]:
        """Get the events accepted from the current status."""
        return list(cls.VALID_TRANSITIONS.get(status, {}))
