"""In-process publication of domain events.

Handlers subscribe by event class, by category, or to everything. A failing
handler is logged and reported back to the caller of ``emit``; the other
handlers still see the event. Plain callables run inline, coroutine handlers
are awaited together.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, TypeVar, Union

from wallet_engine.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)

EventHandler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class Subscription:
    """A handler and the events it wants. Empty filters match everything."""

    handler: EventHandler
    event_types: frozenset[str] = frozenset()
    categories: frozenset[EventCategory] = frozenset()

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


def _as_iterable(value: Any) -> Iterable[Any]:
    return value if isinstance(value, (list, tuple, set, frozenset)) else (value,)


class AsyncEventEmitter:
    """Fan domain events out to subscribed handlers.

    Usage:
        emitter = AsyncEventEmitter()

        async def notify_cashier(event: SettlementRecorded) -> None:
            await push(event.receipt_number)

        emitter.on(SettlementRecorded, notify_cashier)
        await emitter.emit(event)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def on(self, event_type: type[T] | list[type[T]], handler: EventHandler) -> None:
        """Subscribe to one event class or a list of them."""
        names = frozenset(t.__name__ for t in _as_iterable(event_type))
        self._subscriptions.append(Subscription(handler, event_types=names))

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: EventHandler,
    ) -> None:
        """Subscribe to every event in one or more categories."""
        self._subscriptions.append(
            Subscription(handler, categories=frozenset(_as_iterable(category)))
        )

    def on_all(self, handler: EventHandler) -> None:
        self._subscriptions.append(Subscription(handler))

    def off(self, handler: EventHandler) -> None:
        """Drop every subscription of ``handler``."""
        self._subscriptions = [s for s in self._subscriptions if s.handler is not handler]

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver ``event`` and return the exceptions raised by handlers."""
        errors: list[Exception] = []
        awaiting: list[Awaitable[None]] = []

        for subscription in self._subscriptions:
            if not subscription.matches(event):
                continue
            try:
                outcome = subscription.handler(event)
            except Exception as e:
                logger.exception(
                    "Handler %s failed for event %s", subscription.handler, event.event_type
                )
                errors.append(e)
                continue
            if inspect.isawaitable(outcome):
                awaiting.append(self._guarded(subscription.handler, outcome, event.event_type))

        if awaiting:
            for outcome in await asyncio.gather(*awaiting, return_exceptions=True):
                if isinstance(outcome, Exception):
                    errors.append(outcome)
        return errors

    @staticmethod
    async def _guarded(handler: EventHandler, awaitable: Awaitable[Any], event_type: str) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("Async handler %s failed for event %s", handler, event_type)
            raise
