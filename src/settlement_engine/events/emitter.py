"""In-process publisher for settlement events.

Services emit after their database work is flushed. Subscribers are
notifiers and audit sinks; one failing subscriber never blocks the others
or the settlement operation that emitted the event.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable

from settlement_engine.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


@dataclass(frozen=True)
class Subscription:
    handler: EventHandler
    event_types: frozenset[str] = frozenset()
    categories: frozenset[EventCategory] = frozenset()

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


class EventEmitter:
    """Routes events to subscribers by class name or category.

    Usage:
        emitter = EventEmitter()
        emitter.on(EscrowReleased, notify_payee)
        emitter.on_category(EventCategory.REFUND, audit_refunds)

        with emitter.batch():
            ...  # events held here
        # delivered on clean exit, dropped if the block raised

    Batches are per thread, so concurrent requests sharing one emitter
    never hold or flush each other's events.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._local = threading.local()

    def on(
        self, event_type: type[DomainEvent] | list[type[DomainEvent]], handler: EventHandler
    ) -> None:
        classes = event_type if isinstance(event_type, list) else [event_type]
        self._subscriptions.append(
            Subscription(handler, event_types=frozenset(c.__name__ for c in classes))
        )

    def on_category(
        self, category: EventCategory | list[EventCategory], handler: EventHandler
    ) -> None:
        categories = category if isinstance(category, list) else [category]
        self._subscriptions.append(Subscription(handler, categories=frozenset(categories)))

    def on_all(self, handler: EventHandler) -> None:
        self._subscriptions.append(Subscription(handler))

    def off(self, handler: EventHandler) -> None:
        """Drop every subscription of ``handler``."""
        self._subscriptions = [s for s in self._subscriptions if s.handler != handler]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver an event, or hold it while a batch is open.

        Returns the exceptions raised by subscribers (already logged).
        """
        held = self._held()
        if held is not None:
            held.append(event)
            return []
        return self._deliver(event)

    @contextmanager
    def batch(self) -> Iterator[list[DomainEvent]]:
        """Hold events until the block exits.

        Nested batches join the outer one.
        """
        outer = self._held()
        if outer is not None:
            yield outer
            return

        self._local.held = held = []
        try:
            yield held
        except BaseException:
            self._local.held = None
            logger.debug("Dropped %d held events after failure", len(held))
            raise
        self._local.held = None
        for event in held:
            self._deliver(event)

    def _held(self) -> list[DomainEvent] | None:
        return getattr(self._local, "held", None)

    def _deliver(self, event: DomainEvent) -> list[Exception]:
        failures: list[Exception] = []
        for subscription in self._subscriptions:
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.exception(
                    "Handler %r failed for %s (%s)",
                    subscription.handler,
                    event.event_type,
                    event.metadata.correlation_id,
                )
                failures.append(e)
        return failures
