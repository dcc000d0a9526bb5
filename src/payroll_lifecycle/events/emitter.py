"""In-process delivery of payroll events.

Services emit while a command's transaction is open. The command layer
holds those events in a batch and forwards them only after the commit,
so subscribers never hear about a transition that was rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from payroll_lifecycle.events.types import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class EventEmitter:
    """Routes events to subscribers by event class name.

    A subscriber that raises is logged and skipped; the rest still
    receive the event and the emitting service never sees the error.
    """

    def __init__(self) -> None:
        # (event type names or None for every event, handler)
        self._subscribers: list[tuple[frozenset[str] | None, EventHandler]] = []
        self._held: list[DomainEvent] | None = None

    def on(
        self,
        event_type: type[DomainEvent] | list[type[DomainEvent]],
        handler: EventHandler,
    ) -> None:
        types = event_type if isinstance(event_type, list) else [event_type]
        self._subscribers.append((frozenset(t.__name__ for t in types), handler))

    def on_all(self, handler: EventHandler) -> None:
        self._subscribers.append((None, handler))

    def emit(self, event: DomainEvent) -> None:
        if self._held is not None:
            self._held.append(event)
            return
        self._deliver(event)

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Hold emitted events; deliver them on a clean exit, drop them on error."""
        self._held = []
        try:
            yield
        except BaseException:
            self._held = None
            raise
        held, self._held = self._held, None
        for event in held:
            self._deliver(event)

    def _deliver(self, event: DomainEvent) -> None:
        for names, handler in self._subscribers:
            if names is not None and event.event_type not in names:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s", handler, event.event_type)
