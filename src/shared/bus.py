"""In-process publish/subscribe bus for ride events.

A bus instance is created by the composition root and handed to every
producer and consumer. Handlers for one kind run one after another, in the
order they subscribed, inside the task that published the event. A failing
handler is logged and skipped; the remaining handlers still run.
"""

import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from shared.events.rides import DomainEvent, RideEventKind

logger = structlog.get_logger(__name__)

Handler = Callable[[DomainEvent], Awaitable[Any] | Any]


class EventBus:
    def __init__(self):
        self._handlers: dict[RideEventKind, list[Handler]] = defaultdict(list)

    def subscribe(self, kind: RideEventKind, handler: Handler) -> None:
        self._handlers[kind].append(handler)
        logger.debug("Handler subscribed", kind=kind.value, handler=_name(handler))

    def subscribe_all(self, handler: Handler) -> None:
        """Subscribe a handler to every event kind."""
        for kind in RideEventKind:
            self.subscribe(kind, handler)

    def unsubscribe(self, kind: RideEventKind, handler: Handler) -> None:
        handlers = self._handlers.get(kind, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, kind: RideEventKind) -> list[Handler]:
        return list(self._handlers.get(kind, []))

    def clear(self) -> None:
        self._handlers.clear()

    async def publish(self, kind: RideEventKind, event: DomainEvent) -> int:
        """Deliver ``event`` to every handler subscribed to ``kind``.

        Returns:
            Number of handlers that completed without raising.
        """
        succeeded = 0
        for handler in self.handlers_for(kind):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
                succeeded += 1
            except Exception:
                logger.exception(
                    "Event handler failed",
                    kind=kind.value,
                    handler=_name(handler),
                    correlation_id=event.correlation_id,
                )

        logger.debug(
            "Event published",
            kind=kind.value,
            correlation_id=event.correlation_id,
            handlers=succeeded,
        )
        return succeeded


def _name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))
