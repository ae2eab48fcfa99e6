"""In-process event bus for domain and internal events."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from roomsync.models.events import DomainEvent

logger = logging.getLogger("roomsync.bus")

EventHandler = Callable[[Any], Awaitable[Any]]


class EventBus:
    """Routes events to handlers by topic.

    ``dispatch`` runs the handlers for an event inline and returns their
    results; ``publish`` schedules the same work as a tracked background
    task and returns immediately. Handler errors and timeouts are logged,
    never raised.
    """

    def __init__(self, handler_timeout: float = 60.0) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._tasks: set[asyncio.Task[list[Any]]] = set()
        self._handler_timeout = handler_timeout

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        self._handlers[topic].append(handler)

    def on(self, topic: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator to register a handler for *topic*."""

        def decorator(fn: EventHandler) -> EventHandler:
            self.subscribe(topic, fn)
            return fn

        return decorator

    def handlers(self, topic: str) -> list[EventHandler]:
        return list(self._handlers.get(topic, ()))

    async def dispatch(self, event: DomainEvent) -> list[Any]:
        """Run every handler for *event* concurrently and collect results.

        A handler that fails or times out contributes ``None``.
        """
        handlers = self.handlers(event.topic)
        if not handlers:
            logger.debug("No handlers for %s", event.topic, extra={"topic": event.topic})
            return []

        async def _run_one(handler: EventHandler) -> Any:
            name = getattr(handler, "__qualname__", repr(handler))
            try:
                return await asyncio.wait_for(handler(event), timeout=self._handler_timeout)
            except TimeoutError:
                logger.warning(
                    "Handler %s for %s timed out after %.1fs",
                    name,
                    event.topic,
                    self._handler_timeout,
                    extra={"topic": event.topic, "event_id": event.id},
                )
            except Exception:
                logger.exception(
                    "Handler %s for %s failed",
                    name,
                    event.topic,
                    extra={"topic": event.topic, "event_id": event.id},
                )
            return None

        return list(await asyncio.gather(*[_run_one(h) for h in handlers]))

    def publish(self, event: DomainEvent) -> asyncio.Task[list[Any]]:
        """Dispatch *event* in the background. Use :meth:`drain` to wait."""
        task = asyncio.get_running_loop().create_task(
            self.dispatch(event), name=f"roomsync:{event.topic}:{event.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no published events are in flight.

        Handlers may publish further events; those are awaited too.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
