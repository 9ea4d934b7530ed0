"""Event bus for SystemEvents.

One ``EventBus`` is built by the service container and handed to every
component that reports state changes (reconciler, ledger client, router).
Subscribers register on that instance; there is no module-level bus.

    events = EventBus()
    events.subscribe(audit_on_event)                  # all events
    events.subscribe(on_stale, [EventType.TIMER_STALE])
    await events.start()
    await events.emit(SystemEvent(event_type=EventType.LEDGER_RECONCILED))

Once started, ``emit`` only enqueues and a worker task delivers, so a slow
subscriber never holds up the token-collection lock. Before ``start`` (and
after ``stop``) events are delivered inline.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from consent_wallet.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Async pub/sub with per-type routing and failure isolation."""

    def __init__(self) -> None:
        # Key None holds the handlers that receive every event
        self._routes: dict[EventType | None, list[EventHandler]] = {None: []}
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def subscriber_count(self) -> int:
        return sum(len(handlers) for handlers in self._routes.values())

    # ── Subscriptions ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
        """Register ``handler`` for ``event_types``, or for every event when None."""
        keys: list[EventType | None] = [None] if event_types is None else list(event_types)
        for key in keys:
            self._routes.setdefault(key, []).append(handler)
        logger.info(
            "Subscribed %s to %s",
            getattr(handler, "__name__", repr(handler)),
            "all events" if event_types is None else [k.value for k in keys if k is not None],
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        for handlers in self._routes.values():
            while handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._routes[None], *self._routes.get(event_type, [])]

    # ── Publishing ───────────────────────────────────────────────────

    async def emit(self, event: SystemEvent) -> None:
        if self.running and self._queue is not None:
            await self._queue.put(event)
        else:
            await self.deliver(event)
        logger.debug("Event emitted: %s (token=%s)", event.event_type.value, event.token_id)

    async def deliver(self, event: SystemEvent) -> None:
        """Run every matching handler concurrently. Handler failures are logged, never raised."""
        handlers = self.handlers_for(event.event_type)
        if not handlers:
            return
        results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s failed for %s: %s",
                    getattr(handler, "__name__", repr(handler)),
                    event.event_type.value,
                    result,
                )

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._drain(self._queue))
        logger.info("Event bus started with %d subscribers", self.subscriber_count)

    async def stop(self) -> None:
        """Deliver whatever is queued, then stop the worker."""
        if self._queue is not None and self.running:
            await self._queue.join()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
        logger.info("Event bus stopped")

    async def _drain(self, queue: asyncio.Queue[SystemEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                await self.deliver(event)
            except Exception:
                logger.exception("Error delivering %s", event.event_type.value)
            finally:
                queue.task_done()
