"""In-process event bus.

Async pub/sub for SystemEvents. Booking and queue services emit events after
their writes commit; the audit logger and any real-time publisher subscribe
at startup.

Usage:
    from salonbook.events import emit, subscribe

    await emit(SystemEvent(event_type=EventType.QUEUE_JOINED, tenant_id=tenant_id))

    subscribe(my_handler)  # async def my_handler(event: SystemEvent) -> None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from salonbook.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Queue-backed dispatcher with per-handler failure isolation."""

    def __init__(self) -> None:
        self._global: list[EventHandler] = []
        self._typed: dict[EventType, list[EventHandler]] = {}
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    # ── Subscriptions ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: list[EventType] | None = None) -> None:
        """Register a handler for all events, or only for ``event_types``."""
        if event_types is None:
            self._global.append(handler)
            logger.info("Registered global event subscriber: %s", handler.__name__)
            return
        for event_type in event_types:
            self._typed.setdefault(event_type, []).append(handler)
        logger.info(
            "Registered event subscriber %s for types: %s",
            handler.__name__,
            [t.value for t in event_types],
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove a handler from every subscription list."""
        if handler in self._global:
            self._global.remove(handler)
        for handlers in self._typed.values():
            if handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._global, *self._typed.get(event_type, [])]

    # ── Publishing ───────────────────────────────────────────────────

    async def emit(self, event: SystemEvent) -> None:
        """Enqueue an event; a background worker delivers it.

        The emitter never waits on subscribers.
        """
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        await self._queue.put(event)
        logger.debug("Event emitted: %s (entity=%s)", event.event_type.value, event.entity_id)

    async def dispatch(self, event: SystemEvent) -> None:
        """Deliver one event to its handlers concurrently."""
        handlers = self.handlers_for(event.event_type)
        if not handlers:
            return
        results = await asyncio.gather(
            *[self._safe_call(handler, event) for handler in handlers],
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error("Event handler failed for %s: %s", event.event_type.value, result)

    @staticmethod
    async def _safe_call(handler: EventHandler, event: SystemEvent) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception("Handler %s failed for event %s", handler.__name__, event.event_type.value)
            raise

    # ── Worker lifecycle ─────────────────────────────────────────────

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
            logger.info("Event worker started")

    async def _drain(self) -> None:
        while self._queue is not None:
            try:
                event = await self._queue.get()
            except asyncio.CancelledError:
                logger.info("Event worker shutting down")
                break
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Error in event worker")
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        """Create the queue and worker. Call during app startup.

        Events emitted before startup stay queued and are delivered.
        """
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        logger.info(
            "Event system started with %d global + %d typed subscribers",
            len(self._global),
            sum(len(v) for v in self._typed.values()),
        )

    async def stop(self) -> None:
        """Flush pending events and stop the worker. Call during app shutdown."""
        if self._queue is not None:
            await self._queue.join()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
        logger.info("Event system stopped")


# Module-level bus shared by the whole process
event_bus = EventBus()


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    event_bus.subscribe(handler, event_types)


def unsubscribe(handler: EventHandler) -> None:
    event_bus.unsubscribe(handler)


async def emit(event: SystemEvent) -> None:
    await event_bus.emit(event)


async def start_event_system() -> None:
    await event_bus.start()


async def stop_event_system() -> None:
    await event_bus.stop()
