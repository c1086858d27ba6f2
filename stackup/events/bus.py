"""Event streaming infrastructure — EventBus protocol and implementations.

Every phase transition of every unit, and the start and finish of every
plan, is emitted as a structured dict to a topic so that progress reporters
(CLI, dashboards, audit files) can follow a run without touching the
scheduler.

                                       ┌──────────────────┐
  Scheduler ──emit("stackup.units")──► │                  │◄── CLI progress
  Executor  ──emit("stackup.plans")──► │  EventBus impl   │◄── NDJSON audit file
                                       └──────────────────┘

Implementations:
  - NullEventBus    → default (no-op, zero overhead)
  - LogEventBus     → NDJSON append-only file
  - QueueEventBus   → in-memory, subscribable async stream
  - FanoutEventBus  → broadcast to several of the above

Standard topic names:
  TOPIC_PLANS = "stackup.plans"  — plan lifecycle events
  TOPIC_UNITS = "stackup.units"  — per-unit phase transitions
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import Any

from stackup.logging import get_logger

log = get_logger(__name__)

TOPIC_PLANS = "stackup.plans"
TOPIC_UNITS = "stackup.units"


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class EventBus(ABC):
    """Abstract event bus.  All implementations must be safe for concurrent async use.

    An event is a plain dict.  The bus adds a ``_topic`` key and a
    ``_timestamp`` (Unix epoch float) before forwarding to the backend.
    """

    @abstractmethod
    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        """Publish *event* to *topic*.

        This method must not raise — failures are logged and swallowed so that
        a reporting outage never propagates into the scheduling path.
        """

    def subscribe(self, topics: Iterable[str]) -> AsyncIterator[dict[str, Any]]:
        """Return an async iterator of events from *topics*.

        Not all backends support subscriptions.
        """
        raise NotImplementedError(
            f"{self.__class__.__name__} does not support event subscriptions."
        )

    def _stamp(self, topic: str, event: dict[str, Any]) -> dict[str, Any]:
        """Add metadata fields to *event* in-place and return it."""
        event.setdefault("_topic", topic)
        event.setdefault("_timestamp", time.time())
        return event


# ---------------------------------------------------------------------------
# NullEventBus
# ---------------------------------------------------------------------------


class NullEventBus(EventBus):
    """Discards all events.  Used when no reporting is configured."""

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        pass


# ---------------------------------------------------------------------------
# LogEventBus — NDJSON file
# ---------------------------------------------------------------------------


class LogEventBus(EventBus):
    """Writes events as NDJSON to a file — one line per event, append-only.

    Usage::

        bus = LogEventBus(Path("~/.stackup/events.ndjson"))
        await bus.emit(TOPIC_UNITS, {"event": "unit_transition", "unit": "db"})
    """

    def __init__(self, log_file: Path | None = None) -> None:
        self._file = log_file.expanduser() if log_file else None
        self._lock = asyncio.Lock()

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        log.debug("event_bus_emit", topic=topic, event_type=event.get("event"))
        if self._file is None:
            return
        line = json.dumps(event, default=str) + "\n"
        async with self._lock:
            try:
                self._file.parent.mkdir(parents=True, exist_ok=True)
                with self._file.open("a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as exc:
                log.error("event_bus_write_failed", topic=topic, error=str(exc))


# ---------------------------------------------------------------------------
# QueueEventBus — in-memory subscriptions
# ---------------------------------------------------------------------------


_CLOSED = object()


class Subscription:
    """Async iterator over the events of one subscriber.

    Registered as soon as it is created, so no event emitted afterwards is
    missed even if iteration starts later.
    """

    def __init__(self, bus: "QueueEventBus", topics: Iterable[str], maxsize: int) -> None:
        self._bus = bus
        self.topics = frozenset(topics)
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def _offer(self, event: dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            log.warning("event_subscriber_overflow", topics=sorted(self.topics))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._unregister(self)
        # The sentinel must get through even when the queue is full.
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()


class QueueEventBus(EventBus):
    """Fans events out to in-memory subscribers.

    Usage::

        bus = QueueEventBus()
        subscription = bus.subscribe([TOPIC_UNITS, TOPIC_PLANS])
        ...
        async for event in subscription:
            if event["event"] == "plan_finished":
                break
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._maxsize = maxsize
        self._subscriptions: list[Subscription] = []

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        for subscription in list(self._subscriptions):
            if topic in subscription.topics:
                subscription._offer(dict(event))

    def subscribe(self, topics: Iterable[str]) -> Subscription:
        subscription = Subscription(self, topics, self._maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def _unregister(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def close(self) -> None:
        """End every open subscription."""
        for subscription in list(self._subscriptions):
            subscription.close()


# ---------------------------------------------------------------------------
# FanoutEventBus — broadcast to multiple backends simultaneously
# ---------------------------------------------------------------------------


class FanoutEventBus(EventBus):
    """Routes each event to multiple EventBus backends in parallel.

    Usage::

        bus = FanoutEventBus([
            LogEventBus(Path("~/.stackup/events.ndjson")),
            progress_bus,
        ])
    """

    def __init__(self, backends: list[EventBus]) -> None:
        self._backends = backends

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        results = await asyncio.gather(
            *(b.emit(topic, dict(event)) for b in self._backends),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                log.error("event_fanout_backend_failed", topic=topic, error=str(result))
