"""Orchestration layer — Readiness signals.

Signals are the only way a launcher reports progress.  They are plain
immutable values; the :class:`SignalSink` handed to a launcher funnels them
into the single-consumer queue of the run's control loop, preserving the
order in which the launcher emitted them.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Started:
    """The unit's process is running."""

    def __str__(self) -> str:
        return "started"


@dataclass(frozen=True)
class HealthUpdate:
    """Result of a health check transition."""

    healthy: bool

    def __str__(self) -> str:
        return "health(healthy)" if self.healthy else "health(unhealthy)"


@dataclass(frozen=True)
class Exited:
    """The unit's process terminated with *code*."""

    code: int

    def __str__(self) -> str:
        return f"exited({self.code})"


@dataclass(frozen=True)
class LaunchFailed:
    """The launcher could not start the unit, or the unit failed outright."""

    reason: str

    def __str__(self) -> str:
        return "launch_failed"


Signal = Union[Started, HealthUpdate, Exited, LaunchFailed]


@dataclass(frozen=True)
class SignalEnvelope:
    unit: str
    signal: Signal


class SignalSink:
    """Write side of a run's signal queue.

    Safe to call from the event loop thread and from foreign threads (the
    latter are marshalled through ``call_soon_threadsafe``).

    Usage::

        signals.started("db")
        signals.health("db", healthy=True)
        signals.exited("migrate", 0)
    """

    def __init__(
        self,
        queue: asyncio.Queue[SignalEnvelope],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._queue = queue
        self._loop = loop or asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()

    def emit(self, unit: str, signal: Signal) -> None:
        envelope = SignalEnvelope(unit=unit, signal=signal)
        if threading.get_ident() == self._loop_thread:
            self._queue.put_nowait(envelope)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, envelope)

    def started(self, unit: str) -> None:
        self.emit(unit, Started())

    def health(self, unit: str, healthy: bool) -> None:
        self.emit(unit, HealthUpdate(healthy=healthy))

    def exited(self, unit: str, code: int) -> None:
        self.emit(unit, Exited(code=code))

    def failed(self, unit: str, reason: str) -> None:
        self.emit(unit, LaunchFailed(reason=reason))
