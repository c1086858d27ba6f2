"""Orchestration layer — Readiness tracker.

Tracks the live phase of every unit in one run and answers readiness
questions for the scheduler.  The tracker is the single writer of unit run
state: the scheduler only reads snapshots and asks for the three
scheduler-issued transitions (starting, skipped, timed out).

State transitions:
    pending  -> starting                  (scheduler issued the launch)
    starting -> started | exited | failed
    started  -> healthy | unhealthy | exited | failed
    healthy <-> unhealthy                 (health checked units only)
    healthy | unhealthy -> exited | failed
    pending  -> skipped                   (a required dependency can never be met)
    pending | starting -> timed_out       (run cancelled or deadline expired)

Any other (phase, signal) pair raises OutOfOrderSignalError.  Launchers may
race benignly, so the scheduler logs those and carries on.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from stackup.exceptions import OutOfOrderSignalError
from stackup.orchestration.graph import DependencyGraph
from stackup.orchestration.signals import Exited, HealthUpdate, LaunchFailed, Signal, Started
from stackup.protocol.models import Condition


class Phase(str, Enum):
    """Lifecycle phase of a single unit within one run."""

    PENDING = "pending"
    STARTING = "starting"
    STARTED = "started"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    EXITED = "exited"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"


TERMINAL_PHASES = frozenset({Phase.EXITED, Phase.FAILED, Phase.SKIPPED, Phase.TIMED_OUT})
_RUNNING_PHASES = frozenset({Phase.STARTING, Phase.STARTED, Phase.HEALTHY, Phase.UNHEALTHY})


@dataclass
class UnitRunState:
    name: str
    has_health_check: bool = False
    phase: Phase = Phase.PENDING
    started_at: float | None = None
    settled_at: float | None = None
    exit_code: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class UnitSnapshot:
    """Read-only view of one unit's phase."""

    phase: Phase
    exit_code: int | None = None
    reason: str | None = None

    def __str__(self) -> str:
        if self.phase == Phase.EXITED:
            return f"exited({self.exit_code})"
        return self.phase.value


@dataclass(frozen=True)
class TransitionEvent:
    """One phase change, in the order the tracker applied it."""

    seq: int
    unit: str
    previous: Phase
    phase: Phase
    at: float
    exit_code: int | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "unit": self.unit,
            "previous": self.previous.value,
            "phase": self.phase.value,
            "at": self.at,
            "exit_code": self.exit_code,
            "reason": self.reason,
        }


class ReadinessTracker:
    """Per-run unit state machine.

    Usage::

        tracker = ReadinessTracker(graph)
        tracker.mark_starting("db")
        tracker.record_signal("db", Started())
        tracker.is_condition_met("db", Condition.STARTED)  # True
    """

    def __init__(self, graph: DependencyGraph) -> None:
        self._lock = threading.RLock()
        self._states: dict[str, UnitRunState] = {
            name: UnitRunState(name=name, has_health_check=graph.unit(name).has_health_check)
            for name in graph.names
        }
        self._events: list[TransitionEvent] = []

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def record_signal(self, unit: str, signal: Signal) -> TransitionEvent | None:
        """Apply a launcher signal.

        Returns the resulting transition, or ``None`` when the signal is a
        no-op (a repeated health status).

        Raises:
            OutOfOrderSignalError: the signal is illegal for the unit's phase,
                or the unit is unknown.
        """
        with self._lock:
            state = self._states.get(unit)
            if state is None:
                raise OutOfOrderSignalError(unit, str(signal), "unknown")

            phase = state.phase
            if isinstance(signal, Started):
                if phase == Phase.STARTING:
                    return self._transition(state, Phase.STARTED)
            elif isinstance(signal, HealthUpdate):
                if state.has_health_check and phase in (
                    Phase.STARTED,
                    Phase.HEALTHY,
                    Phase.UNHEALTHY,
                ):
                    target = Phase.HEALTHY if signal.healthy else Phase.UNHEALTHY
                    if target == phase:
                        return None
                    reason = None if signal.healthy else "health check failing"
                    return self._transition(state, target, reason=reason)
            elif isinstance(signal, Exited):
                if phase in _RUNNING_PHASES:
                    reason = None if signal.code == 0 else f"exited with code {signal.code}"
                    return self._transition(
                        state, Phase.EXITED, exit_code=signal.code, reason=reason
                    )
            elif isinstance(signal, LaunchFailed):
                if phase in _RUNNING_PHASES:
                    return self._transition(state, Phase.FAILED, reason=signal.reason)

            raise OutOfOrderSignalError(unit, str(signal), phase.value)

    # ------------------------------------------------------------------
    # Scheduler-issued transitions
    # ------------------------------------------------------------------

    def mark_starting(self, unit: str) -> TransitionEvent:
        with self._lock:
            state = self._states[unit]
            if state.phase != Phase.PENDING:
                raise OutOfOrderSignalError(unit, "launch", state.phase.value)
            return self._transition(state, Phase.STARTING)

    def mark_skipped(self, unit: str, reason: str) -> TransitionEvent | None:
        """Skip *unit* if it has not been launched yet."""
        with self._lock:
            state = self._states[unit]
            if state.phase != Phase.PENDING:
                return None
            return self._transition(state, Phase.SKIPPED, reason=reason)

    def mark_timed_out(self, unit: str, reason: str) -> TransitionEvent | None:
        """Time out *unit* if it is still pending or waiting for its Started signal."""
        with self._lock:
            state = self._states[unit]
            if state.phase not in (Phase.PENDING, Phase.STARTING):
                return None
            return self._transition(state, Phase.TIMED_OUT, reason=reason)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def phase(self, unit: str) -> Phase:
        with self._lock:
            return self._states[unit].phase

    def state(self, unit: str) -> UnitRunState:
        """Return a copy of *unit*'s run state."""
        with self._lock:
            return replace(self._states[unit])

    def is_condition_met(self, unit: str, condition: Condition) -> bool:
        with self._lock:
            state = self._states[unit]
            exited_ok = state.phase == Phase.EXITED and state.exit_code == 0
            if condition == Condition.STARTED:
                return state.phase in (Phase.STARTED, Phase.HEALTHY) or exited_ok
            if condition == Condition.HEALTHY:
                return state.phase == Phase.HEALTHY
            return exited_ok

    def is_unsatisfiable(self, unit: str, condition: Condition) -> bool:
        """True when *unit* can never again satisfy *condition* in this run."""
        with self._lock:
            phase = self._states[unit].phase
            if phase in (Phase.FAILED, Phase.SKIPPED, Phase.TIMED_OUT):
                return True
            return phase == Phase.EXITED and not self.is_condition_met(unit, condition)

    def is_settled(self, unit: str) -> bool:
        """True when no further scheduling action depends on *unit* changing phase."""
        with self._lock:
            return self._settles(self._states[unit])

    def snapshot(self) -> dict[str, UnitSnapshot]:
        with self._lock:
            return {
                name: UnitSnapshot(phase=s.phase, exit_code=s.exit_code, reason=s.reason)
                for name, s in self._states.items()
            }

    @property
    def events(self) -> tuple[TransitionEvent, ...]:
        with self._lock:
            return tuple(self._events)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self,
        state: UnitRunState,
        phase: Phase,
        exit_code: int | None = None,
        reason: str | None = None,
    ) -> TransitionEvent:
        now = time.time()
        event = TransitionEvent(
            seq=len(self._events),
            unit=state.name,
            previous=state.phase,
            phase=phase,
            at=now,
            exit_code=exit_code,
            reason=reason,
        )
        state.phase = phase
        state.reason = reason
        if exit_code is not None:
            state.exit_code = exit_code
        if phase == Phase.STARTED and state.started_at is None:
            state.started_at = now
        if state.settled_at is None and self._settles(state):
            state.settled_at = now
        self._events.append(event)
        return event

    @staticmethod
    def _settles(state: UnitRunState) -> bool:
        if state.phase in TERMINAL_PHASES or state.phase in (Phase.HEALTHY, Phase.UNHEALTHY):
            return True
        return state.phase == Phase.STARTED and not state.has_health_check
