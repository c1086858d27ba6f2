"""Orchestration layer — Execution outcome.

The :class:`Outcome` is the immutable result of one ``up`` run.  Partial
success is an ordinary value here, never an exception: every unit's final
phase and the reason for any non-success phase are always enumerated.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from stackup.orchestration.tracker import Phase, TransitionEvent


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class UnitOutcome:
    name: str
    phase: Phase
    has_health_check: bool = False
    allow_failure: bool = False
    exit_code: int | None = None
    reason: str | None = None
    started_at: float | None = None
    settled_at: float | None = None

    @property
    def succeeded(self) -> bool:
        if self.phase == Phase.HEALTHY:
            return True
        if self.phase == Phase.STARTED:
            return not self.has_health_check
        return self.phase == Phase.EXITED and self.exit_code == 0

    def __str__(self) -> str:
        if self.phase == Phase.EXITED:
            return f"exited({self.exit_code})"
        return self.phase.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "succeeded": self.succeeded,
            "allow_failure": self.allow_failure,
            "started_at": self.started_at,
            "settled_at": self.settled_at,
        }


@dataclass(frozen=True)
class LaunchWave:
    """Units launched together in one scheduling pass, in issue order."""

    index: int
    units: tuple[str, ...]


@dataclass(frozen=True)
class Outcome:
    plan_id: str
    status: OutcomeStatus
    units: Mapping[str, UnitOutcome]
    events: tuple[TransitionEvent, ...] = ()
    waves: tuple[LaunchWave, ...] = ()
    ignored_signals: tuple[str, ...] = ()
    started_at: float | None = None
    finished_at: float | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.units, MappingProxyType):
            object.__setattr__(self, "units", MappingProxyType(dict(self.units)))

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def failed_units(self) -> list[str]:
        """Units that ended failed, exited non-zero, or unhealthy."""
        return [
            name
            for name, u in self.units.items()
            if not u.succeeded and u.phase not in (Phase.SKIPPED, Phase.TIMED_OUT)
        ]

    @property
    def skipped_units(self) -> list[str]:
        return [name for name, u in self.units.items() if u.phase == Phase.SKIPPED]

    @property
    def timed_out_units(self) -> list[str]:
        return [name for name, u in self.units.items() if u.phase == Phase.TIMED_OUT]

    @property
    def launch_order(self) -> list[str]:
        return [name for wave in self.waves for name in wave.units]

    def phase_of(self, unit: str) -> Phase:
        return self.units[unit].phase

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "units": {name: u.to_dict() for name, u in self.units.items()},
            "failed_units": self.failed_units,
            "skipped_units": self.skipped_units,
            "timed_out_units": self.timed_out_units,
            "waves": [list(w.units) for w in self.waves],
            "events": [e.to_dict() for e in self.events],
            "ignored_signals": list(self.ignored_signals),
        }
