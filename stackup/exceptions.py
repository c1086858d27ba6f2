"""stackup — Exception hierarchy.

All exceptions raised by stackup inherit from StackupError so that callers
can catch the full family with a single except clause when needed.

Hierarchy:
    StackupError
    ├── PlanError
    │   ├── PlanParseError
    │   ├── PlanValidationError
    │   ├── DuplicateUnitError
    │   ├── UnknownDependencyError
    │   ├── CyclicDependencyError
    │   └── UnsatisfiableConditionError
    ├── SchedulingError
    │   └── OutOfOrderSignalError
    └── LaunchError
        └── LaunchRejectedError

Build-time errors (PlanError) are always raised before any unit is launched.
Runtime signal and launch errors are recorded in the Outcome instead of
propagating to the caller.
"""

from __future__ import annotations

from typing import Any


class StackupError(Exception):
    """Base exception for all stackup errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Plan (build-time) errors
# ---------------------------------------------------------------------------


class PlanError(StackupError):
    """Base for all static plan errors.  Fatal before any unit starts."""


class PlanParseError(PlanError):
    """The plan document could not be deserialised."""

    def __init__(self, message: str, raw_payload: str | None = None) -> None:
        super().__init__(message, context={"raw_payload": raw_payload})
        self.raw_payload = raw_payload


class PlanValidationError(PlanError):
    """The plan document failed Pydantic validation."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, context={"validation_errors": errors or []})
        self.errors = errors or []


class DuplicateUnitError(PlanError):
    """Two units share the same name."""

    def __init__(self, unit: str) -> None:
        super().__init__(
            f"Unit '{unit}' is declared more than once",
            context={"unit": unit},
        )
        self.unit = unit


class UnknownDependencyError(PlanError):
    """A dependency names a unit that is not declared in the plan."""

    def __init__(self, unit: str, target: str) -> None:
        super().__init__(
            f"Unit '{unit}' depends on unknown unit '{target}'",
            context={"unit": unit, "target": target},
        )
        self.unit = unit
        self.target = target


class CyclicDependencyError(PlanError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            context={"cycle": cycle},
        )
        self.cycle = cycle


class UnsatisfiableConditionError(PlanError):
    """A dependency requires a condition its target can never reach."""

    def __init__(self, unit: str, target: str, condition: str) -> None:
        super().__init__(
            f"Unit '{unit}' requires '{target}' to be {condition}, "
            f"but '{target}' has no health check",
            context={"unit": unit, "target": target, "condition": condition},
        )
        self.unit = unit
        self.target = target
        self.condition = condition


# ---------------------------------------------------------------------------
# Runtime signal errors
# ---------------------------------------------------------------------------


class SchedulingError(StackupError):
    """Base for all scheduling errors."""


class OutOfOrderSignalError(SchedulingError):
    """A signal arrived that is not legal for the unit's current phase.

    Raised by the readiness tracker; the scheduler logs and ignores it.
    """

    def __init__(self, unit: str, signal: str, phase: str) -> None:
        super().__init__(
            f"Signal '{signal}' is not valid for unit '{unit}' in phase '{phase}'",
            context={"unit": unit, "signal": signal, "phase": phase},
        )
        self.unit = unit
        self.signal = signal
        self.phase = phase


# ---------------------------------------------------------------------------
# Launch errors
# ---------------------------------------------------------------------------


class LaunchError(StackupError):
    """Base for all launcher errors."""


class LaunchRejectedError(LaunchError):
    """The launcher refused to start a unit."""

    def __init__(self, unit: str, reason: str) -> None:
        super().__init__(
            f"Launch of unit '{unit}' rejected: {reason}",
            context={"unit": unit, "reason": reason},
        )
        self.unit = unit
        self.reason = reason
