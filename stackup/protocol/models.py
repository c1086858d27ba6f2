"""Plan protocol — Canonical data models.

All structures in a stackup plan are defined here and validated through
Pydantic v2.  This module is the single source of truth for the plan format.
Do not add business logic here — only data shapes and their invariants.

Graph-level invariants (unique names, known targets, acyclicity, satisfiable
conditions) are deliberately NOT checked here: they belong to the graph
builder, which reports them with dedicated error types.
"""

from __future__ import annotations

import re
import shlex
import uuid
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UNIT_NAME_MAX_LEN = 128
MAX_UNITS_PER_PLAN = 1000

_UNIT_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]{0," + str(UNIT_NAME_MAX_LEN - 1) + r"}$")
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|us|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001, "us": 0.000001}


def parse_duration(value: Any) -> Any:
    """Convert Compose-style durations (``"1m30s"``, ``"500ms"``) to seconds.

    Numbers pass through unchanged; anything else is returned as-is so that
    Pydantic reports the type error.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass
    matches = _DURATION_RE.findall(text)
    if not matches or "".join(n + u for n, u in matches) != text:
        raise ValueError(f"invalid duration: {value!r}")
    return sum(float(n) * _DURATION_UNITS[u] for n, u in matches)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Condition(str, Enum):
    """Readiness a dependent requires of one of its dependencies."""

    STARTED = "started"
    HEALTHY = "healthy"
    COMPLETED_SUCCESSFULLY = "completed_successfully"


# ---------------------------------------------------------------------------
# Nested models
# ---------------------------------------------------------------------------


class HealthCheckSpec(BaseModel):
    """Compose-style health check.  Unset timings fall back to launcher defaults."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    test: list[str] = Field(min_length=1, description="Probe argv; exit 0 means healthy.")
    interval: Annotated[float, Field(gt=0)] | None = None
    timeout: Annotated[float, Field(gt=0)] | None = None
    retries: Annotated[int, Field(ge=1)] | None = None
    start_period: Annotated[float, Field(ge=0)] | None = None

    @field_validator("test", mode="before")
    @classmethod
    def split_test(cls, v: Any) -> Any:
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator("interval", "timeout", "start_period", mode="before")
    @classmethod
    def coerce_duration(cls, v: Any) -> Any:
        return parse_duration(v)


class DependencySpec(BaseModel):
    """One dependency edge: *target* must reach *condition* first."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: str
    condition: Condition = Condition.STARTED
    required: bool = Field(
        default=True,
        description=(
            "When false, a target that can never satisfy the condition stops "
            "gating the dependent instead of skipping it."
        ),
    )

    @field_validator("condition", mode="before")
    @classmethod
    def accept_compose_alias(cls, v: Any) -> Any:
        if isinstance(v, str) and v.startswith("service_"):
            return v[len("service_"):]
        return v


class UnitSpec(BaseModel):
    """A single schedulable unit."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    dependencies: list[DependencySpec] = Field(default_factory=list)
    has_health_check: bool = False
    allow_failure: bool = Field(
        default=False,
        description="A non-success terminal phase of this unit does not fail the plan.",
    )
    command: list[str] | None = None
    health_check: HealthCheckSpec | None = None

    @model_validator(mode="before")
    @classmethod
    def infer_health_check_flag(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("health_check") is not None:
            if data.get("has_health_check") is False:
                raise ValueError("health_check is set but has_health_check is false")
            data = {**data, "has_health_check": True}
        return data

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _UNIT_NAME_RE.match(v):
            raise ValueError(
                f"Unit name '{v}' must start with a letter or digit and contain only "
                f"letters, digits, '_', '.', '-' (max {UNIT_NAME_MAX_LEN} chars)."
            )
        return v

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, v: Any) -> Any:
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator("dependencies", mode="before")
    @classmethod
    def expand_shorthand(cls, v: Any) -> Any:
        # "db" is shorthand for {target: db, condition: started}.
        if isinstance(v, list):
            return [{"target": d} if isinstance(d, str) else d for d in v]
        return v

    @field_validator("dependencies")
    @classmethod
    def unique_targets(cls, v: list[DependencySpec]) -> list[DependencySpec]:
        seen: set[str] = set()
        for dep in v:
            if dep.target in seen:
                raise ValueError(f"dependency on '{dep.target}' is declared more than once")
            seen.add(dep.target)
        return v

    def dependency_on(self, target: str) -> DependencySpec | None:
        for dep in self.dependencies:
            if dep.target == target:
                return dep
        return None


class PlanSpec(BaseModel):
    """The full declarative set of units for one orchestration run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    plan_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    description: str = ""
    units: list[UnitSpec] = Field(default_factory=list, max_length=MAX_UNITS_PER_PLAN)
