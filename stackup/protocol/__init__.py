"""Plan protocol layer — Pydantic models and the plan parser."""

from stackup.protocol.models import (
    Condition,
    DependencySpec,
    HealthCheckSpec,
    PlanSpec,
    UnitSpec,
)
from stackup.protocol.parser import PlanParser

__all__ = [
    "Condition",
    "DependencySpec",
    "HealthCheckSpec",
    "PlanSpec",
    "UnitSpec",
    "PlanParser",
]
