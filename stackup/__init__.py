"""stackup — Dependency-ordered, health-gated startup of multi-service stacks.

Quick start::

    from stackup import PlanParser, PlanExecutor, SubprocessLauncher

    plan = PlanParser().parse_file(Path("compose.yaml"))
    outcome = await PlanExecutor(SubprocessLauncher()).run(plan, timeout=120)
"""

__version__ = "0.1.0"

from stackup.launchers import Launcher, ScriptedLauncher, SubprocessLauncher, UnitScript
from stackup.orchestration import (
    DependencyGraph,
    GraphBuilder,
    Outcome,
    OutcomeStatus,
    PlanExecutor,
    ReadinessTracker,
    Scheduler,
    up,
)
from stackup.protocol import Condition, DependencySpec, HealthCheckSpec, PlanParser, PlanSpec, UnitSpec

__all__ = [
    "__version__",
    "Condition",
    "DependencySpec",
    "HealthCheckSpec",
    "UnitSpec",
    "PlanSpec",
    "PlanParser",
    "GraphBuilder",
    "DependencyGraph",
    "ReadinessTracker",
    "Scheduler",
    "PlanExecutor",
    "Outcome",
    "OutcomeStatus",
    "up",
    "Launcher",
    "ScriptedLauncher",
    "SubprocessLauncher",
    "UnitScript",
]
