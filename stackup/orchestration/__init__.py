"""Orchestration layer — graph builder, readiness tracker, scheduler, plan executor."""

from stackup.orchestration.executor import PlanExecutor, up
from stackup.orchestration.graph import DependencyGraph, GraphBuilder
from stackup.orchestration.outcome import LaunchWave, Outcome, OutcomeStatus, UnitOutcome
from stackup.orchestration.scheduler import Scheduler
from stackup.orchestration.signals import (
    Exited,
    HealthUpdate,
    LaunchFailed,
    Signal,
    SignalSink,
    Started,
)
from stackup.orchestration.tracker import Phase, ReadinessTracker, TransitionEvent, UnitSnapshot

__all__ = [
    "DependencyGraph",
    "GraphBuilder",
    "ReadinessTracker",
    "Phase",
    "UnitSnapshot",
    "TransitionEvent",
    "Scheduler",
    "PlanExecutor",
    "up",
    "Outcome",
    "OutcomeStatus",
    "UnitOutcome",
    "LaunchWave",
    "Signal",
    "SignalSink",
    "Started",
    "HealthUpdate",
    "Exited",
    "LaunchFailed",
]
