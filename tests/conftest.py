"""Shared pytest fixtures for the stackup test suite."""

from __future__ import annotations

import logging
from typing import Generator

import pytest

import stackup.config as config_module
from stackup.config import Settings, override_settings
from stackup.launchers.scripted import ScriptedLauncher, UnitScript
from stackup.protocol.models import DependencySpec, HealthCheckSpec, PlanSpec, UnitSpec
from stackup.protocol.parser import PlanParser


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def test_settings() -> Generator[Settings, None, None]:
    """Built-in defaults only, so a developer's ~/.stackup/config.yaml never leaks in."""
    original = config_module._settings
    settings = Settings()
    override_settings(settings)
    yield settings
    config_module._settings = original


@pytest.fixture
def restore_logging() -> Generator[None, None, None]:
    """Undo handler changes made by ``configure_logging`` (CLI tests)."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@pytest.fixture
def parser() -> PlanParser:
    return PlanParser()


@pytest.fixture
def web_plan() -> PlanSpec:
    """db (health checked) <- api (healthy) <- web (started); migrate runs once."""
    return PlanSpec(
        plan_id="web-stack",
        description="Three-tier stack",
        units=[
            UnitSpec(name="db", health_check=HealthCheckSpec(test=["pg_isready"])),
            UnitSpec(
                name="migrate",
                dependencies=[DependencySpec(target="db", condition="healthy")],
            ),
            UnitSpec(
                name="api",
                health_check=HealthCheckSpec(test=["curl", "-f", "http://localhost/health"]),
                dependencies=[
                    DependencySpec(target="db", condition="healthy"),
                    DependencySpec(target="migrate", condition="completed_successfully"),
                ],
            ),
            UnitSpec(name="web", dependencies=["api"]),
        ],
    )


# ---------------------------------------------------------------------------
# Launchers
# ---------------------------------------------------------------------------


@pytest.fixture
def web_launcher() -> ScriptedLauncher:
    """Scripts for ``web_plan``: every unit comes up, migrate exits 0."""
    return ScriptedLauncher({"migrate": UnitScript.completes(exit_code=0)})
