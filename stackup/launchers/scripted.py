"""Launcher layer — Scripted launcher.

Plays back a fixed sequence of signals per unit instead of starting real
processes.  Backs ``stackup up --dry-run`` and the test-suite.

Units without an explicit script get the default one: ``Started``, then
``HealthUpdate(healthy=True)`` when the unit has a health check.

Usage::

    launcher = ScriptedLauncher({
        "db": UnitScript.running(healthy=True, delay=0.2),
        "migrate": UnitScript.completes(exit_code=0),
        "cache": UnitScript.rejected("port 6379 already allocated"),
    })
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Mapping

from stackup.exceptions import LaunchRejectedError
from stackup.launchers.base import Launcher
from stackup.logging import get_logger
from stackup.orchestration.signals import Exited, HealthUpdate, Signal, SignalSink, Started
from stackup.protocol.models import UnitSpec

log = get_logger(__name__)


@dataclass(frozen=True)
class ScriptStep:
    signal: Signal
    delay: float = 0.0


@dataclass(frozen=True)
class UnitScript:
    """What a scripted unit does once launched."""

    steps: tuple[ScriptStep, ...] = ()
    reject: str | None = None
    launch_delay: float = 0.0

    @classmethod
    def running(cls, healthy: bool | None = None, delay: float = 0.0) -> "UnitScript":
        """Start, then optionally report one health status after *delay*."""
        steps = [ScriptStep(Started())]
        if healthy is not None:
            steps.append(ScriptStep(HealthUpdate(healthy=healthy), delay=delay))
        return cls(steps=tuple(steps))

    @classmethod
    def completes(cls, exit_code: int = 0, delay: float = 0.0) -> "UnitScript":
        """Start, then exit with *exit_code* after *delay*."""
        return cls(steps=(ScriptStep(Started()), ScriptStep(Exited(code=exit_code), delay=delay)))

    @classmethod
    def rejected(cls, reason: str) -> "UnitScript":
        return cls(reject=reason)

    @classmethod
    def default_for(cls, unit: UnitSpec) -> "UnitScript":
        return cls.running(healthy=True if unit.has_health_check else None)


class ScriptedLauncher(Launcher):
    """Launcher that emits scripted signals.

    ``launched`` and ``stopped`` record calls in the order they were made.
    """

    def __init__(self, scripts: Mapping[str, UnitScript] | None = None) -> None:
        self._scripts = dict(scripts or {})
        self._players: dict[str, asyncio.Task[None]] = {}
        self.launched: list[str] = []
        self.stopped: list[str] = []

    async def launch(self, unit: UnitSpec, signals: SignalSink) -> None:
        self.launched.append(unit.name)
        script = self._scripts.get(unit.name) or UnitScript.default_for(unit)
        if script.launch_delay:
            await asyncio.sleep(script.launch_delay)
        if script.reject is not None:
            raise LaunchRejectedError(unit.name, script.reject)
        self._players[unit.name] = asyncio.create_task(
            self._play(unit.name, script, signals), name=f"script_{unit.name}"
        )

    async def _play(self, name: str, script: UnitScript, signals: SignalSink) -> None:
        for step in script.steps:
            if step.delay:
                await asyncio.sleep(step.delay)
            log.debug("scripted_signal", unit=name, signal=str(step.signal))
            signals.emit(name, step.signal)

    async def stop(self, unit: str) -> None:
        self.stopped.append(unit)
        player = self._players.pop(unit, None)
        if player is not None and not player.done():
            player.cancel()

    async def aclose(self) -> None:
        players = [p for p in self._players.values() if not p.done()]
        for player in players:
            player.cancel()
        if players:
            await asyncio.gather(*players, return_exceptions=True)
        self._players.clear()
