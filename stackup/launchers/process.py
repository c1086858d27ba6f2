"""Launcher layer — Local subprocess launcher.

Runs each unit's ``command`` as a child process and follows Compose
health check semantics for units that declare a ``health_check``:

  - the first probe runs ``interval`` seconds after start, then every
    ``interval`` seconds;
  - a probe taking longer than ``timeout`` counts as a failure;
  - ``retries`` consecutive failures report the unit unhealthy;
  - failures during ``start_period`` do not count, but a success during it
    reports the unit healthy immediately.

Signals emitted per unit: ``Started`` once the process is spawned, health
updates on every change of health status, ``Exited(returncode)`` when the
process ends.

Security notes:
  - Commands are always executed as argv lists, never through a shell
    (unless the command itself is ``/bin/sh -c ...``).
  - Each unit runs in its own session so that ``stop`` can terminate the
    whole process tree.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from pathlib import Path

import psutil

from stackup.config import LauncherConfig, get_settings
from stackup.exceptions import LaunchRejectedError
from stackup.launchers.base import Launcher
from stackup.logging import get_logger
from stackup.orchestration.signals import SignalSink
from stackup.protocol.models import HealthCheckSpec, UnitSpec

log = get_logger(__name__)


class SubprocessLauncher(Launcher):
    """Starts units as local processes.

    Usage::

        launcher = SubprocessLauncher(cwd=Path("stack/"))
        outcome = await PlanExecutor(launcher).run(plan)
        await launcher.aclose()
    """

    def __init__(
        self,
        config: LauncherConfig | None = None,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._config = config or get_settings().launcher
        self._cwd = cwd
        self._env = env
        self._procs: dict[str, asyncio.subprocess.Process] = {}
        self._monitors: dict[str, list[asyncio.Task[None]]] = {}

    async def launch(self, unit: UnitSpec, signals: SignalSink) -> None:
        if not unit.command:
            raise LaunchRejectedError(unit.name, "no command configured")

        env = os.environ.copy()
        if self._env:
            env.update(self._env)
        try:
            proc = await asyncio.create_subprocess_exec(
                *unit.command,
                cwd=self._cwd,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            raise LaunchRejectedError(unit.name, str(exc)) from exc

        self._procs[unit.name] = proc
        log.info("unit_process_spawned", unit=unit.name, pid=proc.pid)
        signals.started(unit.name)

        health: asyncio.Task[None] | None = None
        if unit.health_check is not None:
            health = asyncio.create_task(
                self._watch_health(unit.name, unit.health_check, signals),
                name=f"health_{unit.name}",
            )
        waiter = asyncio.create_task(
            self._watch_exit(unit.name, proc, health, signals), name=f"exit_{unit.name}"
        )
        self._monitors[unit.name] = [t for t in (health, waiter) if t is not None]

    async def _watch_exit(
        self,
        name: str,
        proc: asyncio.subprocess.Process,
        health: asyncio.Task[None] | None,
        signals: SignalSink,
    ) -> None:
        code = await proc.wait()
        if health is not None and not health.done():
            health.cancel()
        log.info("unit_process_exited", unit=name, returncode=code)
        signals.exited(name, code)

    async def _watch_health(self, name: str, check: HealthCheckSpec, signals: SignalSink) -> None:
        interval = check.interval if check.interval is not None else self._config.health_interval
        timeout = check.timeout if check.timeout is not None else self._config.health_timeout
        retries = check.retries if check.retries is not None else self._config.health_retries
        start_period = (
            check.start_period
            if check.start_period is not None
            else self._config.health_start_period
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        healthy: bool | None = None
        failures = 0
        while True:
            await asyncio.sleep(interval)
            ok = await self._probe(check.test, timeout)
            if ok:
                failures = 0
                if healthy is not True:
                    healthy = True
                    signals.health(name, True)
                continue
            if loop.time() - started < start_period and healthy is None:
                continue
            failures += 1
            log.debug("health_probe_failed", unit=name, failures=failures, retries=retries)
            if failures >= retries and healthy is not False:
                healthy = False
                signals.health(name, False)

    async def _probe(self, test: list[str], timeout: float) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                *test,
                cwd=self._cwd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            log.debug("health_probe_spawn_failed", error=str(exc))
            return False
        try:
            code = await asyncio.wait_for(proc.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return False
        finally:
            # A cancelled health watch must not leave its probe behind.
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
        return code == 0

    async def stop(self, unit: str) -> None:
        proc = self._procs.get(unit)
        if proc is None or proc.returncode is not None:
            return
        timeout = self._config.stop_timeout
        tree = _process_tree(proc.pid)
        _signal_all(tree)
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("unit_stop_escalated", unit=unit, pid=proc.pid, timeout=timeout)
            _signal_all(tree, kill=True)
            await asyncio.wait_for(proc.wait(), timeout=timeout)

        # Descendants are not our children: psutil polls them instead of reaping.
        survivors = [p for p in tree[1:] if p.is_running()]
        if survivors:
            _, alive = await asyncio.to_thread(psutil.wait_procs, survivors, timeout=timeout)
            _signal_all(alive, kill=True)
        log.info("unit_process_stopped", unit=unit, returncode=proc.returncode)

    async def aclose(self) -> None:
        for name in list(self._procs):
            try:
                await self.stop(name)
            except Exception as exc:
                log.warning("unit_stop_failed", unit=name, error=str(exc))
        monitors = [t for tasks in self._monitors.values() for t in tasks if not t.done()]
        for task in monitors:
            task.cancel()
        if monitors:
            await asyncio.gather(*monitors, return_exceptions=True)
        self._monitors.clear()


def _process_tree(pid: int) -> list[psutil.Process]:
    """*pid* followed by all of its descendants."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []
    try:
        return [parent, *parent.children(recursive=True)]
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return [parent]


def _signal_all(procs: list[psutil.Process], kill: bool = False) -> None:
    for p in procs:
        try:
            if kill:
                p.kill()
            else:
                p.terminate()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            log.warning("unit_signal_denied", pid=p.pid, kill=kill)
