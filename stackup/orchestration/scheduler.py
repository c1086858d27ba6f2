"""Orchestration layer — Scheduler core.

Event-driven startup scheduling.  Readiness arrives asynchronously, so
instead of walking fixed topological waves the scheduler runs a single
control loop per run:

  1. Launch every dependency-free unit (first scheduling pass).
  2. Wait for the next signal (or cancellation / deadline).
  3. Record it in the readiness tracker and publish the transition.
  4. If the unit can no longer satisfy some edge, skip its still-pending
     transitive dependents (reverse-graph walk, each unit visited once).
  5. Launch every pending unit whose gating edges are now all met, ordered
     by (rank, name).
  6. Stop once every unit is settled.

All bookkeeping happens on the control loop; only launches run
concurrently, as fire-and-forget tasks that report back through the
run's signal queue.

Cancellation semantics:
  No new launches are issued after cancellation.  Signals already queued
  are still recorded, units still pending or starting become TIMED_OUT, and
  nothing is stopped here — forced teardown is the executor's concern.

Retroactive skipping:
  A dependent that was already launched when one of its dependencies later
  fails keeps running; its condition was met when it was checked.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import TYPE_CHECKING, Any

from stackup.events.bus import TOPIC_UNITS, EventBus, NullEventBus
from stackup.exceptions import LaunchRejectedError, OutOfOrderSignalError
from stackup.logging import bind_plan_context, get_logger
from stackup.orchestration.graph import DependencyGraph
from stackup.orchestration.outcome import LaunchWave, Outcome, OutcomeStatus, UnitOutcome
from stackup.orchestration.signals import SignalEnvelope, SignalSink
from stackup.orchestration.tracker import (
    TERMINAL_PHASES,
    Phase,
    ReadinessTracker,
    TransitionEvent,
)

if TYPE_CHECKING:
    from stackup.launchers.base import Launcher

log = get_logger(__name__)


class Scheduler:
    """Drives one run of a dependency graph to completion.

    Stateless between runs: all per-run bookkeeping lives in a private
    ``_SchedulerRun`` created by :meth:`run`.

    Usage::

        scheduler = Scheduler(bus)
        outcome = await scheduler.run(graph, ReadinessTracker(graph), launcher)
    """

    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus or NullEventBus()

    async def run(
        self,
        graph: DependencyGraph,
        tracker: ReadinessTracker,
        launcher: Launcher,
        plan_id: str = "",
        cancel_event: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> Outcome:
        """Schedule every unit of *graph* and return the final :class:`Outcome`.

        Args:
            graph:        Validated dependency graph.
            tracker:      Fresh tracker for this run (all units pending).
            launcher:     Runtime collaborator starting the units.
            plan_id:      Identifier used in logs, events and the outcome.
            cancel_event: Setting it stops new launches (status ``cancelled``).
            deadline:     Absolute ``loop.time()`` after which the run behaves
                          as cancelled (status ``timed_out``).
        """
        run = _SchedulerRun(
            graph=graph,
            tracker=tracker,
            launcher=launcher,
            bus=self._bus,
            plan_id=plan_id,
        )
        return await run.execute(cancel_event=cancel_event, deadline=deadline)


class _SchedulerRun:
    def __init__(
        self,
        graph: DependencyGraph,
        tracker: ReadinessTracker,
        launcher: Launcher,
        bus: EventBus,
        plan_id: str,
    ) -> None:
        self._graph = graph
        self._tracker = tracker
        self._launcher = launcher
        self._bus = bus
        self._plan_id = plan_id
        self._queue: asyncio.Queue[SignalEnvelope] = asyncio.Queue()
        self._signals: SignalSink | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._waves: list[LaunchWave] = []
        self._ignored: list[str] = []
        self._propagated: set[str] = set()
        self._propagation_passes = 0

    async def execute(
        self,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> Outcome:
        loop = asyncio.get_running_loop()
        self._signals = SignalSink(self._queue, loop)
        started_at = time.time()
        log.info("scheduling_started", plan_id=self._plan_id, units=len(self._graph))

        stop_status: OutcomeStatus | None = None
        cancel_wait = asyncio.ensure_future(cancel_event.wait()) if cancel_event else None
        get_next: asyncio.Future[SignalEnvelope] | None = None

        try:
            if cancel_event is None or not cancel_event.is_set():
                await self._schedule_pass()
            while not self._all_settled():
                if cancel_event is not None and cancel_event.is_set():
                    stop_status = OutcomeStatus.CANCELLED
                    break
                timeout: float | None = None
                if deadline is not None:
                    timeout = deadline - loop.time()
                    if timeout <= 0:
                        stop_status = OutcomeStatus.TIMED_OUT
                        break

                if get_next is None:
                    get_next = asyncio.ensure_future(self._queue.get())
                waiters: set[asyncio.Future[Any]] = {get_next}
                if cancel_wait is not None:
                    waiters.add(cancel_wait)
                done, _ = await asyncio.wait(
                    waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if get_next in done:
                    envelope = get_next.result()
                    get_next = None
                    await self._apply(envelope)
                    await self._schedule_pass()
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        # Record whatever was already in flight, without scheduling anything.
        if get_next is not None:
            if get_next.done():
                await self._apply(get_next.result())
            else:
                get_next.cancel()
        while not self._queue.empty():
            await self._apply(self._queue.get_nowait())

        if stop_status is not None:
            await self._time_out_remaining(stop_status)
        await self._reap_launches()

        outcome = self._build_outcome(stop_status, started_at)
        log.info(
            "scheduling_finished",
            plan_id=self._plan_id,
            status=outcome.status.value,
            failed=outcome.failed_units,
            skipped=outcome.skipped_units,
            timed_out=outcome.timed_out_units,
        )
        return outcome

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _schedule_pass(self) -> None:
        """Launch every pending unit whose gating edges are all met."""
        ready = [
            name
            for name in self._graph
            if self._tracker.phase(name) == Phase.PENDING and self._is_ready(name)
        ]
        if not ready:
            return
        wave = LaunchWave(index=len(self._waves), units=tuple(ready))
        self._waves.append(wave)
        log.debug("launch_wave", wave=wave.index, units=list(wave.units))
        for name in ready:
            await self._publish(self._tracker.mark_starting(name))
            task = asyncio.create_task(self._launch(name), name=f"launch_{name}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _is_ready(self, name: str) -> bool:
        for dep in self._graph.dependencies(name):
            if self._tracker.is_condition_met(dep.target, dep.condition):
                continue
            # A non-required edge stops gating once it can never be met.
            if not dep.required and self._tracker.is_unsatisfiable(dep.target, dep.condition):
                continue
            return False
        return True

    def _all_settled(self) -> bool:
        return all(self._tracker.is_settled(name) for name in self._graph)

    async def _launch(self, name: str) -> None:
        bind_plan_context(plan_id=self._plan_id, unit=name)
        assert self._signals is not None
        unit = self._graph.unit(name)
        try:
            await self._launcher.launch(unit, self._signals)
        except LaunchRejectedError as exc:
            log.error("unit_launch_rejected", unit=name, reason=exc.reason)
            self._signals.failed(name, exc.reason)
        except Exception as exc:
            log.error("unit_launch_error", unit=name, error=str(exc))
            self._signals.failed(name, f"launcher error: {exc}")
        else:
            log.info("unit_launch_accepted", unit=name, rank=self._graph.rank(name))

    # ------------------------------------------------------------------
    # Signals and failure propagation
    # ------------------------------------------------------------------

    async def _apply(self, envelope: SignalEnvelope) -> None:
        try:
            event = self._tracker.record_signal(envelope.unit, envelope.signal)
        except OutOfOrderSignalError as exc:
            log.warning(
                "out_of_order_signal",
                unit=envelope.unit,
                signal=str(envelope.signal),
                phase=exc.phase,
            )
            self._ignored.append(exc.message)
            return
        if event is None:
            return
        await self._publish(event)
        if event.phase in TERMINAL_PHASES:
            await self._propagate(event.unit)

    async def _propagate(self, origin: str) -> None:
        """Skip pending dependents that can never be launched because of *origin*.

        Walks dependent edges breadth-first.  Every unit is expanded at most
        once per run, so the total work is linear in the number of edges.
        """
        if origin in self._propagated:
            return
        self._propagation_passes += 1
        assert self._propagation_passes <= len(self._graph), "failure propagation did not converge"

        frontier = deque([origin])
        while frontier:
            current = frontier.popleft()
            if current in self._propagated:
                continue
            self._propagated.add(current)
            state = self._tracker.state(current)
            cause = (
                f"exited({state.exit_code})" if state.phase == Phase.EXITED else state.phase.value
            )
            for dependent in self._graph.dependents(current):
                if self._tracker.phase(dependent) != Phase.PENDING:
                    continue
                edge = self._graph.edge(dependent, current)
                if not edge.required:
                    continue
                if not self._tracker.is_unsatisfiable(current, edge.condition):
                    continue
                event = self._tracker.mark_skipped(
                    dependent,
                    reason=(
                        f"dependency '{current}' is {cause} "
                        f"and cannot become {edge.condition.value}"
                    ),
                )
                if event is not None:
                    await self._publish(event)
                    frontier.append(dependent)

    async def _time_out_remaining(self, status: OutcomeStatus) -> None:
        cause = "run cancelled" if status == OutcomeStatus.CANCELLED else "deadline expired"
        for name in self._graph:
            phase = self._tracker.phase(name)
            reason = (
                f"{cause} before launch"
                if phase == Phase.PENDING
                else f"{cause} while waiting for the unit to start"
            )
            event = self._tracker.mark_timed_out(name, reason=reason)
            if event is not None:
                await self._publish(event)

    async def _reap_launches(self) -> None:
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            log.debug("launch_tasks_cancelled", count=len(pending))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def _publish(self, event: TransitionEvent) -> None:
        log.info(
            "unit_transition",
            unit=event.unit,
            previous=event.previous.value,
            phase=event.phase.value,
            exit_code=event.exit_code,
            reason=event.reason,
        )
        payload: dict[str, Any] = {"event": "unit_transition", "plan_id": self._plan_id}
        payload.update(event.to_dict())
        await self._bus.emit(TOPIC_UNITS, payload)

    def _build_outcome(self, stop_status: OutcomeStatus | None, started_at: float) -> Outcome:
        units: dict[str, UnitOutcome] = {}
        for name in self._graph.names:
            state = self._tracker.state(name)
            spec = self._graph.unit(name)
            units[name] = UnitOutcome(
                name=name,
                phase=state.phase,
                has_health_check=spec.has_health_check,
                allow_failure=spec.allow_failure,
                exit_code=state.exit_code,
                reason=state.reason,
                started_at=state.started_at,
                settled_at=state.settled_at,
            )

        if stop_status is not None:
            status = stop_status
        elif all(u.succeeded or u.allow_failure for u in units.values()):
            status = OutcomeStatus.SUCCESS
        else:
            status = OutcomeStatus.PARTIAL_FAILURE

        return Outcome(
            plan_id=self._plan_id,
            status=status,
            units=units,
            events=self._tracker.events,
            waves=tuple(self._waves),
            ignored_signals=tuple(self._ignored),
            started_at=started_at,
            finished_at=time.time(),
        )
