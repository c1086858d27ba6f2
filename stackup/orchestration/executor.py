"""Orchestration layer — Plan executor.

The PlanExecutor is the façade callers use to bring a plan up:
  1. Build the dependency graph (build errors propagate before anything starts)
  2. Create a fresh ReadinessTracker for this run
  3. Run the Scheduler with the caller's cancellation event and deadline
  4. On cancellation or timeout, optionally stop every launched unit in
     reverse dependency order (best effort)
  5. Publish plan start / finish on the event bus and return the Outcome

Background execution:
  ``submit_plan`` starts a run as an asyncio task and ``cancel_plan`` sets
  that run's cancel event, so a cancelled run still produces an Outcome
  instead of a CancelledError.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from stackup.config import Settings, get_settings
from stackup.events.bus import TOPIC_PLANS, EventBus, NullEventBus
from stackup.exceptions import PlanError
from stackup.logging import bind_plan_context, clear_plan_context, get_logger
from stackup.orchestration.graph import DependencyGraph, GraphBuilder
from stackup.orchestration.outcome import Outcome, OutcomeStatus
from stackup.orchestration.scheduler import Scheduler
from stackup.orchestration.tracker import Phase, ReadinessTracker
from stackup.protocol.models import PlanSpec

if TYPE_CHECKING:
    from stackup.launchers.base import Launcher

log = get_logger(__name__)


class PlanExecutor:
    """Brings a plan up end-to-end.

    Usage::

        executor = PlanExecutor(launcher=SubprocessLauncher())
        outcome = await executor.run(plan, timeout=60)
        if not outcome.success:
            print(outcome.failed_units, outcome.skipped_units)
    """

    def __init__(
        self,
        launcher: Launcher,
        bus: EventBus | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._launcher = launcher
        self._bus = bus or NullEventBus()
        self._settings = settings or get_settings()
        self._builder = GraphBuilder()
        self._scheduler = Scheduler(self._bus)
        # plan_id → (task, cancel event) for background runs
        self._running: dict[str, tuple[asyncio.Task[Outcome], asyncio.Event]] = {}
        self._finished: dict[str, Outcome] = {}

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        plan: PlanSpec,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Outcome:
        """Bring *plan* up and return the final :class:`Outcome`.

        Args:
            plan:         The plan to execute.
            timeout:      Seconds before the run is cut short with status
                          ``timed_out``.  Defaults to ``scheduler.default_timeout``.
            cancel_event: Set it to cancel the run (status ``cancelled``).

        Raises:
            PlanError: the plan is structurally invalid.  Nothing was launched.
        """
        bind_plan_context(plan_id=plan.plan_id)
        try:
            graph = self._builder.build(plan.units)
        except PlanError as exc:
            log.error("plan_rejected", plan_id=plan.plan_id, error=str(exc))
            clear_plan_context()
            raise

        if timeout is None:
            timeout = self._settings.scheduler.default_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        await self._bus.emit(
            TOPIC_PLANS,
            {"event": "plan_started", "plan_id": plan.plan_id, "units": graph.names},
        )
        log.info("plan_started", plan_id=plan.plan_id, units=len(graph), timeout=timeout)

        try:
            outcome = await self._scheduler.run(
                graph,
                ReadinessTracker(graph),
                self._launcher,
                plan_id=plan.plan_id,
                cancel_event=cancel_event,
                deadline=deadline,
            )

            if (
                outcome.status in (OutcomeStatus.CANCELLED, OutcomeStatus.TIMED_OUT)
                and self._settings.scheduler.stop_on_cancel
            ):
                await self._teardown(graph, outcome)

            await self._bus.emit(
                TOPIC_PLANS,
                {
                    "event": "plan_finished",
                    "plan_id": plan.plan_id,
                    "status": outcome.status.value,
                    "failed_units": outcome.failed_units,
                    "skipped_units": outcome.skipped_units,
                    "timed_out_units": outcome.timed_out_units,
                },
            )
            log.info("plan_finished", plan_id=plan.plan_id, status=outcome.status.value)
            return outcome
        finally:
            clear_plan_context()

    async def submit_plan(self, plan: PlanSpec, timeout: float | None = None) -> str:
        """Fire-and-forget plan submission.

        Resubmitting a plan_id discards that id's unclaimed Outcome.  While
        an earlier run with the same id is still active, ``cancel_plan`` and
        ``wait_plan`` address the newest run.

        Returns:
            plan_id — the same value as ``plan.plan_id``.  Await the result
            with :meth:`wait_plan`.
        """
        cancel_event = asyncio.Event()
        task: asyncio.Task[Outcome] = asyncio.create_task(
            self.run(plan, timeout=timeout, cancel_event=cancel_event),
            name=f"plan_{plan.plan_id}",
        )
        self._finished.pop(plan.plan_id, None)
        self._running[plan.plan_id] = (task, cancel_event)
        task.add_done_callback(lambda t: self._on_plan_done(plan.plan_id, t))
        log.info("plan_submitted_background", plan_id=plan.plan_id)
        return plan.plan_id

    async def cancel_plan(self, plan_id: str) -> bool:
        """Request cancellation of a plan submitted via ``submit_plan()``.

        Returns:
            True if the plan was found running; False otherwise.
        """
        entry = self._running.get(plan_id)
        if entry is None or entry[0].done():
            return False
        entry[1].set()
        log.info("plan_cancel_requested", plan_id=plan_id)
        return True

    async def wait_plan(self, plan_id: str) -> Outcome | None:
        """Wait for a background plan and claim its Outcome.

        Returns None if the plan is unknown or its Outcome was already
        claimed.  Build errors of the run propagate.
        """
        entry = self._running.get(plan_id)
        if entry is None:
            return self._finished.pop(plan_id, None)
        outcome = await entry[0]
        if self._finished.get(plan_id) is outcome:
            del self._finished[plan_id]
        return outcome

    def _on_plan_done(self, plan_id: str, task: asyncio.Task[Outcome]) -> None:
        entry = self._running.get(plan_id)
        # An older run finishing must not evict a newer run with the same id.
        latest = entry is not None and entry[0] is task
        if latest:
            del self._running[plan_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("plan_background_failed", plan_id=plan_id, error=str(exc))
            return
        if latest:
            self._finished[plan_id] = task.result()

    # ------------------------------------------------------------------
    # Forced teardown
    # ------------------------------------------------------------------

    async def _teardown(self, graph: DependencyGraph, outcome: Outcome) -> None:
        """Stop launched units, dependents before their dependencies."""
        launched = {
            name
            for name, unit in outcome.units.items()
            if unit.phase in (Phase.STARTED, Phase.HEALTHY, Phase.UNHEALTHY, Phase.TIMED_OUT)
            and name in outcome.launch_order
        }
        for name in reversed(graph.topological_order()):
            if name not in launched:
                continue
            try:
                await self._launcher.stop(name)
                log.info("unit_stopped", unit=name)
            except Exception as exc:
                log.warning("unit_stop_failed", unit=name, error=str(exc))


def up(
    plan: PlanSpec,
    launcher: Launcher,
    timeout: float | None = None,
    bus: EventBus | None = None,
    settings: Settings | None = None,
) -> Outcome:
    """Synchronous entry point: bring *plan* up and block until it settles."""

    async def _main() -> Outcome:
        try:
            return await PlanExecutor(launcher, bus=bus, settings=settings).run(
                plan, timeout=timeout
            )
        finally:
            await launcher.aclose()

    return asyncio.run(_main())
