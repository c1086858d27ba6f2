"""Unit tests — ReadinessTracker state machine and readiness queries."""

from __future__ import annotations

import pytest

from stackup.exceptions import OutOfOrderSignalError
from stackup.orchestration.graph import GraphBuilder
from stackup.orchestration.signals import Exited, HealthUpdate, LaunchFailed, Started
from stackup.orchestration.tracker import Phase, ReadinessTracker
from stackup.protocol.models import Condition, UnitSpec


@pytest.fixture
def tracker() -> ReadinessTracker:
    graph = GraphBuilder().build(
        [
            UnitSpec(name="db", has_health_check=True),
            UnitSpec(name="job"),
            UnitSpec(name="app", dependencies=["job"]),
        ]
    )
    return ReadinessTracker(graph)


def _start(tracker: ReadinessTracker, unit: str) -> None:
    tracker.mark_starting(unit)
    tracker.record_signal(unit, Started())


@pytest.mark.unit
class TestTransitions:
    def test_initial_phase_is_pending(self, tracker: ReadinessTracker) -> None:
        assert all(s.phase == Phase.PENDING for s in tracker.snapshot().values())

    def test_launch_lifecycle(self, tracker: ReadinessTracker) -> None:
        tracker.mark_starting("db")
        assert tracker.phase("db") == Phase.STARTING
        tracker.record_signal("db", Started())
        assert tracker.phase("db") == Phase.STARTED
        tracker.record_signal("db", HealthUpdate(healthy=True))
        assert tracker.phase("db") == Phase.HEALTHY
        tracker.record_signal("db", Exited(code=0))
        assert tracker.phase("db") == Phase.EXITED

    def test_health_can_flap(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "db")
        tracker.record_signal("db", HealthUpdate(healthy=False))
        assert tracker.phase("db") == Phase.UNHEALTHY
        assert tracker.state("db").reason == "health check failing"
        tracker.record_signal("db", HealthUpdate(healthy=True))
        assert tracker.phase("db") == Phase.HEALTHY
        assert tracker.state("db").reason is None

    def test_repeated_health_status_is_a_no_op(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "db")
        tracker.record_signal("db", HealthUpdate(healthy=True))
        before = len(tracker.events)
        assert tracker.record_signal("db", HealthUpdate(healthy=True)) is None
        assert len(tracker.events) == before

    def test_exit_before_started(self, tracker: ReadinessTracker) -> None:
        tracker.mark_starting("job")
        event = tracker.record_signal("job", Exited(code=3))
        assert event is not None
        assert event.exit_code == 3
        assert tracker.state("job").reason == "exited with code 3"

    def test_launch_failed(self, tracker: ReadinessTracker) -> None:
        tracker.mark_starting("job")
        tracker.record_signal("job", LaunchFailed(reason="image not found"))
        state = tracker.state("job")
        assert state.phase == Phase.FAILED
        assert state.reason == "image not found"

    def test_started_at_and_settled_at(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "db")
        state = tracker.state("db")
        assert state.started_at is not None
        assert state.settled_at is None
        tracker.record_signal("db", HealthUpdate(healthy=True))
        assert tracker.state("db").settled_at is not None

    def test_events_are_sequenced(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "job")
        tracker.record_signal("job", Exited(code=0))
        events = tracker.events
        assert [e.seq for e in events] == [0, 1, 2]
        assert [(e.previous, e.phase) for e in events] == [
            (Phase.PENDING, Phase.STARTING),
            (Phase.STARTING, Phase.STARTED),
            (Phase.STARTED, Phase.EXITED),
        ]
        assert events[-1].to_dict()["phase"] == "exited"


@pytest.mark.unit
class TestOutOfOrderSignals:
    def test_signal_before_launch(self, tracker: ReadinessTracker) -> None:
        with pytest.raises(OutOfOrderSignalError) as exc_info:
            tracker.record_signal("job", Started())
        assert exc_info.value.phase == "pending"
        assert tracker.phase("job") == Phase.PENDING

    def test_started_twice(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "job")
        with pytest.raises(OutOfOrderSignalError):
            tracker.record_signal("job", Started())

    def test_health_for_unit_without_health_check(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "job")
        with pytest.raises(OutOfOrderSignalError):
            tracker.record_signal("job", HealthUpdate(healthy=True))

    def test_health_before_started(self, tracker: ReadinessTracker) -> None:
        tracker.mark_starting("db")
        with pytest.raises(OutOfOrderSignalError):
            tracker.record_signal("db", HealthUpdate(healthy=True))

    def test_signal_after_terminal_phase(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "job")
        tracker.record_signal("job", Exited(code=0))
        with pytest.raises(OutOfOrderSignalError):
            tracker.record_signal("job", Exited(code=1))
        assert tracker.state("job").exit_code == 0

    def test_unknown_unit(self, tracker: ReadinessTracker) -> None:
        with pytest.raises(OutOfOrderSignalError) as exc_info:
            tracker.record_signal("ghost", Started())
        assert exc_info.value.phase == "unknown"

    def test_mark_starting_twice(self, tracker: ReadinessTracker) -> None:
        tracker.mark_starting("job")
        with pytest.raises(OutOfOrderSignalError):
            tracker.mark_starting("job")


@pytest.mark.unit
class TestSchedulerIssuedTransitions:
    def test_skip_pending_unit(self, tracker: ReadinessTracker) -> None:
        event = tracker.mark_skipped("app", reason="dependency failed")
        assert event is not None
        assert tracker.phase("app") == Phase.SKIPPED

    def test_skip_ignores_launched_unit(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "app")
        assert tracker.mark_skipped("app", reason="late") is None
        assert tracker.phase("app") == Phase.STARTED

    def test_time_out_pending_and_starting(self, tracker: ReadinessTracker) -> None:
        tracker.mark_starting("db")
        assert tracker.mark_timed_out("db", reason="deadline") is not None
        assert tracker.mark_timed_out("job", reason="deadline") is not None
        assert tracker.phase("db") == Phase.TIMED_OUT
        assert tracker.phase("job") == Phase.TIMED_OUT

    def test_time_out_ignores_started_unit(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "db")
        assert tracker.mark_timed_out("db", reason="deadline") is None
        assert tracker.phase("db") == Phase.STARTED


@pytest.mark.unit
class TestReadinessQueries:
    def test_started_condition(self, tracker: ReadinessTracker) -> None:
        assert not tracker.is_condition_met("job", Condition.STARTED)
        tracker.mark_starting("job")
        assert not tracker.is_condition_met("job", Condition.STARTED)
        tracker.record_signal("job", Started())
        assert tracker.is_condition_met("job", Condition.STARTED)

    def test_started_met_by_healthy_not_unhealthy(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "db")
        tracker.record_signal("db", HealthUpdate(healthy=True))
        assert tracker.is_condition_met("db", Condition.STARTED)
        tracker.record_signal("db", HealthUpdate(healthy=False))
        assert not tracker.is_condition_met("db", Condition.STARTED)
        assert not tracker.is_unsatisfiable("db", Condition.STARTED)

    def test_healthy_condition(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "db")
        assert not tracker.is_condition_met("db", Condition.HEALTHY)
        tracker.record_signal("db", HealthUpdate(healthy=True))
        assert tracker.is_condition_met("db", Condition.HEALTHY)

    def test_clean_exit_meets_started_and_completed(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "job")
        tracker.record_signal("job", Exited(code=0))
        assert tracker.is_condition_met("job", Condition.STARTED)
        assert tracker.is_condition_met("job", Condition.COMPLETED_SUCCESSFULLY)
        assert not tracker.is_unsatisfiable("job", Condition.COMPLETED_SUCCESSFULLY)

    def test_failed_exit_is_unsatisfiable(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "job")
        tracker.record_signal("job", Exited(code=1))
        for condition in Condition:
            assert not tracker.is_condition_met("job", condition)
            assert tracker.is_unsatisfiable("job", condition)

    def test_running_unit_is_not_unsatisfiable(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "job")
        assert not tracker.is_unsatisfiable("job", Condition.COMPLETED_SUCCESSFULLY)

    def test_skipped_failed_timed_out_are_unsatisfiable(self, tracker: ReadinessTracker) -> None:
        tracker.mark_skipped("app", reason="x")
        tracker.mark_timed_out("job", reason="x")
        tracker.mark_starting("db")
        tracker.record_signal("db", LaunchFailed(reason="x"))
        for unit in ("app", "job", "db"):
            assert tracker.is_unsatisfiable(unit, Condition.STARTED)

    def test_settled(self, tracker: ReadinessTracker) -> None:
        assert not tracker.is_settled("job")
        _start(tracker, "job")
        # No health check: nothing more to wait for.
        assert tracker.is_settled("job")
        _start(tracker, "db")
        assert not tracker.is_settled("db")
        tracker.record_signal("db", HealthUpdate(healthy=False))
        assert tracker.is_settled("db")

    def test_snapshot_is_idempotent(self, tracker: ReadinessTracker) -> None:
        _start(tracker, "job")
        tracker.record_signal("job", Exited(code=2))
        first = tracker.snapshot()
        assert tracker.snapshot() == first
        assert str(first["job"]) == "exited(2)"

    def test_state_is_a_copy(self, tracker: ReadinessTracker) -> None:
        state = tracker.state("job")
        state.phase = Phase.FAILED
        assert tracker.phase("job") == Phase.PENDING
