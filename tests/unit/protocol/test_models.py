"""Unit tests — Plan protocol models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stackup.protocol.models import (
    Condition,
    DependencySpec,
    HealthCheckSpec,
    PlanSpec,
    UnitSpec,
    parse_duration,
)


@pytest.mark.unit
class TestParseDuration:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("30s", 30.0),
            ("1m30s", 90.0),
            ("1h", 3600.0),
            ("500ms", 0.5),
            ("2.5", 2.5),
            (10, 10),
        ],
    )
    def test_valid(self, value: object, expected: float) -> None:
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "abc", "10x", "1m 30s"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_duration(value)


@pytest.mark.unit
class TestDependencySpec:
    def test_defaults(self) -> None:
        dep = DependencySpec(target="db")
        assert dep.condition == Condition.STARTED
        assert dep.required is True

    def test_compose_condition_alias(self) -> None:
        dep = DependencySpec(target="db", condition="service_healthy")
        assert dep.condition == Condition.HEALTHY
        dep = DependencySpec(target="job", condition="service_completed_successfully")
        assert dep.condition == Condition.COMPLETED_SUCCESSFULLY

    def test_unknown_condition(self) -> None:
        with pytest.raises(ValidationError):
            DependencySpec(target="db", condition="ready")

    def test_frozen(self) -> None:
        dep = DependencySpec(target="db")
        with pytest.raises(ValidationError):
            dep.target = "cache"  # type: ignore[misc]


@pytest.mark.unit
class TestUnitSpec:
    def test_minimal(self) -> None:
        unit = UnitSpec(name="db")
        assert unit.dependencies == []
        assert unit.has_health_check is False
        assert unit.allow_failure is False

    def test_health_check_implies_flag(self) -> None:
        unit = UnitSpec(name="db", health_check={"test": ["pg_isready"]})
        assert unit.has_health_check is True

    def test_health_check_contradicting_flag(self) -> None:
        with pytest.raises(ValidationError):
            UnitSpec(name="db", has_health_check=False, health_check={"test": ["true"]})

    def test_dependency_shorthand(self) -> None:
        unit = UnitSpec(name="api", dependencies=["db", {"target": "cache", "required": False}])
        assert unit.dependencies[0] == DependencySpec(target="db")
        assert unit.dependency_on("cache") is not None
        assert unit.dependency_on("cache").required is False
        assert unit.dependency_on("queue") is None

    def test_duplicate_dependency_target(self) -> None:
        with pytest.raises(ValidationError, match="more than once"):
            UnitSpec(name="api", dependencies=["db", {"target": "db", "condition": "healthy"}])

    def test_command_string_is_split(self) -> None:
        unit = UnitSpec(name="web", command="python -m http.server '8080'")
        assert unit.command == ["python", "-m", "http.server", "8080"]

    @pytest.mark.parametrize("name", ["-db", "", "a b", "db/primary", "x" * 129])
    def test_invalid_names(self, name: str) -> None:
        with pytest.raises(ValidationError):
            UnitSpec(name=name)

    @pytest.mark.parametrize("name", ["db", "db-1", "api.v2", "worker_3", "9lives"])
    def test_valid_names(self, name: str) -> None:
        assert UnitSpec(name=name).name == name

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            UnitSpec(name="db", image="postgres")  # type: ignore[call-arg]


@pytest.mark.unit
class TestHealthCheckSpec:
    def test_string_test_is_split(self) -> None:
        check = HealthCheckSpec(test="curl -f http://localhost")
        assert check.test == ["curl", "-f", "http://localhost"]

    def test_duration_fields(self) -> None:
        check = HealthCheckSpec(test=["true"], interval="1m", timeout="500ms", start_period=5)
        assert check.interval == 60.0
        assert check.timeout == 0.5
        assert check.start_period == 5.0
        assert check.retries is None

    def test_empty_test_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HealthCheckSpec(test=[])

    def test_zero_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HealthCheckSpec(test=["true"], interval=0)


@pytest.mark.unit
class TestPlanSpec:
    def test_generated_plan_id(self) -> None:
        first, second = PlanSpec(), PlanSpec()
        assert len(first.plan_id) == 12
        assert first.plan_id != second.plan_id

    def test_duplicate_names_left_to_graph_builder(self) -> None:
        plan = PlanSpec(units=[UnitSpec(name="a"), UnitSpec(name="a")])
        assert [u.name for u in plan.units] == ["a", "a"]
