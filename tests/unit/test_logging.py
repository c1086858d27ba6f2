"""Unit tests — configure_logging and run context binding."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from stackup.logging import bind_plan_context, clear_plan_context, configure_logging, get_logger


def _records(path: Path) -> list[dict[str, Any]]:
    return [json.loads(line) for line in path.read_text().splitlines()]


@pytest.mark.unit
@pytest.mark.usefixtures("restore_logging")
class TestConfigureLogging:
    def test_json_file_records(self, tmp_path: Path) -> None:
        log_file = tmp_path / "stackup.log"
        configure_logging(level="debug", format="json", log_file=str(log_file))

        get_logger("stackup.tests.records").info("unit_launched", rank=0)

        (record,) = _records(log_file)
        assert record["event"] == "unit_launched"
        assert record["rank"] == 0
        assert record["level"] == "info"
        assert record["logger"] == "stackup.tests.records"
        assert "timestamp" in record

    def test_level_filters(self, tmp_path: Path) -> None:
        log_file = tmp_path / "stackup.log"
        configure_logging(level="warning", format="json", log_file=str(log_file))

        log = get_logger("stackup.tests.level")
        log.info("quiet")
        log.warning("loud")

        assert [r["event"] for r in _records(log_file)] == ["loud"]

    def test_plan_context_is_injected(self, tmp_path: Path) -> None:
        log_file = tmp_path / "stackup.log"
        configure_logging(format="json", log_file=str(log_file))
        log = get_logger("stackup.tests.context")

        try:
            bind_plan_context(plan_id="web-stack", unit="db")
            log.info("bound")
            # Explicit keys win over the bound context.
            log.info("explicit", unit="api")
        finally:
            clear_plan_context()
        log.info("cleared")

        bound, explicit, cleared = _records(log_file)
        assert (bound["plan_id"], bound["unit"]) == ("web-stack", "db")
        assert explicit["unit"] == "api"
        assert "plan_id" not in cleared and "unit" not in cleared

    @pytest.mark.asyncio
    async def test_unit_context_stays_in_its_task(self, tmp_path: Path) -> None:
        log_file = tmp_path / "stackup.log"
        configure_logging(format="json", log_file=str(log_file))
        log = get_logger("stackup.tests.tasks")

        async def launch(unit: str) -> None:
            bind_plan_context(unit=unit)
            log.info("launched")

        try:
            bind_plan_context(plan_id="web-stack")
            await asyncio.gather(asyncio.create_task(launch("db")), asyncio.create_task(launch("api")))
            log.info("after")
        finally:
            clear_plan_context()

        *launched, after = _records(log_file)
        assert sorted(r["unit"] for r in launched) == ["api", "db"]
        assert all(r["plan_id"] == "web-stack" for r in launched)
        assert after["event"] == "after"
        assert "unit" not in after
