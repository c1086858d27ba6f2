"""Unit tests — EventBus implementations."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from stackup.events.bus import (
    TOPIC_PLANS,
    TOPIC_UNITS,
    EventBus,
    FanoutEventBus,
    LogEventBus,
    NullEventBus,
    QueueEventBus,
)


class _RecordingBus(EventBus):
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self.events.append((topic, event))


class _BrokenBus(EventBus):
    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        raise RuntimeError("disk full")


@pytest.mark.unit
class TestNullEventBus:
    @pytest.mark.asyncio
    async def test_emit_is_a_no_op(self) -> None:
        await NullEventBus().emit(TOPIC_UNITS, {"event": "x"})

    def test_subscribe_not_supported(self) -> None:
        with pytest.raises(NotImplementedError):
            NullEventBus().subscribe([TOPIC_UNITS])


@pytest.mark.unit
class TestLogEventBus:
    @pytest.mark.asyncio
    async def test_writes_ndjson(self, tmp_path: Path) -> None:
        path = tmp_path / "audit" / "events.ndjson"
        bus = LogEventBus(path)
        await bus.emit(TOPIC_UNITS, {"event": "unit_transition", "unit": "db"})
        await bus.emit(TOPIC_PLANS, {"event": "plan_finished"})

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["unit"] == "db"
        assert first["_topic"] == TOPIC_UNITS
        assert "_timestamp" in first

    @pytest.mark.asyncio
    async def test_without_file(self) -> None:
        await LogEventBus().emit(TOPIC_UNITS, {"event": "x"})


@pytest.mark.unit
class TestQueueEventBus:
    @pytest.mark.asyncio
    async def test_topic_filtering(self) -> None:
        bus = QueueEventBus()
        units = bus.subscribe([TOPIC_UNITS])
        everything = bus.subscribe([TOPIC_UNITS, TOPIC_PLANS])

        await bus.emit(TOPIC_PLANS, {"event": "plan_started"})
        await bus.emit(TOPIC_UNITS, {"event": "unit_transition"})
        bus.close()

        assert [e["event"] async for e in units] == ["unit_transition"]
        assert [e["event"] async for e in everything] == ["plan_started", "unit_transition"]

    @pytest.mark.asyncio
    async def test_subscribers_get_independent_copies(self) -> None:
        bus = QueueEventBus()
        first = bus.subscribe([TOPIC_UNITS])
        second = bus.subscribe([TOPIC_UNITS])
        await bus.emit(TOPIC_UNITS, {"event": "x"})
        bus.close()

        (a,) = [e async for e in first]
        (b,) = [e async for e in second]
        a["event"] = "mutated"
        assert b["event"] == "x"

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_receiving(self) -> None:
        bus = QueueEventBus()
        subscription = bus.subscribe([TOPIC_UNITS])
        subscription.close()
        await bus.emit(TOPIC_UNITS, {"event": "late"})
        assert [e async for e in subscription] == []

    @pytest.mark.asyncio
    async def test_overflow_drops_events(self) -> None:
        bus = QueueEventBus(maxsize=2)
        subscription = bus.subscribe([TOPIC_UNITS])
        for i in range(5):
            await bus.emit(TOPIC_UNITS, {"event": "x", "i": i})
        subscription.close()
        received = [e async for e in subscription]
        # The close sentinel evicts one buffered event when the queue is full.
        assert [e["i"] for e in received] == [1]


@pytest.mark.unit
class TestFanoutEventBus:
    @pytest.mark.asyncio
    async def test_broadcasts(self) -> None:
        a, b = _RecordingBus(), _RecordingBus()
        await FanoutEventBus([a, b]).emit(TOPIC_UNITS, {"event": "x"})
        assert len(a.events) == 1 and len(b.events) == 1
        assert a.events[0][1]["_topic"] == TOPIC_UNITS

    @pytest.mark.asyncio
    async def test_backend_failure_is_isolated(self) -> None:
        good = _RecordingBus()
        await FanoutEventBus([_BrokenBus(), good]).emit(TOPIC_UNITS, {"event": "x"})
        assert len(good.events) == 1

    @pytest.mark.asyncio
    async def test_no_backends(self) -> None:
        await FanoutEventBus([]).emit(TOPIC_UNITS, {"event": "x"})
