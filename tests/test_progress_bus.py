"""Tests for the ordered progress channel and its wire format."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from repo_explainer.domain.events import ErrorKind, EventType, Stage
from repo_explainer.domain.exceptions import ProgressBusClosedError
from repo_explainer.services.progress_bus import ProgressBus

_FIXED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def _drain(bus: ProgressBus) -> list:
    return [event async for event in bus]


@pytest.mark.asyncio
async def test_progress_is_clamped_and_never_goes_backwards() -> None:
    bus = ProgressBus(16)

    await bus.progress_event(Stage.DISCOVER, 40)
    await bus.progress_event(Stage.DETECT, 10)
    await bus.progress_event(Stage.MAP, 250)
    await bus.warning(Stage.MAP, "skipped a file")
    await bus.complete("done", None)

    events = await _drain(bus)
    assert [e.progress for e in events] == [40, 40, 100, 100, 100]
    assert events[-1].type is EventType.COMPLETE
    assert events[-1].stage == "complete"


@pytest.mark.asyncio
async def test_timestamps_strictly_increase_with_a_frozen_clock() -> None:
    bus = ProgressBus(16, clock=lambda: _FIXED)

    for _ in range(3):
        await bus.progress_event(Stage.MAP, 50)
    await bus.complete("done", None)

    stamps = [e.timestamp for e in await _drain(bus)]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)


@pytest.mark.asyncio
async def test_terminal_event_closes_the_bus() -> None:
    bus = ProgressBus(16)
    await bus.error(Stage.DISCOVER, ErrorKind.INPUT, "nothing to analyze")

    assert bus.closed
    with pytest.raises(ProgressBusClosedError):
        await bus.progress_event(Stage.DETECT, 30)
    with pytest.raises(ProgressBusClosedError):
        await bus.complete("done", None)

    events = await _drain(bus)
    assert len(events) == 1
    assert events[0].data == {"kind": "input"}


@pytest.mark.asyncio
async def test_abort_drops_the_event_when_the_queue_is_full() -> None:
    bus = ProgressBus(1)
    await bus.progress_event(Stage.MAP, 40)

    bus.abort(Stage.MAP, ErrorKind.CANCELLED, "cancelled")

    assert bus.closed
    assert (await bus.get()).type is EventType.PROGRESS


@pytest.mark.asyncio
async def test_abort_queues_error_when_there_is_room() -> None:
    bus = ProgressBus(4)

    bus.abort(Stage.MAP, ErrorKind.CANCELLED, "cancelled")
    bus.abort(Stage.MAP, ErrorKind.CANCELLED, "again")

    events = await _drain(bus)
    assert len(events) == 1
    assert events[0].type is EventType.ERROR
    assert events[0].data == {"kind": "cancelled"}


@pytest.mark.asyncio
async def test_events_serialize_to_one_json_line() -> None:
    bus = ProgressBus(4, clock=lambda: _FIXED)
    event = await bus.data(Stage.DETECT, 32, "Detected backend project", {"primary": "backend"})

    line = event.to_json_line()

    assert line.endswith("\n")
    assert line.count("\n") == 1
    payload = json.loads(line)
    assert payload == {
        "type": "data",
        "stage": "detect",
        "progress": 32,
        "message": "Detected backend project",
        "data": {"primary": "backend"},
        "timestamp": "2024-05-01T12:00:00+00:00",
    }
