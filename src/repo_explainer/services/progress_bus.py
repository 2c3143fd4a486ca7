"""Ordered single-consumer channel for :class:`ProgressEvent` values.

The pipeline is the only producer.  ``emit`` blocks while the queue is full,
so a slow consumer slows the pipeline down instead of growing memory.  The
first terminal event (``complete`` or ``error``) closes the bus; anything
emitted afterwards raises :class:`ProgressBusClosedError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from repo_explainer.domain.events import ErrorKind, EventType, ProgressEvent, Stage
from repo_explainer.domain.exceptions import ProgressBusClosedError

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


class ProgressBus:
    """Bounded FIFO of progress events.

    Progress values are clamped to ``0..100`` and never go backwards;
    timestamps are strictly increasing within one bus.
    """

    def __init__(
        self,
        maxsize: int = 64,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=maxsize)
        self._clock = clock
        self._progress = 0
        self._last_ts: datetime | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def progress(self) -> int:
        return self._progress

    async def emit(
        self,
        event_type: EventType,
        stage: Stage | str,
        progress: int | None = None,
        message: str = "",
        data: Any = None,
    ) -> ProgressEvent:
        """Queue one event; *progress* ``None`` repeats the current value."""
        event = self._build(event_type, stage, progress, message, data)
        await self._queue.put(event)
        return event

    def abort(self, stage: Stage | str, kind: ErrorKind, message: str) -> None:
        """Close the bus with an error event without waiting for queue space.

        Used from a cancelled task; if the queue is full the consumer is
        gone and the event is dropped.
        """
        if self._closed:
            return
        event = self._build(EventType.ERROR, stage, None, message, {"kind": kind.value})
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug("Dropped terminal event for a stalled consumer")

    def _build(
        self,
        event_type: EventType,
        stage: Stage | str,
        progress: int | None,
        message: str,
        data: Any,
    ) -> ProgressEvent:
        if self._closed:
            raise ProgressBusClosedError(
                f"Cannot emit {event_type.value} event after the terminal event"
            )
        if event_type.is_terminal:
            self._closed = True

        value = self._progress if progress is None else max(0, min(100, int(progress)))
        self._progress = max(self._progress, value)

        stamp = self._clock()
        if self._last_ts is not None and stamp <= self._last_ts:
            stamp = self._last_ts + _TICK
        self._last_ts = stamp

        return ProgressEvent(
            type=event_type,
            stage=stage.value if isinstance(stage, Stage) else stage,
            progress=self._progress,
            message=message,
            data=data,
            timestamp=stamp,
        )

    # ── Shorthands ──────────────────────────────────────────────────────

    async def progress_event(
        self, stage: Stage | str, progress: int, message: str = ""
    ) -> ProgressEvent:
        return await self.emit(EventType.PROGRESS, stage, progress, message)

    async def data(
        self, stage: Stage | str, progress: int | None, message: str, data: Any
    ) -> ProgressEvent:
        return await self.emit(EventType.DATA, stage, progress, message, data)

    async def warning(self, stage: Stage | str, message: str, data: Any = None) -> ProgressEvent:
        return await self.emit(EventType.WARNING, stage, None, message, data)

    async def complete(self, message: str, data: Any) -> ProgressEvent:
        return await self.emit(EventType.COMPLETE, Stage.COMPLETE, 100, message, data)

    async def error(self, stage: Stage | str, kind: ErrorKind, message: str) -> ProgressEvent:
        return await self.emit(EventType.ERROR, stage, None, message, {"kind": kind.value})

    # ── Consumption ─────────────────────────────────────────────────────

    async def get(self) -> ProgressEvent:
        return await self._queue.get()

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        """Yield events in emission order, ending with the terminal one."""
        while True:
            event = await self._queue.get()
            yield event
            if event.type.is_terminal:
                return
