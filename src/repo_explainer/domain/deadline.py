"""Pipeline deadline shared with the blocking primitives the pipeline calls.

The orchestrator sets the deadline (in event-loop time) for the duration of
a run; tasks spawned inside the run inherit it through the context.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_deadline: ContextVar[float | None] = ContextVar("pipeline_deadline", default=None)


def current_deadline() -> float | None:
    return _deadline.get()


@contextmanager
def deadline_scope(when: float | None) -> Iterator[None]:
    token = _deadline.set(when)
    try:
        yield
    finally:
        _deadline.reset(token)
