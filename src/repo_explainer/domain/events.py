"""Progress events streamed to the caller while an analysis runs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic_core import to_jsonable_python


class EventType(str, Enum):
    PROGRESS = "progress"
    DATA = "data"
    WARNING = "warning"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (EventType.COMPLETE, EventType.ERROR)


class ErrorKind(str, Enum):
    """Carried in ``data.kind`` of a terminal ``error`` event."""

    INPUT = "input"
    CANCELLED = "cancelled"
    CATASTROPHIC = "catastrophic"
    INTERNAL = "internal"


class Stage(str, Enum):
    DISCOVER = "discover"
    DETECT = "detect"
    MAP = "map"
    FOLDERS = "folders"
    PROJECT = "project"
    DETAILS = "details"
    SERVICES = "services"
    RELATIONSHIPS = "relationships"
    SCHEMA = "schema"
    SECRETS = "secrets"
    QUESTIONS = "questions"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    type: EventType
    stage: str
    progress: int
    message: str = ""
    data: Any = None
    timestamp: datetime | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "stage": self.stage,
            "progress": self.progress,
            "message": self.message,
            "data": to_jsonable_python(self.data),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def to_json_line(self) -> str:
        """One NDJSON record, newline included."""
        return json.dumps(self.to_dict(), ensure_ascii=False) + "\n"
