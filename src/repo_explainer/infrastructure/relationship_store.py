"""On-disk store for service graphs, one JSON file per project path."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from repo_explainer.domain.entities import ServiceGraph
from repo_explainer.domain.exceptions import CacheError

logger = logging.getLogger(__name__)

_GRAPH = TypeAdapter(ServiceGraph)


def graph_filename(project_path: str) -> str:
    """``/tmp/repo-x`` → ``tmp_repo-x_service_graph.json``."""
    stem = re.sub(r"[/\\]", "_", project_path).replace(":", "").strip("_")
    return f"{stem or 'root'}_service_graph.json"


class RelationshipStore:
    def __init__(
        self,
        directory: str | Path,
        max_age_hours: float = 24.0,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._dir = Path(directory)
        self._max_age = timedelta(hours=max_age_hours)
        self._clock = clock

    def path_for(self, project_path: str) -> Path:
        return self._dir / graph_filename(project_path)

    def save(self, graph: ServiceGraph) -> Path:
        path = self.path_for(graph.project_path)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(_GRAPH.dump_json(graph, indent=2))
            os.replace(tmp, path)
        except OSError as exc:
            raise CacheError(f"Could not write service graph {path.name}: {exc}") from exc
        logger.info("Saved service graph to %s", path)
        return path

    def load(self, project_path: str) -> ServiceGraph | None:
        """The stored graph, or ``None`` when missing, unreadable or stale."""
        path = self.path_for(project_path)
        try:
            graph = _GRAPH.validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as exc:
            logger.debug("Ignoring unreadable service graph %s: %s", path, exc)
            return None
        try:
            stamp = datetime.fromisoformat(graph.generated_at)
        except ValueError:
            return None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        if self._clock() - stamp > self._max_age:
            return None
        return graph

    def clear(self) -> int:
        """Delete every stored graph; returns how many were removed."""
        removed = 0
        for path in self._dir.glob("*_service_graph.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed
