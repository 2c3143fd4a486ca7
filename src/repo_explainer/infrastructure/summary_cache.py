"""Content-addressed on-disk cache for LLM summaries.

One JSON file per entry, ``{"content_hash", "timestamp", "result"}``.  The
file name is derived from the key (a path or a URL) only; the content hash
stored inside decides whether the entry still applies.  A lookup hits when
the stored hash equals the recomputed one and the entry is younger than the
TTL.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from repo_explainer.domain.exceptions import CacheError
from repo_explainer.domain.summaries import (
    DetailedAnalysis,
    FileSummary,
    FolderSummary,
    HelpfulQuestions,
    ProjectSummary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")
_GITHUB_PATH_RE = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")


def md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()  # noqa: S324 - not security sensitive


def canonical_dump(value: Any) -> str:
    """Key-sorted compact JSON; equal inputs always hash the same."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif isinstance(value, Mapping):
        value = {
            k: (v.model_dump(mode="json") if isinstance(v, BaseModel) else v)
            for k, v in value.items()
        }
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def is_url_key(key: str) -> bool:
    return key.startswith(("http://", "https://", "git@", "ssh://"))


def _url_stem(url: str) -> str:
    match = _GITHUB_PATH_RE.search(url)
    if match:
        stem = f"{match[1]}-{match[2]}"
    else:
        stem = re.sub(r"^[a-z]+://", "", url)
    return (_UNSAFE_CHARS_RE.sub("-", stem).strip("-") or "url")[:50]


class SummaryCache:
    """Persistent store for file, folder, project and repository-level results.

    Parameters
    ----------
    directory:
        Where entries live. Created lazily on first write.
    ttl_hours:
        Entries older than this are misses.
    enabled:
        When ``False`` every ``get_*`` misses and every ``set_*`` is a no-op.
    stable_url_keys:
        For URL-keyed project entries, hash the URL instead of the folder
        summaries so the entry survives unrelated content churn.
    """

    def __init__(
        self,
        directory: str | Path,
        ttl_hours: float = 24.0,
        *,
        enabled: bool = True,
        stable_url_keys: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._dir = Path(directory)
        self._ttl = timedelta(hours=ttl_hours)
        self._enabled = enabled
        self._stable_url_keys = stable_url_keys
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def directory(self) -> Path:
        return self._dir

    # ── Per-kind API ────────────────────────────────────────────────────

    def get_file_summary(self, path: str, content: str) -> FileSummary | None:
        return self._get("file", path, md5_hex(content), FileSummary)

    def set_file_summary(self, path: str, content: str, summary: FileSummary) -> None:
        self._set("file", path, md5_hex(content), summary)

    def get_folder_summary(
        self, path: str, file_summaries: Mapping[str, FileSummary]
    ) -> FolderSummary | None:
        return self._get("folder", path, md5_hex(canonical_dump(file_summaries)), FolderSummary)

    def set_folder_summary(
        self, path: str, file_summaries: Mapping[str, FileSummary], summary: FolderSummary
    ) -> None:
        self._set("folder", path, md5_hex(canonical_dump(file_summaries)), summary)

    def get_project_summary(
        self, key: str, folder_summaries: Mapping[str, FolderSummary]
    ) -> ProjectSummary | None:
        return self._get("project", key, self._project_hash(key, folder_summaries), ProjectSummary)

    def set_project_summary(
        self, key: str, folder_summaries: Mapping[str, FolderSummary], summary: ProjectSummary
    ) -> None:
        self._set("project", key, self._project_hash(key, folder_summaries), summary)

    def get_repository_details(
        self,
        key: str,
        folder_summaries: Mapping[str, FolderSummary],
        file_summaries: Mapping[str, FileSummary],
        important_files: Mapping[str, str],
    ) -> DetailedAnalysis | None:
        digest = self._details_hash(folder_summaries, file_summaries, important_files)
        return self._get("details", key, digest, DetailedAnalysis)

    def set_repository_details(
        self,
        key: str,
        folder_summaries: Mapping[str, FolderSummary],
        file_summaries: Mapping[str, FileSummary],
        important_files: Mapping[str, str],
        details: DetailedAnalysis,
    ) -> None:
        digest = self._details_hash(folder_summaries, file_summaries, important_files)
        self._set("details", key, digest, details)

    def get_questions(self, key: str, project: ProjectSummary) -> HelpfulQuestions | None:
        return self._get("questions", key, md5_hex(canonical_dump(project)), HelpfulQuestions)

    def set_questions(self, key: str, project: ProjectSummary, questions: HelpfulQuestions) -> None:
        self._set("questions", key, md5_hex(canonical_dump(project)), questions)

    def clear(self) -> int:
        """Remove every entry (and the directory itself); returns how many entries went."""
        if not self._dir.exists():
            return 0
        removed = sum(1 for _ in self._dir.glob("*.json"))
        shutil.rmtree(self._dir)
        logger.info("Cleared %d entries from cache directory %s", removed, self._dir)
        return removed

    # ── Internals ───────────────────────────────────────────────────────

    def _project_hash(self, key: str, folder_summaries: Mapping[str, FolderSummary]) -> str:
        if self._stable_url_keys and is_url_key(key):
            return md5_hex(key + "_stable")
        return md5_hex(canonical_dump(folder_summaries))

    @staticmethod
    def _details_hash(
        folder_summaries: Mapping[str, FolderSummary],
        file_summaries: Mapping[str, FileSummary],
        important_files: Mapping[str, str],
    ) -> str:
        composite = {
            "folders": json.loads(canonical_dump(folder_summaries)),
            "files": json.loads(canonical_dump(file_summaries)),
            "important": dict(important_files),
        }
        return md5_hex(canonical_dump(composite))

    def entry_path(self, kind: str, key: str) -> Path:
        """File that holds the *kind* entry for *key*."""
        if is_url_key(key):
            stem = _url_stem(key)
        else:
            base = os.path.basename(key.rstrip("/\\")) if key not in (".", "/") else ""
            stem = _UNSAFE_CHARS_RE.sub("_", base) or "root"
        return self._dir / f"{stem}_{kind}_{md5_hex(key)[:8]}.json"

    def _get(self, kind: str, key: str, content_hash: str, model: type[T]) -> T | None:
        if not self._enabled:
            return None
        path = self.entry_path(kind, key)
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.debug("Cache read failed for %s: %s", path, exc)
            return None

        if not isinstance(envelope, dict) or envelope.get("content_hash") != content_hash:
            return None
        try:
            stamp = datetime.fromisoformat(envelope["timestamp"])
        except (KeyError, TypeError, ValueError):
            return None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        if self._clock() - stamp > self._ttl:
            return None

        try:
            return model.model_validate(envelope.get("result"))
        except ValidationError as exc:
            logger.debug("Discarding malformed cache entry %s: %s", path, exc)
            return None

    def _set(self, kind: str, key: str, content_hash: str, payload: BaseModel) -> None:
        if not self._enabled:
            return
        path = self.entry_path(kind, key)
        envelope = {
            "content_hash": content_hash,
            "timestamp": self._clock().isoformat(),
            "result": payload.model_dump(mode="json"),
        }
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(envelope, fh, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as exc:
            raise CacheError(f"Could not write cache entry {path.name}: {exc}") from exc
