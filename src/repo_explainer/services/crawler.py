"""Repository crawler — walks a checkout and selects the files worth analysing."""

from __future__ import annotations

import logging
import os
from collections import Counter
from collections.abc import Iterable, Sequence
from pathlib import Path

from repo_explainer.domain.entities import CrawlStats, FileRecord
from repo_explainer.domain.exceptions import CrawlError
from repo_explainer.infrastructure.config import Settings
from repo_explainer.services import file_filter
from repo_explainer.services.gitignore import GitIgnore
from repo_explainer.services.security_sentinel import sanitize

logger = logging.getLogger(__name__)


class Crawler:
    """Select files below *root* by ignore rules, extension, size and secret patterns.

    Every returned :class:`FileRecord` lies below *root*, has an extension in
    *supported_extensions*, is at most *max_file_size* bytes, is not matched
    by *secret_patterns* and is not ignored by the default rules or the
    root ``.gitignore``.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        supported_extensions: Iterable[str],
        max_file_size: int,
        secret_patterns: Iterable[str] = (),
        redact_secrets: bool = True,
    ) -> None:
        self._root = Path(root).resolve()
        self._extensions = frozenset(ext.lower() for ext in supported_extensions)
        self._max_file_size = max_file_size
        self._secret_patterns = tuple(secret_patterns)
        self._redact = redact_secrets
        self._gitignore = GitIgnore.with_defaults()
        self._gitignore.load_file(self._root / ".gitignore")

    @classmethod
    def from_settings(cls, root: str | Path, settings: Settings) -> Crawler:
        return cls(
            root,
            supported_extensions=settings.supported_extensions,
            max_file_size=settings.max_file_size_bytes,
            secret_patterns=settings.skip_secret_files,
            redact_secrets=settings.redact_secrets,
        )

    @property
    def root(self) -> Path:
        return self._root

    def crawl(self) -> list[FileRecord]:
        """Walk the tree and return the selected files sorted by relative path.

        Raises :class:`CrawlError` if the root itself cannot be listed;
        unreadable subdirectories are skipped.
        """
        try:
            os.listdir(self._root)
        except OSError as exc:
            raise CrawlError(f"Cannot read repository root {self._root}: {exc}") from exc

        records: list[FileRecord] = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            rel_dir = Path(dirpath).relative_to(self._root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir

            kept_dirs = []
            for name in sorted(dirnames):
                rel = f"{rel_dir}/{name}" if rel_dir else name
                if os.path.islink(os.path.join(dirpath, name)):
                    continue
                if self._gitignore.is_ignored(rel, is_dir=True):
                    continue
                if file_filter.is_unimportant_dir(rel):
                    continue
                kept_dirs.append(name)
            dirnames[:] = kept_dirs

            for name in filenames:
                rel = f"{rel_dir}/{name}" if rel_dir else name
                record = self._select(Path(dirpath) / name, rel)
                if record is not None:
                    records.append(record)

        records.sort(key=lambda r: r.relative_path)
        logger.info("Crawled %s: %d files selected", self._root, len(records))
        return records

    def _select(self, path: Path, rel: str) -> FileRecord | None:
        if path.is_symlink():
            return None
        if self._gitignore.is_ignored(rel, is_dir=False):
            return None
        if file_filter.is_unimportant_file(rel):
            return None
        extension = path.suffix.lower()
        if extension not in self._extensions:
            return None
        if file_filter.is_secret_file(path.name, self._secret_patterns):
            return None
        try:
            size = path.stat().st_size
        except OSError:
            return None
        if size > self._max_file_size:
            return None
        return FileRecord(
            path=str(path),
            relative_path=rel,
            size=size,
            extension=extension,
        )

    def read_file(self, record: FileRecord) -> str:
        """Return the file's text, with secrets redacted when enabled."""
        content = Path(record.path).read_text(encoding="utf-8", errors="replace")
        if self._redact:
            content = sanitize(content).clean_text
        return content

    @staticmethod
    def file_stats(files: Sequence[FileRecord]) -> CrawlStats:
        total = sum(f.size for f in files)
        return CrawlStats(
            total_files=len(files),
            total_size_mb=round(total / (1024 * 1024), 4),
            extensions=dict(sorted(Counter(f.extension for f in files).items())),
        )
