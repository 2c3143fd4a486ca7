"""Domain exception hierarchy.

Before streaming starts, each exception maps to an HTTP status code at the
interface layer. Once the progress stream is open, the orchestrator turns
failures into ``warning`` events or a terminal ``error`` event instead.
"""

from __future__ import annotations

from collections.abc import Sequence


class RepoExplainerError(Exception):
    """Base exception for the entire application."""


# ── Input validation ────────────────────────────────────────────────────────


class InvalidRepositoryUrlError(RepoExplainerError):
    """The supplied URL is not a cloneable Git repository URL."""


class InvalidRepositoryPathError(RepoExplainerError):
    """The supplied local path is missing, not a directory, or not allowed."""


class EmptyRepositoryError(RepoExplainerError):
    """The crawl finished but no file passed the filters."""


class CrawlError(RepoExplainerError):
    """The repository root could not be walked."""


# ── Cloning ─────────────────────────────────────────────────────────────────


class RepositoryAccessDeniedError(RepoExplainerError):
    """The remote repository is private or the supplied token was rejected."""


class CloneError(RepoExplainerError):
    """``git clone`` failed for a reason other than authentication."""


# ── LLM errors ──────────────────────────────────────────────────────────────


class LlmError(RepoExplainerError):
    """Any error originating from an LLM call."""


class ProviderError(LlmError):
    """Network failure, non-2xx status or empty body from the provider."""


class ResponseParseError(LlmError):
    """The provider answered with text that is not valid JSON."""


class ResponseSchemaError(LlmError):
    """The JSON parsed but does not match the expected shape."""


# ── Deadlines ───────────────────────────────────────────────────────────────


class RateLimitDeadlineError(RepoExplainerError):
    """Waiting for a rate-limit token would overrun the pipeline deadline.

    Deliberately not an ``LlmError``; the run ends as cancelled.
    """


# ── Cache ───────────────────────────────────────────────────────────────────


class CacheError(RepoExplainerError):
    """A cache entry could not be written."""


# ── Schema extraction ───────────────────────────────────────────────────────


class NoSchemaExtractedError(RepoExplainerError):
    """Every migration was applied and no table survived."""

    def __init__(self, message: str, warnings: Sequence[object] = ()) -> None:
        super().__init__(message)
        self.warnings = tuple(warnings)


# ── Progress stream ─────────────────────────────────────────────────────────


class ProgressBusClosedError(RepoExplainerError):
    """An event was emitted after the terminal event."""
