"""LLM-produced summaries and the aggregated analysis result.

Unlike the plain dataclasses in ``entities``, these are pydantic models: they
cross the LLM boundary (validated on the way in) and the cache boundary
(serialized to disk), so both directions need a schema.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from repo_explainer.domain.canonical_schema import SchemaReport
from repo_explainer.domain.entities import (
    CrawlStats,
    DetectionResult,
    DiscoveredService,
    ProjectSecrets,
    ServiceGraph,
)


def _as_list(value: Any) -> Any:
    """LLMs answer ``null`` or a bare string where a list is expected."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return value


def _as_text(value: Any) -> Any:
    if value is None:
        return ""
    return value


class _Summary(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FileSummary(_Summary):
    language: str = ""
    purpose: str
    key_types: list[str] = []
    functions: list[str] = []
    imports: list[str] = []
    side_effects: list[str] = []
    risks: list[str] = []
    complexity: Complexity = Complexity.MEDIUM

    _lists = field_validator(
        "key_types", "functions", "imports", "side_effects", "risks", mode="before"
    )(_as_list)
    _text = field_validator("language", mode="before")(_as_text)

    @field_validator("complexity", mode="before")
    @classmethod
    def _lower_complexity(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class FolderSummary(_Summary):
    path: str = ""
    purpose: str
    languages: dict[str, int] = {}
    key_modules: list[str] = []
    dependencies: list[str] = []
    architecture: str = ""
    file_summaries: dict[str, FileSummary] = {}

    _lists = field_validator("key_modules", "dependencies", mode="before")(_as_list)
    _text = field_validator("architecture", mode="before")(_as_text)


class Architecture(str, Enum):
    MONOLITH = "monolith"
    MICROSERVICES = "microservices"


class RepoLayout(str, Enum):
    SINGLE_REPO = "single-repo"
    MONOREPO = "monorepo"


class MonorepoService(_Summary):
    name: str
    path: str = ""
    language: str = ""
    short_purpose: str = ""
    api_type: str = ""
    port: int | None = None
    entry_point: str = ""

    @field_validator("port", mode="before")
    @classmethod
    def _port_from_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            digits = "".join(ch for ch in v if ch.isdigit())
            return int(digits) if digits else None
        return v


class DetailedAnalysis(_Summary):
    repo_summary_line: str
    architecture: Architecture = Architecture.MONOLITH
    repo_layout: RepoLayout = RepoLayout.SINGLE_REPO
    main_stacks: list[str] = []
    monorepo_services: list[MonorepoService] = []
    evidence_paths: list[str] = []
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    _lists = field_validator(
        "main_stacks", "monorepo_services", "evidence_paths", mode="before"
    )(_as_list)

    @field_validator("architecture", "repo_layout", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class ProjectSummary(_Summary):
    purpose: str
    architecture: str = ""
    data_models: list[str] = []
    external_services: list[str] = []
    languages: dict[str, int] = {}
    folder_summaries: dict[str, FolderSummary] = {}
    detailed_analysis: DetailedAnalysis | None = None

    _lists = field_validator("data_models", "external_services", mode="before")(_as_list)
    _text = field_validator("architecture", mode="before")(_as_text)


class HelpfulQuestion(_Summary):
    question: str
    answer: str


class HelpfulQuestions(_Summary):
    questions: list[HelpfulQuestion] = []

    _lists = field_validator("questions", mode="before")(_as_list)


class AnalysisResult(BaseModel):
    """Everything one pipeline run produced; sub-results it could not build stay ``None``."""

    project_summary: ProjectSummary | None = None
    folder_summaries: dict[str, FolderSummary] = {}
    file_summaries: dict[str, FileSummary] = {}
    project_type: DetectionResult | None = None
    stats: CrawlStats | None = None
    services: list[DiscoveredService] = []
    service_graph: ServiceGraph | None = None
    database_schema: SchemaReport | None = None
    secrets: ProjectSecrets | None = None
    helpful_questions: list[HelpfulQuestion] = []
    warnings: list[str] = []
