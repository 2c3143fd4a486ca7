"""Domain entities — pure data structures with no external dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


# ── Crawl ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class FileRecord:
    """A file selected by the crawler. Read-only for the rest of the run."""

    path: str  # absolute
    relative_path: str  # POSIX separators, relative to the repository root
    size: int
    extension: str  # lowercase, with the leading dot
    is_dir: bool = False

    @property
    def name(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]

    @property
    def parent(self) -> str:
        """Parent directory relative to the root; ``"root"`` for top-level files."""
        head, _, _ = self.relative_path.rpartition("/")
        return head or "root"


@dataclass(frozen=True, slots=True)
class CrawlStats:
    """Aggregate numbers over a crawled file list."""

    total_files: int
    total_size_mb: float
    extensions: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Migration:
    """A single SQL migration file, identified by its sortable name."""

    name: str
    sql: str
    path: str = ""


# ── Project type detection ──────────────────────────────────────────────────


class ProjectType(str, Enum):
    """Coarse classification of what a repository builds."""

    FRONTEND = "frontend"
    BACKEND = "backend"
    FULLSTACK = "fullstack"
    MOBILE = "mobile"
    DESKTOP = "desktop"
    LIBRARY = "library"
    DEVOPS = "devops"
    DATA_SCIENCE = "data_science"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class DetectionResult:
    primary: ProjectType
    secondary: ProjectType | None
    confidence: float  # 0..10
    evidence: dict[str, list[str]] = field(default_factory=dict)
    scores: dict[str, float] = field(default_factory=dict)


# ── Microservices ───────────────────────────────────────────────────────────


class ApiType(str, Enum):
    HTTP = "http"
    GRPC = "grpc"
    GRAPHQL = "graphql"


@dataclass(frozen=True, slots=True)
class DiscoveredService:
    name: str
    path: str
    entry_point: str
    api_type: ApiType = ApiType.HTTP
    port: int | None = None
    description: str = ""
    language: str = ""


class EvidenceType(str, Enum):
    """How a dependency between two services was observed."""

    CONFIG = "config"
    IMPORT = "import"
    NETWORK = "network"


@dataclass(frozen=True, slots=True)
class ServiceRelationship:
    from_service: str
    to_service: str
    evidence_type: EvidenceType
    evidence: str
    file_path: str
    confidence: float  # 0..1


@dataclass(frozen=True, slots=True)
class ServiceGraph:
    """Services plus the dependency edges found between them."""

    services: list[str]
    relationships: list[ServiceRelationship]
    project_path: str
    generated_at: str
    mermaid_graph: str = ""


# ── Secrets ─────────────────────────────────────────────────────────────────


class SecretType(str, Enum):
    API_KEY = "api_key"
    DATABASE_URL = "database_url"
    SECRET = "secret"
    CREDENTIAL = "credential"
    CONFIG = "config"


@dataclass(frozen=True, slots=True)
class SecretVariable:
    """A configuration variable the project expects to be provided."""

    name: str
    description: str
    type: SecretType
    example: str
    required: bool
    source: str  # file the variable was found in


@dataclass(frozen=True, slots=True)
class ServiceSecrets:
    service_name: str
    service_path: str
    variables: list[SecretVariable] = field(default_factory=list)
    config_files: list[str] = field(default_factory=list)


class ProjectLayout(str, Enum):
    MONOREPO = "monorepo"
    SINGLE_SERVICE = "single-service"


@dataclass(frozen=True, slots=True)
class ProjectSecrets:
    project_type: ProjectLayout
    services: list[ServiceSecrets] = field(default_factory=list)
    global_secrets: list[SecretVariable] = field(default_factory=list)
    total_variables: int = 0
    required_count: int = 0
    summary: str = ""
