"""File filtering — decide which paths are worth crawling and which are "important"."""

from __future__ import annotations

from collections.abc import Iterable
from fnmatch import fnmatch

MAX_DEPTH = 8

UNIMPORTANT_DIRS: frozenset[str] = frozenset(
    {
        # Build outputs and dependencies
        "node_modules", "vendor", "target", "build", "dist", "out", "bin",
        ".next", ".nuxt", "__pycache__", ".pytest_cache", ".mypy_cache",
        ".ruff_cache", ".tox", ".venv", "venv", "coverage", ".eggs",
        # IDE and editor files
        ".vscode", ".idea", ".eclipse", ".settings",
        # Version control
        ".git", ".svn", ".hg",
        # Logs and temporary files
        "logs", "tmp", "temp", ".tmp", ".cache",
        # Test artifacts and reports
        "test-results", "coverage-reports", "jest-coverage", ".nyc_output",
        # Package manager artifacts
        ".pnpm-store", ".npm",
        # Language-specific build artifacts
        "cmake-build-debug", "cmake-build-release", "obj",
    }
)  # fmt: skip

UNIMPORTANT_DIR_PATHS: tuple[str, ...] = (
    ".github/workflows", ".yarn/cache", "docs/api", "docs/generated",
    "documentation/auto",
)  # fmt: skip

UNIMPORTANT_FILE_MARKERS: tuple[str, ...] = (
    # Lock files
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "composer.lock",
    "pipfile.lock", "poetry.lock", "cargo.lock", "go.sum",
    # Bundled / compiled output
    ".map", ".min.js", ".min.css", "bundle.js", "bundle.css",
    # Editor droppings
    ".ds_store", "thumbs.db", "desktop.ini", ".swp", ".swo",
    # Test data
    ".test.json", ".spec.json", "__snapshots__", ".coverage",
    # Generated code
    "generated.go", "auto_generated", ".pb.go", ".gen.go",
    # Boilerplate documents
    "changelog", "license", "authors", "contributors", "code_of_conduct",
    # Example env files
    ".env.example", ".env.template", ".env.sample",
)  # fmt: skip

BINARY_EXTENSIONS: tuple[str, ...] = (
    ".woff", ".woff2", ".ttf", ".eot", ".ico", ".png", ".jpg", ".jpeg",
    ".gif", ".svg", ".pdf", ".webp", ".zip", ".gz", ".jar", ".exe", ".so",
)  # fmt: skip

IMPORTANT_FILE_MARKERS: tuple[str, ...] = (
    "readme", "package.json", "go.mod", "pyproject.toml", "requirements.txt",
    "pom.xml", "build.gradle", "docker-compose", "dockerfile",
    "turbo.json", "lerna.json", "nx.json", "pnpm-workspace.yaml", "go.work",
    "makefile", "cargo.toml", "composer.json", "gemfile",
)  # fmt: skip

IMPORTANT_PATH_MARKERS: tuple[str, ...] = (
    ".github/workflows", "k8s/", "kubernetes/", "terraform/",
)

IMPORTANT_CONTENT_LIMIT = 2000


def _segments(rel_path: str) -> list[str]:
    return [part for part in rel_path.lower().split("/") if part]


def is_unimportant_dir(rel_path: str) -> bool:
    """Return *True* if a directory should be pruned from the walk."""
    parts = _segments(rel_path)
    if len(parts) > MAX_DEPTH:
        return True
    if any(part in UNIMPORTANT_DIRS or part.endswith(".egg-info") for part in parts):
        return True
    joined = "/".join(parts) + "/"
    return any(f"/{marker}/" in f"/{joined}" for marker in UNIMPORTANT_DIR_PATHS)


def is_unimportant_file(rel_path: str) -> bool:
    """Return *True* for lock files, bundles, generated code and binary assets."""
    lower = rel_path.lower()
    name = lower.rsplit("/", 1)[-1]
    if any(marker in name for marker in UNIMPORTANT_FILE_MARKERS):
        return True
    if lower.endswith(".sql") and "seed" in lower:
        return True
    if lower.endswith(".json") and "fixture" in lower:
        return True
    return lower.endswith(BINARY_EXTENSIONS)


def is_secret_file(name: str, patterns: Iterable[str]) -> bool:
    """Match a file's basename against shell-style secret-file patterns."""
    return any(fnmatch(name, pattern) for pattern in patterns)


def is_important_file(rel_path: str) -> bool:
    """Manifests, READMEs and deployment descriptors used for project detection."""
    lower = rel_path.lower()
    name = lower.rsplit("/", 1)[-1]
    if any(marker in name for marker in IMPORTANT_FILE_MARKERS):
        return True
    return any(marker in f"/{lower}" for marker in IMPORTANT_PATH_MARKERS)


def head(content: str, limit: int = IMPORTANT_CONTENT_LIMIT) -> str:
    """Bound *content* to *limit* characters, marking the cut with ``...``."""
    if len(content) <= limit:
        return content
    return content[:limit] + "..."


def is_migration_file(rel_path: str) -> bool:
    """``.sql`` file below any directory whose name contains "migration"."""
    lower = rel_path.lower()
    if not lower.endswith(".sql"):
        return False
    return any("migration" in part for part in _segments(lower)[:-1])
