"""Deterministic microservice discovery for monorepos.

Candidates come from several independent signals, each with a fixed
confidence:

==========================  ==========
signal                      confidence
==========================  ==========
several ``main.go`` files   0.9
Makefile ``run-<svc>``      0.8
docker-compose services     0.8
nested ``package.json``     0.7
``services/<name>`` dirs    0.6
==========================  ==========

Candidates with the same (case-insensitive) name are merged, keeping the
most confident one and the union of the signals.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace

import yaml

from repo_explainer.domain.entities import ApiType, DiscoveredService

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.5

SERVICE_PARENT_DIRS = frozenset(
    {"services", "service", "apps", "cmd", "microservices", "packages", "servers"}
)
_SERVICE_HINTS = ("api", "server", "service", "gateway", "worker", "daemon")
_IGNORED_CHILDREN = frozenset(
    {
        "test", "tests", "testing", "spec", "specs", "vendor", "node_modules",
        "docs", "doc", "documentation", "examples", "example", "build", "dist",
        "target", "bin", "lib", "pkg", "internal", "shared", "common", "utils",
    }
)  # fmt: skip
_COMMON_MAKE_TARGETS = frozenset(
    {"build", "test", "clean", "install", "lint", "fmt", "vet", "dev", "prod",
     "docker", "deploy", "up", "down", "all", "local", "tests"}
)  # fmt: skip
_MANIFESTS = ("package.json", "go.mod", "pyproject.toml", "requirements.txt",
              "pom.xml", "build.gradle", "cargo.toml", "dockerfile", "main.go")  # fmt: skip
_ENTRY_POINTS = (
    "main.go", "cmd/main.go", "index.js", "server.js", "app.js", "src/index.js",
    "src/index.ts", "src/main.ts", "main.py", "app.py", "src/main.py", "package.json",
)  # fmt: skip
_COMPOSE_NAMES = frozenset(
    {"docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml"}
)

_MAKE_RUN_RE = re.compile(r"^(?:run|start)-([\w-]+):", re.MULTILINE)
_GO_RUN_RE = re.compile(r"go\s+run\s+\./cmd/([\w-]+)")
_PORT_RE = re.compile(r"""[:"'=\s](\d{4,5})[:"'\s,)]""")
_README_LINE_RE = re.compile(r"^(?!#|\s*$|!\[|<|```|\[!)(.+)$", re.MULTILINE)

_LANGUAGE_BY_EXT = {
    ".go": "Go", ".js": "Node.js", ".ts": "Node.js", ".mjs": "Node.js",
    ".py": "Python", ".java": "Java", ".kt": "Kotlin", ".rs": "Rust",
    ".rb": "Ruby", ".cs": "C#", ".php": "PHP",
}  # fmt: skip


@dataclass
class _Candidate:
    name: str
    path: str
    entry_point: str
    confidence: float
    signals: list[str] = field(default_factory=list)
    language: str = ""
    port: int | None = None


def _basename(path: str) -> str:
    return path.rsplit("/", 1)[-1].lower()


def _service_name_from_path(path: str) -> str | None:
    parts = path.split("/")
    for i, part in enumerate(parts[:-1]):
        if part.lower() in SERVICE_PARENT_DIRS:
            return parts[i + 1]
    return parts[-2] if len(parts) > 1 else None


def _title(name: str) -> str:
    return " ".join(w.capitalize() for w in re.split(r"[-_\s]+", name) if w)


class HeuristicServiceDiscovery:
    """Default ``ServiceDiscovery`` over the repository's file contents."""

    def discover(
        self, file_contents: Mapping[str, str], folders: Sequence[str]
    ) -> list[DiscoveredService]:
        candidates: list[_Candidate] = []
        candidates += self._from_main_go(file_contents)
        candidates += self._from_makefile(file_contents)
        candidates += self._from_compose(file_contents)
        candidates += self._from_package_json(file_contents)
        candidates += self._from_directories(file_contents, folders)

        services = [
            self._finish(candidate, file_contents)
            for candidate in self._merge(candidates)
            if candidate.confidence >= MIN_CONFIDENCE
        ]
        logger.info("Discovered %d services", len(services))
        return services

    # ── Signals ─────────────────────────────────────────────────────────

    @staticmethod
    def _from_main_go(files: Mapping[str, str]) -> list[_Candidate]:
        mains = sorted(p for p in files if _basename(p) == "main.go")
        if len(mains) == 1 and not any(
            part.lower() in SERVICE_PARENT_DIRS or any(h in part.lower() for h in _SERVICE_HINTS)
            for part in mains[0].split("/")[:-1]
        ):
            return []
        out = []
        for path in mains:
            name = _service_name_from_path(path)
            if name:
                out.append(
                    _Candidate(name, posixpath.dirname(path), path, 0.9, ["main.go"], "Go")
                )
        return out

    @staticmethod
    def _from_makefile(files: Mapping[str, str]) -> list[_Candidate]:
        out = []
        for path in sorted(p for p in files if _basename(p) == "makefile"):
            content = files[path]
            names = _MAKE_RUN_RE.findall(content) + _GO_RUN_RE.findall(content)
            for name in dict.fromkeys(names):
                if name.lower() in _COMMON_MAKE_TARGETS:
                    continue
                out.append(
                    _Candidate(name, f"cmd/{name}", f"cmd/{name}/main.go", 0.8, ["makefile"], "Go")
                )
        return out

    @staticmethod
    def _from_compose(files: Mapping[str, str]) -> list[_Candidate]:
        out = []
        for path in sorted(p for p in files if _basename(p) in _COMPOSE_NAMES):
            try:
                document = yaml.safe_load(files[path]) or {}
            except yaml.YAMLError as exc:
                logger.warning("Cannot parse %s: %s", path, exc)
                continue
            services = document.get("services") if isinstance(document, dict) else None
            if not isinstance(services, dict):
                continue
            base = posixpath.dirname(path)
            for name, spec in services.items():
                spec = spec if isinstance(spec, dict) else {}
                build = spec.get("build")
                context = build.get("context") if isinstance(build, dict) else build
                service_path = (
                    posixpath.normpath(posixpath.join(base, context))
                    if isinstance(context, str)
                    else f"service-{name}"
                )
                out.append(
                    _Candidate(
                        str(name),
                        service_path,
                        path,
                        0.8,
                        ["docker-compose"],
                        port=_compose_port(spec.get("ports")),
                    )
                )
        return out

    @staticmethod
    def _from_package_json(files: Mapping[str, str]) -> list[_Candidate]:
        manifests = sorted(p for p in files if _basename(p) == "package.json")
        if len(manifests) < 2:
            return []
        out = []
        for path in manifests:
            if "/" not in path:
                continue
            name = _service_name_from_path(path)
            if name:
                out.append(
                    _Candidate(name, posixpath.dirname(path), path, 0.7, ["package.json"], "Node.js")
                )
        return out

    @staticmethod
    def _from_directories(files: Mapping[str, str], folders: Sequence[str]) -> list[_Candidate]:
        out = []
        seen: set[str] = set()
        for folder in sorted(set(folders) | {posixpath.dirname(p) for p in files}):
            parts = folder.split("/")
            for i, part in enumerate(parts[:-1]):
                if part.lower() not in SERVICE_PARENT_DIRS:
                    continue
                name = parts[i + 1]
                service_path = "/".join(parts[: i + 2])
                if service_path in seen or name.lower() in _IGNORED_CHILDREN:
                    continue
                seen.add(service_path)
                prefix = service_path + "/"
                if not any(
                    p.startswith(prefix) and _basename(p) in _MANIFESTS for p in files
                ):
                    continue
                out.append(_Candidate(name, service_path, "", 0.6, ["directory"]))
        return out

    # ── Merge and enrich ────────────────────────────────────────────────

    @staticmethod
    def _merge(candidates: list[_Candidate]) -> list[_Candidate]:
        merged: dict[str, _Candidate] = {}
        for candidate in candidates:
            key = candidate.name.lower()
            existing = merged.get(key)
            if existing is None:
                merged[key] = candidate
                continue
            best = candidate if candidate.confidence > existing.confidence else existing
            other = existing if best is candidate else candidate
            merged[key] = replace(
                best,
                signals=best.signals + [s for s in other.signals if s not in best.signals],
                port=best.port or other.port,
                language=best.language or other.language,
                path=best.path if not best.path.startswith("service-") else other.path,
            )
        return sorted(merged.values(), key=lambda c: (-c.confidence, c.name.lower()))

    def _finish(self, candidate: _Candidate, files: Mapping[str, str]) -> DiscoveredService:
        prefix = candidate.path.rstrip("/") + "/"
        members = sorted(p for p in files if p.startswith(prefix))

        entry_point = candidate.entry_point
        if not entry_point or entry_point not in files:
            fallback = entry_point or candidate.path
            entry_point = next((prefix + e for e in _ENTRY_POINTS if prefix + e in files), fallback)

        language = candidate.language or _language_of(members)
        body = files.get(entry_point, "")
        if not body:
            body = "\n".join(files[p] for p in members[:20])

        port = candidate.port
        if port is None:
            match = _PORT_RE.search(body)
            port = int(match.group(1)) if match else None

        return DiscoveredService(
            name=candidate.name,
            path=candidate.path,
            entry_point=entry_point,
            api_type=self._api_type(body),
            port=port,
            description=self._describe(candidate, files),
            language=language,
        )

    @staticmethod
    def _api_type(content: str) -> ApiType:
        lower = content.lower()
        if "grpc" in lower:
            return ApiType.GRPC
        if "graphql" in lower or "apollo" in lower:
            return ApiType.GRAPHQL
        return ApiType.HTTP

    @staticmethod
    def _describe(candidate: _Candidate, files: Mapping[str, str]) -> str:
        for name in ("README.md", "readme.md", "README"):
            readme = files.get(f"{candidate.path}/{name}")
            if readme:
                match = _README_LINE_RE.search(readme)
                if match:
                    return match.group(1).strip()[:200]
        return f"{_title(candidate.name)} (detected via {', '.join(candidate.signals)})"


def _compose_port(ports: object) -> int | None:
    if not isinstance(ports, list):
        return None
    for entry in ports:
        if isinstance(entry, int):
            return entry
        if isinstance(entry, dict) and "published" in entry:
            try:
                return int(entry["published"])
            except (TypeError, ValueError):
                continue
        if isinstance(entry, str):
            host = entry.split(":")[-2] if entry.count(":") else entry
            host = host.split("/")[0]
            if host.isdigit():
                return int(host)
    return None


def _language_of(paths: Sequence[str]) -> str:
    for path in paths:
        language = _LANGUAGE_BY_EXT.get(posixpath.splitext(path)[1].lower())
        if language:
            return language
    return "Unknown"
