"""Inter-service dependency discovery.

Edges are read from three kinds of evidence:

* config: docker-compose ``depends_on`` and service-URL environment
  variables, Kubernetes env entries, ``*_SERVICE_URL`` style settings;
* import: Go imports of another service's packages, gRPC client
  constructors;
* network: HTTP calls and ``grpc.Dial`` targets naming another service.

Only edges between two *known* services are kept, at most one per
(from, to, evidence type).
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Callable, Iterator, Mapping, Sequence
from datetime import datetime, timezone

import networkx as nx
import yaml

from repo_explainer.domain.entities import (
    ApiType,
    DiscoveredService,
    EvidenceType,
    ServiceGraph,
    ServiceRelationship,
)

logger = logging.getLogger(__name__)

_COMPOSE_NAMES = frozenset({"docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml"})
_CONFIG_NAMES = frozenset(
    {"config.yaml", "config.yml", "values.yaml", "values.yml", "application.yaml",
     "application.yml", "application.properties", "config.json"}
)  # fmt: skip
_CODE_EXTENSIONS = (".go", ".js", ".ts", ".py", ".java", ".rb", ".rs", ".kt", ".cs")

_ENV_URL_RE = re.compile(
    r"^\s*(?:export\s+)?([A-Z0-9_]*(?:SERVICE|GRPC|API)[A-Z0-9_]*)\s*[=:]\s*[\"']?"
    r"(?:[a-z]+://)?([A-Za-z0-9][A-Za-z0-9_-]*)",
    re.MULTILINE,
)
_K8S_ENV_RE = re.compile(
    r"name:\s*[\"']?(\w*SERVICE\w*|\w*URL\w*|\w*ADDR\w*)[\"']?\s*\n\s*value:\s*[\"']?"
    r"(?:[a-z]+://)?([A-Za-z0-9][A-Za-z0-9_-]*)",
    re.IGNORECASE,
)
_GO_IMPORT_RE = re.compile(r'^\s*(?:import\s+)?(?:[A-Za-z_]\w*\s+)?"([^"\s]+/[^"\s]+)"', re.MULTILINE)
_GRPC_CLIENT_RE = re.compile(r"(\w+?)pb\.New([A-Z]\w*?)Client\b")
_HTTP_CALL_RE = re.compile(
    r"(?:http\.(?:Get|Post|Put|Delete|NewRequest)|client\.(?:Get|Post|Put|Delete)|"
    r"fetch|axios\.(?:get|post|put|delete)|requests\.(?:get|post|put|delete)|httpx\.(?:get|post))"
    r"\s*\([^\"'`)]*[\"'`]([a-z]+://[^\"'`\s]+)",
    re.IGNORECASE,
)
_GRPC_DIAL_RE = re.compile(r"grpc\.(?:Dial|NewClient|DialContext)\s*\([^\"`)]*[\"`]([^\"`]+)[\"`]")
_IP_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")

_SUFFIXES = ("-service", "_service", "service", "-svc", "client")


def _basename(path: str) -> str:
    return path.rsplit("/", 1)[-1].lower()


def _host_of(address: str) -> str:
    host = re.sub(r"^[a-z]+://", "", address).split("/", 1)[0].split(":", 1)[0]
    if host in ("localhost", "0.0.0.0") or _IP_RE.match(host):
        return ""
    return host


def mermaid_id(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_]", "_", name)


class _ServiceIndex:
    """Resolves names, hosts, env prefixes and paths to known services."""

    def __init__(self, services: Sequence[DiscoveredService]) -> None:
        self.services = list(services)
        self._by_alias: dict[str, str] = {}
        for service in services:
            for alias in self._aliases(service.name):
                self._by_alias.setdefault(alias, service.name)
        self._paths = sorted(
            ((s.path.rstrip("/") + "/", s.name) for s in services if s.path),
            key=lambda item: -len(item[0]),
        )

    @staticmethod
    def _aliases(name: str) -> Iterator[str]:
        lower = name.lower()
        yield lower
        yield lower.replace("_", "-")
        for suffix in _SUFFIXES:
            if lower.endswith(suffix) and len(lower) > len(suffix):
                yield lower[: -len(suffix)].rstrip("-_")

    def resolve(self, token: str) -> str | None:
        if not token:
            return None
        for alias in self._aliases(token):
            if alias in self._by_alias:
                return self._by_alias[alias]
        return None

    def resolve_env(self, var: str) -> str | None:
        """``USER_SERVICE_URL`` → the ``user`` service."""
        stem = re.sub(r"_(?:SERVICE|GRPC|API)?_?(?:URL|ADDR|ADDRESS|HOST|ENDPOINT)$", "", var)
        return self.resolve(stem.lower().replace("_", "-"))

    def owner_of(self, path: str) -> str | None:
        for prefix, name in self._paths:
            if path.startswith(prefix):
                return name
        parts = path.split("/")
        for i, part in enumerate(parts[:-1]):
            if part in ("cmd", "services", "apps") and i + 1 < len(parts) - 1:
                return self.resolve(parts[i + 1])
        return None


class HeuristicRelationshipDiscovery:
    """Default ``RelationshipDiscovery`` strategy."""

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        self._clock = clock

    def discover(
        self, services: Sequence[DiscoveredService], file_contents: Mapping[str, str]
    ) -> ServiceGraph:
        index = _ServiceIndex(services)
        found: list[ServiceRelationship] = []
        for path in sorted(file_contents):
            content = file_contents[path]
            name = _basename(path)
            if name in _COMPOSE_NAMES:
                found += self._compose(index, path, content)
            elif name.endswith((".yaml", ".yml")) and _looks_like_k8s(content):
                found += self._kubernetes(index, path, content)
            if name in _CONFIG_NAMES or name.startswith(".env"):
                found += self._config(index, path, content)
            if name.endswith(_CODE_EXTENSIONS):
                found += self._code(index, path, content)

        relationships = self._dedupe(found)
        graph = build_graph(services, relationships)
        logger.info(
            "Found %d relationships between %d services", len(relationships), len(services)
        )
        return ServiceGraph(
            services=[s.name for s in services],
            relationships=relationships,
            project_path="",
            generated_at=self._clock().isoformat(),
            mermaid_graph=render_mermaid(graph),
        )

    # ── Config evidence ─────────────────────────────────────────────────

    @staticmethod
    def _compose(index: _ServiceIndex, path: str, content: str) -> list[ServiceRelationship]:
        try:
            document = yaml.safe_load(content) or {}
        except yaml.YAMLError:
            return []
        compose = document.get("services") if isinstance(document, dict) else None
        if not isinstance(compose, dict):
            return []
        out = []
        for raw_name, spec in compose.items():
            source = index.resolve(str(raw_name))
            if source is None or not isinstance(spec, dict):
                continue
            depends = spec.get("depends_on") or []
            if isinstance(depends, dict):
                depends = list(depends)
            for dep in depends if isinstance(depends, list) else []:
                target = index.resolve(str(dep))
                if target and target != source:
                    out.append(
                        ServiceRelationship(
                            source, target, EvidenceType.CONFIG, f"depends_on: {dep}", path, 1.0
                        )
                    )
            for var, value in _env_items(spec.get("environment")):
                if not re.search(r"SERVICE|API|GRPC|URL|ADDR", var):
                    continue
                target = index.resolve(_host_of(value)) or index.resolve_env(var)
                if target and target != source:
                    out.append(
                        ServiceRelationship(
                            source, target, EvidenceType.CONFIG, f"{var}={value}", path, 0.9
                        )
                    )
        return out

    @staticmethod
    def _kubernetes(index: _ServiceIndex, path: str, content: str) -> list[ServiceRelationship]:
        source = index.owner_of(path) or index.resolve(posixpath.splitext(_basename(path))[0])
        if source is None:
            return []
        out = []
        for var, host in _K8S_ENV_RE.findall(content):
            target = index.resolve(host)
            if target and target != source:
                out.append(
                    ServiceRelationship(
                        source, target, EvidenceType.CONFIG, f"env {var}: {host}", path, 0.9
                    )
                )
        return out

    @staticmethod
    def _config(index: _ServiceIndex, path: str, content: str) -> list[ServiceRelationship]:
        source = index.owner_of(path)
        if source is None:
            return []
        out = []
        for var, host in _ENV_URL_RE.findall(content):
            target = index.resolve(host) or index.resolve_env(var)
            if target and target != source:
                out.append(
                    ServiceRelationship(
                        source, target, EvidenceType.CONFIG, f"{var}={host}", path, 0.8
                    )
                )
        return out

    # ── Code evidence ───────────────────────────────────────────────────

    @staticmethod
    def _code(index: _ServiceIndex, path: str, content: str) -> list[ServiceRelationship]:
        source = index.owner_of(path)
        if source is None:
            return []
        out = []

        def add(target: str | None, kind: EvidenceType, evidence: str, confidence: float) -> None:
            if target and target != source:
                out.append(ServiceRelationship(source, target, kind, evidence, path, confidence))

        if path.endswith(".go"):
            for imported in _GO_IMPORT_RE.findall(content):
                add(_service_from_import(index, imported), EvidenceType.IMPORT,
                    f"import {imported}", 0.9)  # fmt: skip
        for package, client in _GRPC_CLIENT_RE.findall(content):
            target = index.resolve(package) or index.resolve(_snake(client))
            add(target, EvidenceType.IMPORT, f"{package}pb.New{client}Client", 0.95)
        for url in _HTTP_CALL_RE.findall(content):
            add(index.resolve(_host_of(url)), EvidenceType.NETWORK, f"HTTP call to {url}", 0.8)
        for address in _GRPC_DIAL_RE.findall(content):
            add(index.resolve(_host_of(address)), EvidenceType.NETWORK,
                f"gRPC dial to {address}", 0.85)  # fmt: skip
        return out

    @staticmethod
    def _dedupe(relationships: list[ServiceRelationship]) -> list[ServiceRelationship]:
        seen: set[tuple[str, str, EvidenceType]] = set()
        unique = []
        for rel in relationships:
            key = (rel.from_service, rel.to_service, rel.evidence_type)
            if key not in seen:
                seen.add(key)
                unique.append(rel)
        return unique


# ── Graph helpers ───────────────────────────────────────────────────────────


def build_graph(
    services: Sequence[DiscoveredService], relationships: Sequence[ServiceRelationship]
) -> nx.MultiDiGraph:
    graph = nx.MultiDiGraph()
    for service in services:
        graph.add_node(service.name, api_type=service.api_type)
    for rel in relationships:
        graph.add_edge(rel.from_service, rel.to_service, evidence_type=rel.evidence_type,
                       evidence=rel.evidence)  # fmt: skip
    return graph


_NODE_SHAPES = {
    ApiType.HTTP: ("[", " - HTTP]"),
    ApiType.GRPC: ("{", " - gRPC}"),
    ApiType.GRAPHQL: ("(", " - GraphQL)"),
}


def render_mermaid(graph: nx.MultiDiGraph) -> str:
    """``graph TD`` diagram with one node per service and labelled edges."""
    lines = ["graph TD"]
    for name in graph.nodes:
        api_type = graph.nodes[name].get("api_type", ApiType.HTTP)
        open_, close = _NODE_SHAPES.get(api_type, ("[", "]"))
        lines.append(f"  {mermaid_id(name)}{open_}{name}{close}")
    edges = list(graph.edges(data=True))
    if edges:
        lines.append("")
    for source, target, data in edges:
        kind = data["evidence_type"]
        if kind is EvidenceType.NETWORK:
            label = "grpc" if "grpc" in data["evidence"].lower() else "http"
        else:
            label = kind.value
        lines.append(f"  {mermaid_id(source)} -->|{label}| {mermaid_id(target)}")
    return "\n".join(lines) + "\n"


def _env_items(environment: object) -> list[tuple[str, str]]:
    if isinstance(environment, dict):
        return [(str(k), str(v)) for k, v in environment.items() if v is not None]
    if isinstance(environment, list):
        items = []
        for entry in environment:
            key, sep, value = str(entry).partition("=")
            if sep:
                items.append((key.strip(), value.strip()))
        return items
    return []


def _looks_like_k8s(content: str) -> bool:
    return "apiVersion:" in content and any(
        f"kind: {kind}" in content for kind in ("Deployment", "ConfigMap", "Service", "StatefulSet")
    )


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", name).lower()


def _service_from_import(index: _ServiceIndex, imported: str) -> str | None:
    parts = imported.split("/")
    for i, part in enumerate(parts[:-1]):
        if part in ("services", "cmd", "apps", "clients"):
            return index.resolve(parts[i + 1])
    return None
