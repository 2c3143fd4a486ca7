"""Tests for inter-service dependency discovery and the Mermaid rendering."""

from __future__ import annotations

from datetime import datetime, timezone

from repo_explainer.domain.entities import ApiType, DiscoveredService, EvidenceType
from repo_explainer.services.relationship_discovery import (
    HeuristicRelationshipDiscovery,
    mermaid_id,
)

SERVICES = [
    DiscoveredService("api", "services/api", "services/api/main.go", ApiType.HTTP),
    DiscoveredService("users", "services/users", "services/users/main.go", ApiType.GRPC),
]

API_MAIN = """\
package main

import (
\t"google.golang.org/grpc"
\tuserspb "example.com/shop/services/users/pb"
)

func main() {
\tconn, _ := grpc.Dial("users:9000", grpc.WithInsecure())
\tclient := userspb.NewUsersClient(conn)
\t_ = client
}
"""

COMPOSE = """\
services:
  api:
    depends_on:
      - users
    environment:
      - USERS_SERVICE_URL=users:9000
  users: {}
"""


def discovery() -> HeuristicRelationshipDiscovery:
    return HeuristicRelationshipDiscovery(clock=lambda: datetime(2024, 5, 1, tzinfo=timezone.utc))


def test_config_import_and_network_evidence() -> None:
    graph = discovery().discover(
        SERVICES, {"docker-compose.yml": COMPOSE, "services/api/main.go": API_MAIN}
    )

    kinds = {r.evidence_type for r in graph.relationships}
    assert len(graph.relationships) == 3
    assert kinds == {EvidenceType.CONFIG, EvidenceType.IMPORT, EvidenceType.NETWORK}
    assert all((r.from_service, r.to_service) == ("api", "users") for r in graph.relationships)
    assert graph.services == ["api", "users"]
    assert graph.generated_at.startswith("2024-05-01")


def test_mermaid_rendering() -> None:
    graph = discovery().discover(
        SERVICES, {"docker-compose.yml": COMPOSE, "services/api/main.go": API_MAIN}
    )

    lines = graph.mermaid_graph.splitlines()
    assert lines[0] == "graph TD"
    assert "  api[api - HTTP]" in lines
    assert "  users{users - gRPC}" in lines
    assert "  api -->|config| users" in lines
    assert "  api -->|import| users" in lines
    assert "  api -->|grpc| users" in lines


def test_env_file_urls_are_config_evidence() -> None:
    graph = discovery().discover(
        SERVICES, {"services/api/.env": "USERS_SERVICE_URL=http://users:9000\n"}
    )

    (rel,) = graph.relationships
    assert rel.evidence_type is EvidenceType.CONFIG
    assert rel.file_path == "services/api/.env"


def test_http_calls_to_unknown_or_local_hosts_are_ignored() -> None:
    code = (
        'resp, _ := http.Get("http://localhost:8080/health")\n'
        'resp, _ = http.Get("https://api.stripe.com/v1/charges")\n'
    )

    graph = discovery().discover(SERVICES, {"services/api/client.go": code})

    assert graph.relationships == []
    assert graph.mermaid_graph.count("-->") == 0


def test_mermaid_ids_are_sanitized() -> None:
    assert mermaid_id("user-service.v2") == "user_service_v2"
