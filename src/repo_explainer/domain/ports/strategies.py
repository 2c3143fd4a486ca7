"""Ports: pluggable analysis strategies invoked by the pipeline at fixed points."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

from repo_explainer.domain.entities import (
    DetectionResult,
    DiscoveredService,
    FileRecord,
    ProjectSecrets,
    ServiceGraph,
)


class ProjectTypeDetector(Protocol):
    def detect(
        self, files: Sequence[FileRecord], important_files: Mapping[str, str]
    ) -> DetectionResult: ...


class ServiceDiscovery(Protocol):
    def discover(
        self, file_contents: Mapping[str, str], folders: Sequence[str]
    ) -> list[DiscoveredService]: ...


class RelationshipDiscovery(Protocol):
    def discover(
        self, services: Sequence[DiscoveredService], file_contents: Mapping[str, str]
    ) -> ServiceGraph: ...


class SecretExtractor(Protocol):
    def extract(self, project_path: Path) -> ProjectSecrets: ...
