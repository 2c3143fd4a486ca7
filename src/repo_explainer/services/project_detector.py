"""Rule-based project type detection.

Each :class:`ProjectType` owns a list of weighted rules.  A rule matches
when any of its extensions, directories or file-name keywords is present;
a matched rule adds its score to its type.  Extensions seen more than once
add a small volume bonus on top.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from repo_explainer.domain.entities import DetectionResult, FileRecord, ProjectType

logger = logging.getLogger(__name__)

MIN_PRIMARY_SCORE = 1.0
MAX_CONFIDENCE = 10.0
FULLSTACK_THRESHOLD = 3.0
MIN_SECONDARY_SCORE = 2.0
MIN_SECONDARY_GAP = 1.0


@dataclass(frozen=True, slots=True)
class DetectionRule:
    name: str
    score: float
    extensions: tuple[str, ...] = ()
    directories: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    # Matched against the bodies of manifests and READMEs.
    manifest_terms: tuple[str, ...] = ()


_RULES: dict[ProjectType, tuple[DetectionRule, ...]] = {
    ProjectType.FRONTEND: (
        DetectionRule("React Framework", 4.0, (".jsx", ".tsx"), keywords=("react", "jsx"),
                      manifest_terms=('"react"',)),
        DetectionRule("Vue.js Framework", 4.0, (".vue",), keywords=("vue", "nuxt"),
                      manifest_terms=('"vue"',)),
        DetectionRule("Angular Framework", 4.0, (".ts",), ("src/app",), ("angular", "ng-")),
        DetectionRule("JavaScript/TypeScript", 2.0, (".js", ".ts", ".mjs")),
        DetectionRule("Web Styling", 2.5, (".css", ".scss", ".sass", ".less")),
        DetectionRule("HTML Templates", 3.0, (".html", ".htm")),
        DetectionRule("Package Management", 2.0, keywords=("package.json",)),
        DetectionRule("Build Tools", 1.5, keywords=("webpack", "vite", "rollup", "parcel")),
        DetectionRule("Frontend Directories", 2.0, directories=("public", "src", "assets", "components")),
    ),
    ProjectType.BACKEND: (
        DetectionRule(
            "Database Migrations",
            4.5,
            directories=(
                "migrations", "migrate", "db/migrate", "database/migrations",
                "prisma/migrations", "sql/migrations", "resources/db/migration",
                "src/main/resources/db/migration", "alembic/versions", "db/versions",
                "migration",
            ),
            keywords=("migration", "alembic", "flyway", "liquibase", "schema.sql"),
        ),  # fmt: skip
        DetectionRule("Node.js Backend", 3.0, keywords=("express", "fastify", "koa", "server.js"),
                      manifest_terms=('"express"', '"fastify"', '"koa"', '"@nestjs/core"')),
        DetectionRule("Python Backend", 3.0, keywords=("django", "flask", "fastapi", "app.py", "main.py"),
                      manifest_terms=("django", "flask", "fastapi")),
        DetectionRule("Java Backend", 3.0, (".java",), keywords=("spring", "servlet", "application.java")),
        DetectionRule("Go Backend", 3.0, (".go",), keywords=("main.go", "server.go"),
                      manifest_terms=("gin-gonic", "labstack/echo", "gofiber", "grpc")),
        DetectionRule("C# Backend", 3.0, (".cs",), keywords=("controller", "startup.cs", "program.cs")),
        DetectionRule("PHP Backend", 3.0, (".php",), keywords=("laravel", "symfony", "index.php")),
        DetectionRule("Ruby Backend", 3.0, (".rb",), keywords=("rails", "sinatra", "gemfile")),
        DetectionRule("Rust Backend", 3.0, keywords=("actix", "warp", "rocket", "axum"),
                      manifest_terms=("actix-web", "axum", "rocket", "warp")),
        DetectionRule("API Definitions", 2.0, (".proto", ".graphql"), keywords=("swagger", "openapi")),
        DetectionRule(
            "Migration File Patterns",
            4.0,
            keywords=("_create_", "_add_", "_drop_", "_alter_", "v1__", "0001_initial"),
        ),
        DetectionRule("Database Files", 2.5, (".sql", ".db", ".sqlite")),
        DetectionRule(
            "Backend Directories",
            2.0,
            directories=("api", "server", "backend", "controllers", "models", "routes"),
        ),
    ),
    ProjectType.MOBILE: (
        DetectionRule("React Native", 4.0, keywords=("react-native", "metro.config"),
                      manifest_terms=('"react-native"',)),
        DetectionRule("Flutter", 4.0, (".dart",), keywords=("flutter", "pubspec.yaml")),
        DetectionRule("iOS Development", 4.0, (".swift", ".m"), keywords=("xcode", "podfile", "info.plist")),
        DetectionRule("Android Development", 4.0, (".kt",), keywords=("android", "androidmanifest.xml")),
        DetectionRule("Xamarin", 4.0, (".xaml",), keywords=("xamarin",)),
    ),
    ProjectType.DESKTOP: (
        DetectionRule("Electron", 4.0, keywords=("electron", "renderer.js"), manifest_terms=('"electron"',)),
        DetectionRule("Tauri", 4.0, keywords=("tauri", "tauri.conf.json")),
        DetectionRule("C++ Desktop", 3.0, (".cpp", ".cc", ".cxx", ".hpp")),
        DetectionRule("C# Desktop", 3.0, (".xaml",), keywords=("wpf", "winforms", ".csproj")),
        DetectionRule("Python Desktop", 3.0, keywords=("tkinter", "pyqt", "kivy")),
    ),
    ProjectType.LIBRARY: (
        DetectionRule(
            "Package Definition",
            3.0,
            keywords=("setup.py", "pyproject.toml", "cargo.toml", "composer.json", "go.mod"),
        ),
        DetectionRule("Library Structure", 2.0, directories=("lib", "pkg", "dist")),
        DetectionRule("Documentation", 1.5, (".md", ".rst"), keywords=("readme",)),
        DetectionRule("Test Directory", 1.0, directories=("test", "tests", "__tests__", "spec")),
    ),
    ProjectType.DEVOPS: (
        DetectionRule("Docker", 3.0, keywords=("dockerfile", "docker-compose", ".dockerignore")),
        DetectionRule("Kubernetes", 3.0, directories=("k8s", "kubernetes", "helm", "charts"),
                      keywords=("deployment.yaml", "deployment.yml", "kustomization")),
        DetectionRule("Terraform", 3.0, (".tf", ".hcl")),
        DetectionRule("Ansible", 3.0, keywords=("ansible", "playbook")),
        DetectionRule("CI/CD", 2.0, directories=(".github/workflows",),
                      keywords=(".gitlab-ci.yml", "jenkinsfile", ".travis.yml")),
    ),
    ProjectType.DATA_SCIENCE: (
        DetectionRule("Jupyter Notebooks", 4.0, (".ipynb",)),
        DetectionRule("Python Data Science", 3.0, keywords=("pandas", "numpy", "jupyter"),
                      manifest_terms=("pandas", "numpy", "scikit-learn", "torch", "tensorflow")),
        DetectionRule("R Language", 4.0, (".r", ".rmd")),
        DetectionRule("Data Files", 2.0, (".csv", ".parquet", ".h5")),
        DetectionRule("Requirements", 1.0, keywords=("environment.yml",)),
    ),
}  # fmt: skip


class RuleBasedProjectDetector:
    """Default ``ProjectTypeDetector``: scores every type and picks the best."""

    def __init__(self, rules: Mapping[ProjectType, Sequence[DetectionRule]] | None = None) -> None:
        self._rules = rules if rules is not None else _RULES

    def detect(
        self, files: Sequence[FileRecord], important_files: Mapping[str, str]
    ) -> DetectionResult:
        extensions = Counter(f.extension for f in files if f.extension)
        directories = {os.path.dirname(f.relative_path).lower() for f in files}
        directories |= {d.rsplit("/", 1)[-1] for d in directories}
        filenames = [f.name.lower() for f in files]
        manifests = "\n".join(important_files.values()).lower()

        scores: dict[ProjectType, float] = {}
        evidence: dict[str, list[str]] = {}
        for project_type, rules in self._rules.items():
            scores[project_type] = 0.0
            for rule in rules:
                hits = self._apply(rule, extensions, directories, filenames, manifests)
                if hits is None:
                    continue
                bonus, items = hits
                scores[project_type] += rule.score + bonus
                evidence.setdefault(project_type.value, []).append(
                    f"{rule.name}: {', '.join(items)}"
                )

        primary, secondary, confidence = self._rank(scores)
        if (
            scores.get(ProjectType.FRONTEND, 0.0) >= FULLSTACK_THRESHOLD
            and scores.get(ProjectType.BACKEND, 0.0) >= FULLSTACK_THRESHOLD
        ):
            primary = ProjectType.FULLSTACK
            confidence = min(
                MAX_CONFIDENCE, (scores[ProjectType.FRONTEND] + scores[ProjectType.BACKEND]) / 2
            )

        logger.info("Detected project type %s (confidence %.1f)", primary.value, confidence)
        return DetectionResult(
            primary=primary,
            secondary=secondary,
            confidence=round(confidence, 2),
            evidence=evidence,
            scores={t.value: round(s, 2) for t, s in scores.items()},
        )

    @staticmethod
    def _apply(
        rule: DetectionRule,
        extensions: Counter[str],
        directories: set[str],
        filenames: list[str],
        manifests: str,
    ) -> tuple[float, list[str]] | None:
        items: list[str] = []
        bonus = 0.0
        for ext in rule.extensions:
            count = extensions.get(ext, 0)
            if count:
                items.append(f"{ext} files ({count})")
                if count > 1:
                    bonus += rule.score * count * 0.1
        for directory in rule.directories:
            if directory in directories:
                items.append(f"{directory} directory")
        for keyword in rule.keywords:
            match = next((name for name in filenames if keyword in name), None)
            if match:
                items.append(f"file: {match}")
        for term in rule.manifest_terms:
            if term in manifests:
                items.append(f"manifest: {term.strip(chr(34))}")
        return (bonus, items) if items else None

    @staticmethod
    def _rank(scores: Mapping[ProjectType, float]) -> tuple[ProjectType, ProjectType | None, float]:
        ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0].value))
        if not ranked or ranked[0][1] < MIN_PRIMARY_SCORE:
            return ProjectType.UNKNOWN, None, 0.0
        primary, primary_score = ranked[0]
        secondary: ProjectType | None = None
        if len(ranked) > 1:
            candidate, score = ranked[1]
            if score >= MIN_SECONDARY_SCORE and primary_score - score >= MIN_SECONDARY_GAP:
                secondary = candidate
        return primary, secondary, min(primary_score, MAX_CONFIDENCE)
