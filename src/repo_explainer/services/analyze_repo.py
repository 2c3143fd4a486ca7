"""Analyze-repository use case — the main orchestration pipeline.

This is the single entry point for the business logic.  It depends only on
the ports (:class:`LlmGateway` through :class:`LlmAnalyzer`, and the four
analysis strategies) and the pure service modules.  The interface layer
injects concrete adapters at runtime.

Stages run in a fixed order and each one reports on the
:class:`ProgressBus`; every run ends with exactly one ``complete`` or
``error`` event.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from repo_explainer.domain.entities import (
    DetectionResult,
    FileRecord,
    Migration,
    ProjectType,
)
from repo_explainer.domain.deadline import deadline_scope
from repo_explainer.domain.events import ErrorKind, Stage
from repo_explainer.domain.exceptions import (
    CacheError,
    CrawlError,
    EmptyRepositoryError,
    InvalidRepositoryPathError,
    LlmError,
    NoSchemaExtractedError,
    RateLimitDeadlineError,
)
from repo_explainer.domain.ports.strategies import (
    ProjectTypeDetector,
    RelationshipDiscovery,
    SecretExtractor,
    ServiceDiscovery,
)
from repo_explainer.domain.summaries import (
    AnalysisResult,
    DetailedAnalysis,
    FileSummary,
    FolderSummary,
    RepoLayout,
)
from repo_explainer.infrastructure.relationship_store import RelationshipStore
from repo_explainer.infrastructure.summary_cache import SummaryCache
from repo_explainer.services import file_filter
from repo_explainer.services.chunker import Chunker
from repo_explainer.services.crawler import Crawler
from repo_explainer.services.ddl_reducer import DdlReducer
from repo_explainer.services.helpful_questions import fallback_questions
from repo_explainer.services.llm_analyzer import LlmAnalyzer
from repo_explainer.services.progress_bus import ProgressBus

logger = logging.getLogger(__name__)

MAP_START, MAP_END = 35, 50
_SCHEMA_TYPES = (ProjectType.BACKEND, ProjectType.FULLSTACK)
_CHUNK_NOTE = "\n\n[NOTE: This file has {n} chunks, analyzing first chunk only]"


@dataclass
class _Run:
    """Mutable state of one pipeline run; ``result`` is the builder."""

    crawler: Crawler
    bus: ProgressBus
    source: str
    stage: Stage = Stage.DISCOVER
    files: list[FileRecord] = field(default_factory=list)
    contents: dict[str, str] = field(default_factory=dict)
    important: dict[str, str] = field(default_factory=dict)
    details: DetailedAnalysis | None = None
    result: AnalysisResult = field(default_factory=AnalysisResult)


@dataclass(frozen=True, slots=True)
class _MapOutcome:
    record: FileRecord
    summary: FileSummary | None = None
    warning: str | None = None


# ── Use case ────────────────────────────────────────────────────────────────


class AnalyzeRepoUseCase:
    """Orchestrates the full repository → explanation pipeline.

    Parameters
    ----------
    analyzer:
        LLM façade; every call goes through the shared rate limiter.
    cache:
        Summary cache consulted before every LLM call.
    chunker:
        Splits files that exceed the per-request token budget.
    detector, service_discovery, relationship_discovery, secret_extractor:
        Pluggable analysis strategies.
    relationship_store:
        Optional persistence for service graphs.
    workers:
        Size of the Map-stage worker pool.
    progress_every:
        Emit a Map progress event every this many completed files.
    timeout:
        Outer deadline in seconds for the whole run; ``None`` disables it.
    """

    def __init__(
        self,
        analyzer: LlmAnalyzer,
        cache: SummaryCache,
        *,
        chunker: Chunker,
        detector: ProjectTypeDetector,
        service_discovery: ServiceDiscovery,
        relationship_discovery: RelationshipDiscovery,
        secret_extractor: SecretExtractor,
        reducer: DdlReducer | None = None,
        relationship_store: RelationshipStore | None = None,
        workers: int = 5,
        progress_every: int = 5,
        timeout: float | None = 1800.0,
    ) -> None:
        if workers <= 0 or progress_every <= 0:
            raise ValueError("workers and progress_every must be positive")
        self._analyzer = analyzer
        self._cache = cache
        self._chunker = chunker
        self._detector = detector
        self._services = service_discovery
        self._relationships = relationship_discovery
        self._secrets = secret_extractor
        self._reducer = reducer or DdlReducer()
        self._graph_store = relationship_store
        self._workers = workers
        self._progress_every = progress_every
        self._timeout = timeout

    # ── Public entry point ──────────────────────────────────────────────

    async def execute(
        self, crawler: Crawler, bus: ProgressBus, *, source: str | None = None
    ) -> AnalysisResult | None:
        """Run every stage, streaming events on *bus*.

        *source* keys the project-level cache entries (the remote URL for
        cloned repositories); it defaults to the crawler root.  Returns the
        aggregated result, or ``None`` when the run ended with an error
        event.
        """
        run = _Run(crawler=crawler, bus=bus, source=source or str(crawler.root))
        logger.info("Analyzing %s", run.source)
        try:
            async with asyncio.timeout(self._timeout) as scope:
                with deadline_scope(scope.when()):
                    await self._pipeline(run)
        except TimeoutError:
            logger.warning("Analysis of %s timed out during %s", run.source, run.stage.value)
            message = f"Analysis cancelled: deadline of {self._timeout:.0f}s exceeded"
            await bus.error(run.stage, ErrorKind.CANCELLED, message)
            return None
        except RateLimitDeadlineError as exc:
            logger.warning("Analysis of %s ran out of time during %s", run.source, run.stage.value)
            await bus.error(run.stage, ErrorKind.CANCELLED, f"Analysis cancelled: {exc}")
            return None
        except asyncio.CancelledError:
            logger.info("Analysis of %s cancelled during %s", run.source, run.stage.value)
            bus.abort(run.stage, ErrorKind.CANCELLED, "Analysis cancelled")
            raise
        except (EmptyRepositoryError, InvalidRepositoryPathError) as exc:
            await bus.error(run.stage, ErrorKind.INPUT, str(exc))
            return None
        except CrawlError as exc:
            await bus.error(run.stage, ErrorKind.CATASTROPHIC, str(exc))
            return None
        except Exception as exc:
            logger.exception("Analysis of %s failed during %s", run.source, run.stage.value)
            await bus.error(run.stage, ErrorKind.INTERNAL, f"Internal error: {exc}")
            return None

        await bus.complete("Analysis complete", run.result)
        return run.result

    async def _pipeline(self, run: _Run) -> None:
        await self._discover(run)
        await self._detect(run)
        await self._map(run)
        await self._reduce_folders(run)
        await self._reduce_project(run)
        await self._details(run)
        await self._discover_services(run)
        await self._extract_schema(run)
        await self._extract_secrets(run)
        await self._questions(run)

    async def _warn(self, run: _Run, message: str, data: Any = None) -> None:
        logger.warning("%s: %s", run.stage.value, message)
        run.result.warnings.append(message)
        await run.bus.warning(run.stage, message, data)

    # ── 1. Discover ─────────────────────────────────────────────────────

    async def _discover(self, run: _Run) -> None:
        run.stage = Stage.DISCOVER
        await run.bus.progress_event(Stage.DISCOVER, 20, f"Scanning {run.crawler.root.name}")
        run.files = await asyncio.to_thread(run.crawler.crawl)
        if not run.files:
            raise EmptyRepositoryError(f"No analysable files found in {run.source}")
        stats = Crawler.file_stats(run.files)
        run.result.stats = stats
        message = f"Found {stats.total_files} files ({stats.total_size_mb:.2f} MB)"
        await run.bus.data(Stage.DISCOVER, 25, message, stats)

    # ── 2. Detect ───────────────────────────────────────────────────────

    async def _detect(self, run: _Run) -> None:
        run.stage = Stage.DETECT
        await run.bus.progress_event(Stage.DETECT, 30, "Detecting project type")
        for record in run.files:
            if not file_filter.is_important_file(record.relative_path):
                continue
            try:
                content = await asyncio.to_thread(run.crawler.read_file, record)
            except OSError as exc:
                logger.debug("Skipping important file %s: %s", record.relative_path, exc)
                continue
            run.important[record.relative_path] = file_filter.head(content)

        detection = self._detector.detect(run.files, run.important)
        run.result.project_type = detection
        await run.bus.data(
            Stage.DETECT, 32, f"Detected {detection.primary.value} project", detection
        )

    # ── 3. Map ──────────────────────────────────────────────────────────

    async def _map(self, run: _Run) -> None:
        run.stage = Stage.MAP
        total = len(run.files)
        await run.bus.progress_event(Stage.MAP, MAP_START, f"Analyzing {total} files")

        jobs: asyncio.Queue[FileRecord] = asyncio.Queue()
        for record in run.files:
            jobs.put_nowait(record)
        results: asyncio.Queue[_MapOutcome] = asyncio.Queue()

        async def worker() -> None:
            while True:
                try:
                    record = jobs.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await results.put(await self._map_one(run, record))

        # A worker out of rate-limit time cancels its siblings and ends the run.
        try:
            async with asyncio.TaskGroup() as group:
                for _ in range(min(self._workers, total)):
                    group.create_task(worker())
                for done in range(1, total + 1):
                    outcome = await results.get()
                    if outcome.summary is not None:
                        run.result.file_summaries[outcome.record.relative_path] = outcome.summary
                    if outcome.warning:
                        await self._warn(
                            run, outcome.warning, {"file": outcome.record.relative_path}
                        )
                    if done % self._progress_every == 0 or done == total:
                        progress = MAP_START + (MAP_END - MAP_START) * done // total
                        await run.bus.progress_event(
                            Stage.MAP, progress, f"Analyzed {done}/{total} files"
                        )
        except ExceptionGroup as failures:
            out_of_time = failures.subgroup(RateLimitDeadlineError)
            if out_of_time is None:
                raise
            raise out_of_time.exceptions[0] from None

        run.result.file_summaries = dict(sorted(run.result.file_summaries.items()))
        logger.info("Map stage produced %d file summaries", len(run.result.file_summaries))

    async def _map_one(self, run: _Run, record: FileRecord) -> _MapOutcome:
        rel = record.relative_path
        try:
            content = await asyncio.to_thread(run.crawler.read_file, record)
        except OSError as exc:
            return _MapOutcome(record, warning=f"Could not read {rel}: {exc}")
        run.contents[rel] = content

        cached = await asyncio.to_thread(self._cache.get_file_summary, rel, content)
        if cached is not None:
            return _MapOutcome(record, cached)

        chunks = self._chunker.split(content)
        if not chunks:
            logger.debug("Skipping empty file %s", rel)
            return _MapOutcome(record)
        text = chunks[0].content
        if len(chunks) > 1:
            text += _CHUNK_NOTE.format(n=len(chunks))

        try:
            summary = await self._analyzer.analyze_file(rel, text)
        except LlmError as exc:
            return _MapOutcome(record, warning=f"Failed to analyze {rel}: {exc}")
        try:
            await asyncio.to_thread(self._cache.set_file_summary, rel, content, summary)
        except CacheError as exc:
            return _MapOutcome(record, summary, warning=str(exc))
        return _MapOutcome(record, summary)

    # ── 4. Reduce: folders ──────────────────────────────────────────────

    async def _reduce_folders(self, run: _Run) -> None:
        run.stage = Stage.FOLDERS
        partitions: dict[str, dict[str, FileSummary]] = defaultdict(dict)
        by_path = {r.relative_path: r for r in run.files}
        for rel, summary in run.result.file_summaries.items():
            partitions[by_path[rel].parent][rel] = summary

        await run.bus.progress_event(Stage.FOLDERS, 55, f"Summarizing {len(partitions)} folders")
        folders: dict[str, FolderSummary] = {}
        for path in sorted(partitions):
            members = partitions[path]
            folder = await asyncio.to_thread(self._cache.get_folder_summary, path, members)
            if folder is None:
                try:
                    folder = await self._analyzer.analyze_folder(path, members)
                except LlmError as exc:
                    message = f"Failed to summarize folder {path}: {exc}"
                    await self._warn(run, message, {"folder": path})
                    continue
                await self._cache_set(run, self._cache.set_folder_summary, path, members, folder)
            folders[path] = folder
            await run.bus.data(
                Stage.FOLDERS, None, f"Folder {path} summarized", {"folder": path, "summary": folder}
            )

        run.result.folder_summaries = folders
        await run.bus.progress_event(Stage.FOLDERS, 60, f"Summarized {len(folders)} folders")

    # ── 5. Reduce: project ──────────────────────────────────────────────

    async def _reduce_project(self, run: _Run) -> None:
        run.stage = Stage.PROJECT
        await run.bus.progress_event(Stage.PROJECT, 65, "Summarizing project")
        folders = run.result.folder_summaries
        if not folders:
            await self._warn(run, "No folder summaries; project summary skipped")
            return

        project = await asyncio.to_thread(self._cache.get_project_summary, run.source, folders)
        if project is None:
            try:
                project = await self._analyzer.analyze_project(run.source, folders)
            except LlmError as exc:
                await self._warn(run, f"Failed to summarize project: {exc}")
                return
            await self._cache_set(
                run, self._cache.set_project_summary, run.source, folders, project
            )
        run.result.project_summary = project
        await run.bus.data(Stage.PROJECT, 70, "Project summary ready", project)

    # ── 6. Detailed analysis ────────────────────────────────────────────

    async def _details(self, run: _Run) -> None:
        run.stage = Stage.DETAILS
        await run.bus.progress_event(Stage.DETAILS, 72, "Analyzing repository layout")
        folders, files = run.result.folder_summaries, run.result.file_summaries
        if not folders:
            await self._warn(run, "No folder summaries; detailed analysis skipped")
            return

        details = await asyncio.to_thread(
            self._cache.get_repository_details, run.source, folders, files, run.important
        )
        if details is None:
            try:
                details = await self._analyzer.analyze_repository_details(
                    run.source, folders, files, run.important
                )
            except LlmError as exc:
                await self._warn(run, f"Detailed analysis failed: {exc}")
                return
            await self._cache_set(
                run,
                self._cache.set_repository_details,
                run.source,
                folders,
                files,
                run.important,
                details,
            )
        run.details = details
        if run.result.project_summary is not None:
            run.result.project_summary = run.result.project_summary.model_copy(
                update={"detailed_analysis": details}
            )
        await run.bus.data(Stage.DETAILS, 75, details.repo_summary_line, details)

    # ── 7. Microservices ────────────────────────────────────────────────

    async def _discover_services(self, run: _Run) -> None:
        details = run.details
        if details is None or details.repo_layout is not RepoLayout.MONOREPO:
            return

        run.stage = Stage.SERVICES
        await run.bus.progress_event(Stage.SERVICES, 78, "Discovering services")
        folders = sorted({r.parent for r in run.files} - {"root"})
        services = await asyncio.to_thread(self._services.discover, run.contents, folders)
        run.result.services = services
        await run.bus.data(Stage.SERVICES, 80, f"Discovered {len(services)} services", services)
        if len(services) < 2:
            return

        run.stage = Stage.RELATIONSHIPS
        await run.bus.progress_event(Stage.RELATIONSHIPS, 82, "Mapping service dependencies")
        names = [s.name for s in services]
        graph = None
        if self._graph_store is not None and self._cache.enabled:
            graph = await asyncio.to_thread(self._graph_store.load, run.source)
            if graph is not None and graph.services != names:
                graph = None
        if graph is None:
            graph = await asyncio.to_thread(self._relationships.discover, services, run.contents)
            graph = replace(graph, project_path=run.source)
            if self._graph_store is not None:
                await self._cache_set(run, self._graph_store.save, graph)
        run.result.service_graph = graph
        await run.bus.data(
            Stage.RELATIONSHIPS, 85, f"Found {len(graph.relationships)} service dependencies", graph
        )

    # ── 8. Schema ───────────────────────────────────────────────────────

    async def _extract_schema(self, run: _Run) -> None:
        detection: DetectionResult | None = run.result.project_type
        if detection is None or detection.primary not in _SCHEMA_TYPES:
            return

        run.stage = Stage.SCHEMA
        await run.bus.progress_event(Stage.SCHEMA, 88, "Extracting database schema")
        migrations = []
        for record in run.files:
            if not file_filter.is_migration_file(record.relative_path):
                continue
            try:
                sql = await asyncio.to_thread(_read_text, record.path)
            except OSError as exc:
                await self._warn(run, f"Could not read migration {record.relative_path}: {exc}")
                continue
            migrations.append(Migration(name=record.name, sql=sql, path=record.relative_path))
        if not migrations:
            await run.bus.data(Stage.SCHEMA, 92, "No migration files found", None)
            return

        try:
            report = await asyncio.to_thread(self._reducer.reduce, migrations)
        except NoSchemaExtractedError as exc:
            await self._warn(run, str(exc), {"warnings": [str(w) for w in exc.warnings]})
            return
        run.result.database_schema = report
        if report.warnings:
            await self._warn(
                run,
                f"{len(report.warnings)} DDL statements could not be applied cleanly",
                {"warnings": [str(w) for w in report.warnings]},
            )
        await run.bus.data(
            Stage.SCHEMA, 92, f"Extracted {len(report.canonical.tables)} tables", report
        )

    # ── 9. Secrets ──────────────────────────────────────────────────────

    async def _extract_secrets(self, run: _Run) -> None:
        run.stage = Stage.SECRETS
        await run.bus.progress_event(Stage.SECRETS, 93, "Looking for required configuration")
        try:
            secrets = await asyncio.to_thread(self._secrets.extract, run.crawler.root)
        except OSError as exc:
            await self._warn(run, f"Secret extraction failed: {exc}")
            return
        run.result.secrets = secrets
        await run.bus.data(Stage.SECRETS, 94, secrets.summary, secrets)

    # ── 10. Questions ───────────────────────────────────────────────────

    async def _questions(self, run: _Run) -> None:
        run.stage = Stage.QUESTIONS
        await run.bus.progress_event(Stage.QUESTIONS, 95, "Preparing onboarding questions")
        project = run.result.project_summary
        detection = run.result.project_type
        primary = detection.primary if detection is not None else ProjectType.UNKNOWN

        questions = []
        if project is not None:
            cached = await asyncio.to_thread(self._cache.get_questions, run.source, project)
            if cached is not None:
                questions = list(cached.questions)
            else:
                try:
                    generated = await self._analyzer.generate_questions(project, primary.value)
                except LlmError as exc:
                    await self._warn(run, f"Question generation failed, using defaults: {exc}")
                else:
                    questions = list(generated.questions)
                    if questions:
                        await self._cache_set(
                            run, self._cache.set_questions, run.source, project, generated
                        )
        if not questions:
            questions = fallback_questions(primary, project)
        run.result.helpful_questions = questions
        await run.bus.data(
            Stage.QUESTIONS,
            96,
            f"Prepared {len(questions)} questions",
            {"helpful_questions": questions},
        )

    # ── Helpers ─────────────────────────────────────────────────────────

    async def _cache_set(self, run: _Run, setter: Any, *args: Any) -> None:
        """Persist an entry; a failed write becomes a warning."""
        try:
            await asyncio.to_thread(setter, *args)
        except CacheError as exc:
            await self._warn(run, str(exc))


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8", errors="replace")
