"""API routes — thin controllers that delegate to the use case."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from repo_explainer.domain.exceptions import InvalidRepositoryPathError
from repo_explainer.domain.value_objects import RepositoryUrl, resolve_local_root
from repo_explainer.infrastructure.config import Settings
from repo_explainer.infrastructure.git_cloner import GitCloner
from repo_explainer.infrastructure.relationship_store import RelationshipStore
from repo_explainer.infrastructure.summary_cache import SummaryCache
from repo_explainer.interface.dependencies import (
    get_app_settings,
    get_cache,
    get_cloner,
    get_graph_store,
    get_use_case,
)
from repo_explainer.interface.schemas import AnalyzeRequest, StatusResponse
from repo_explainer.services.analyze_repo import AnalyzeRepoUseCase
from repo_explainer.services.crawler import Crawler
from repo_explainer.services.progress_bus import ProgressBus

logger = logging.getLogger(__name__)

router = APIRouter()

NDJSON = "application/x-ndjson"


@router.post(
    "/analyze",
    response_class=StreamingResponse,
    responses={
        200: {"content": {NDJSON: {}}, "description": "Stream of progress events"},
        401: {"description": "Repository is private and needs a token"},
        422: {"description": "Invalid URL or path"},
        502: {"description": "Clone failed"},
    },
)
async def analyze(
    body: AnalyzeRequest,
    settings: Settings = Depends(get_app_settings),
    use_case: AnalyzeRepoUseCase = Depends(get_use_case),
    cloner: GitCloner = Depends(get_cloner),
) -> StreamingResponse:
    """Analyze a repository and stream progress events as NDJSON."""
    workdir: Path | None = None
    if body.url is not None:
        url = RepositoryUrl.from_string(body.url)
        workdir = Path(tempfile.mkdtemp(prefix="repo-explainer-"))
        root = workdir / "repo"
        try:
            await cloner.clone(url, root, body.token)
        except BaseException:
            shutil.rmtree(workdir, ignore_errors=True)
            raise
        source = url.raw
    else:
        if not settings.allow_local_paths:
            raise InvalidRepositoryPathError("Analysis of local paths is disabled on this server.")
        root = resolve_local_root(body.path or "")
        source = str(root)

    crawler = Crawler.from_settings(root, settings)
    bus = ProgressBus(settings.progress_queue_size)
    return StreamingResponse(
        _stream_events(use_case, crawler, bus, source, workdir), media_type=NDJSON
    )


async def _stream_events(
    use_case: AnalyzeRepoUseCase,
    crawler: Crawler,
    bus: ProgressBus,
    source: str,
    workdir: Path | None,
) -> AsyncIterator[str]:
    task = asyncio.create_task(use_case.execute(crawler, bus, source=source))
    try:
        async for event in bus:
            yield event.to_json_line()
    finally:
        if not task.done():
            logger.info("Client went away; cancelling analysis of %s", source)
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if workdir is not None:
            await asyncio.to_thread(shutil.rmtree, workdir, True)


@router.delete("/cache", response_model=StatusResponse)
async def clear_cache(
    cache: SummaryCache = Depends(get_cache),
    graph_store: RelationshipStore = Depends(get_graph_store),
) -> StatusResponse:
    """Remove every cached summary and service graph."""
    entries = await asyncio.to_thread(cache.clear)
    graphs = await asyncio.to_thread(graph_store.clear)
    return StatusResponse(
        message=f"Cache cleared ({entries} entries and {graphs} service graphs removed)"
    )
