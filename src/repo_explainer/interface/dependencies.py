"""FastAPI dependency injection wiring."""

from __future__ import annotations

import httpx

from repo_explainer.infrastructure.config import Settings, get_settings
from repo_explainer.infrastructure.git_cloner import GitCloner
from repo_explainer.infrastructure.openai_adapter import OpenAIAdapter
from repo_explainer.infrastructure.rate_limiter import RateLimiter
from repo_explainer.infrastructure.relationship_store import RelationshipStore
from repo_explainer.infrastructure.summary_cache import SummaryCache
from repo_explainer.services.analyze_repo import AnalyzeRepoUseCase
from repo_explainer.services.chunker import Chunker
from repo_explainer.services.llm_analyzer import LlmAnalyzer
from repo_explainer.services.project_detector import RuleBasedProjectDetector
from repo_explainer.services.relationship_discovery import HeuristicRelationshipDiscovery
from repo_explainer.services.secret_extractor import FileSecretExtractor
from repo_explainer.services.service_discovery import HeuristicServiceDiscovery

_http_client: httpx.AsyncClient | None = None
_openai_adapter: OpenAIAdapter | None = None
_rate_limiter: RateLimiter | None = None
_cache: SummaryCache | None = None
_graph_store: RelationshipStore | None = None


async def startup() -> None:
    """Initialise shared resources — called from the lifespan context manager."""
    global _http_client, _openai_adapter, _rate_limiter, _cache, _graph_store  # noqa: PLW0603

    settings = get_settings()
    _http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.llm_timeout_seconds))
    _openai_adapter = OpenAIAdapter(
        api_key=settings.openai_api_key.get_secret_value(),
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        max_tokens=settings.max_tokens_per_request,
        temperature=settings.temperature,
        http_client=_http_client,
    )
    # Shared by every concurrent analysis.
    _rate_limiter = RateLimiter(settings.requests_per_minute, settings.requests_per_day)
    _cache = SummaryCache(
        settings.cache_directory,
        settings.cache_ttl_hours,
        enabled=settings.cache_enabled,
        stable_url_keys=settings.stable_url_project_cache,
    )
    _graph_store = RelationshipStore(settings.relationships_cache_directory, settings.cache_ttl_hours)


async def shutdown() -> None:
    """Release shared resources."""
    global _http_client, _openai_adapter, _rate_limiter, _cache, _graph_store  # noqa: PLW0603

    if _openai_adapter:
        await _openai_adapter.close()
        _openai_adapter = None
    if _http_client:
        await _http_client.aclose()
        _http_client = None
    _rate_limiter = None
    _cache = None
    _graph_store = None


def get_app_settings() -> Settings:
    return get_settings()


def get_cache() -> SummaryCache:
    assert _cache is not None, "startup() was not called"
    return _cache


def get_graph_store() -> RelationshipStore:
    assert _graph_store is not None, "startup() was not called"
    return _graph_store


def get_cloner() -> GitCloner:
    return GitCloner(timeout=get_settings().clone_timeout_seconds)


def get_use_case() -> AnalyzeRepoUseCase:
    """Build a use case over the shared adapters."""
    settings = get_settings()

    assert _openai_adapter is not None, "startup() was not called"
    assert _rate_limiter is not None, "startup() was not called"

    analyzer = LlmAnalyzer(
        _openai_adapter, _rate_limiter, map_temperature=settings.map_temperature
    )
    return AnalyzeRepoUseCase(
        analyzer,
        get_cache(),
        chunker=Chunker.from_settings(settings),
        detector=RuleBasedProjectDetector(),
        service_discovery=HeuristicServiceDiscovery(),
        relationship_discovery=HeuristicRelationshipDiscovery(),
        secret_extractor=FileSecretExtractor(),
        relationship_store=get_graph_store(),
        workers=settings.concurrent_workers,
        progress_every=settings.progress_every,
        timeout=settings.pipeline_timeout_seconds,
    )
