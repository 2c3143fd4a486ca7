"""Shared fixtures: a scripted LLM gateway, fake clocks and throwaway repositories."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from repo_explainer.infrastructure.rate_limiter import RateLimiter
from repo_explainer.infrastructure.summary_cache import SummaryCache
from repo_explainer.services import prompts
from repo_explainer.services.analyze_repo import AnalyzeRepoUseCase
from repo_explainer.services.chunker import Chunker, estimate_tokens
from repo_explainer.services.crawler import Crawler
from repo_explainer.services.llm_analyzer import LlmAnalyzer
from repo_explainer.services.project_detector import RuleBasedProjectDetector
from repo_explainer.services.relationship_discovery import HeuristicRelationshipDiscovery
from repo_explainer.services.secret_extractor import FileSecretExtractor
from repo_explainer.services.service_discovery import HeuristicServiceDiscovery

CANNED_RESPONSES: dict[str, dict] = {
    prompts.FILE_SYSTEM_PROMPT: {
        "language": "Python",
        "purpose": "Prints a greeting",
        "functions": ["main"],
        "complexity": "low",
    },
    prompts.FOLDER_SYSTEM_PROMPT: {
        "purpose": "Application entry points",
        "key_modules": ["main.py"],
        "architecture": "flat",
    },
    prompts.PROJECT_SYSTEM_PROMPT: {
        "purpose": "A tiny demo application",
        "architecture": "single module",
        "data_models": [],
    },
    prompts.DETAILS_SYSTEM_PROMPT: {
        "repo_summary_line": "A tiny demo application written in Python",
        "architecture": "monolith",
        "repo_layout": "single-repo",
        "main_stacks": ["Python"],
        "confidence": 0.8,
    },
    prompts.QUESTIONS_SYSTEM_PROMPT: {
        "questions": [{"question": "How do I run it?", "answer": "python main.py"}],
    },
}


class FakeGateway:
    """``LlmGateway`` answering each prompt kind with a canned JSON body."""

    def __init__(
        self,
        responses: dict[str, dict] | None = None,
        *,
        delay: float = 0.0,
        fail_on: Callable[[str, str], Exception | None] | None = None,
    ) -> None:
        self.responses = dict(CANNED_RESPONSES if responses is None else responses)
        self.delay = delay
        self.fail_on = fail_on
        self.calls: list[tuple[str, str, float | None]] = []

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = True,
        temperature: float | None = None,
    ) -> str:
        self.calls.append((system_prompt, user_prompt, temperature))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on is not None:
            error = self.fail_on(system_prompt, user_prompt)
            if error is not None:
                raise error
        return json.dumps(self.responses[system_prompt])

    def calls_for(self, system_prompt: str) -> int:
        return sum(1 for call in self.calls if call[0] == system_prompt)


class FakeClock:
    """Settable wall clock for cache and store expiry."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def write_files(root: Path, files: dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def make_crawler(root: Path, **kwargs) -> Crawler:
    options = {
        "supported_extensions": [".py", ".go", ".js", ".json", ".sql", ".md", ".yml", ".yaml"],
        "max_file_size": 1024 * 1024,
        "secret_patterns": [".env", ".env.*", "*.pem", "credentials*.json"],
    }
    options.update(kwargs)
    return Crawler(root, **options)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway_cls() -> type[FakeGateway]:
    return FakeGateway


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A two-file Python repository."""
    return write_files(
        tmp_path / "repo",
        {
            "main.py": "def main():\n    print('hello')\n",
            "utils/helpers.py": "def shout(text):\n    return text.upper()\n",
        },
    )


@pytest.fixture
def cache(tmp_path: Path) -> SummaryCache:
    return SummaryCache(tmp_path / "cache", ttl_hours=24)


@pytest.fixture
def make_use_case(cache: SummaryCache) -> Callable[..., AnalyzeRepoUseCase]:
    def build(gateway: FakeGateway, **kwargs) -> AnalyzeRepoUseCase:
        limiter = kwargs.pop("rate_limiter", None) or RateLimiter(1000, 100_000)
        analyzer = LlmAnalyzer(gateway, limiter)
        selected_cache = kwargs.pop("cache", cache)
        options = {
            "chunker": Chunker(3000, estimate_tokens),
            "detector": RuleBasedProjectDetector(),
            "service_discovery": HeuristicServiceDiscovery(),
            "relationship_discovery": HeuristicRelationshipDiscovery(),
            "secret_extractor": FileSecretExtractor(),
            "workers": 3,
            "progress_every": 1,
        }
        options.update(kwargs)
        return AnalyzeRepoUseCase(analyzer, selected_cache, **options)

    return build


@pytest.fixture
def write_repo() -> Callable[[Path, dict[str, str]], Path]:
    return write_files


@pytest.fixture
def crawler_for() -> Callable[..., Crawler]:
    return make_crawler
