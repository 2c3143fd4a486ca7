"""End-to-end tests for the analysis pipeline with a scripted gateway."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from repo_explainer.domain.entities import ProjectType
from repo_explainer.domain.events import EventType, ProgressEvent
from repo_explainer.domain.exceptions import ProviderError
from repo_explainer.infrastructure.rate_limiter import RateLimiter
from repo_explainer.infrastructure.relationship_store import RelationshipStore
from repo_explainer.services import prompts
from repo_explainer.services.analyze_repo import MAP_END, MAP_START
from repo_explainer.services.chunker import Chunker
from repo_explainer.services.progress_bus import ProgressBus


async def collect(bus: ProgressBus) -> list[ProgressEvent]:
    return [event async for event in bus]


async def run(use_case, crawler, **kwargs):
    bus = ProgressBus(1000)
    result, events = await asyncio.gather(use_case.execute(crawler, bus, **kwargs), collect(bus))
    return result, events


def terminal(events: list[ProgressEvent]) -> list[ProgressEvent]:
    return [e for e in events if e.type.is_terminal]


@pytest.mark.asyncio
async def test_full_run_then_fully_cached_rerun(repo: Path, gateway_cls, make_use_case, crawler_for):
    first_gateway = gateway_cls()
    first, events = await run(make_use_case(first_gateway), crawler_for(repo))

    assert len(first_gateway.calls) == 7
    assert first_gateway.calls_for(prompts.FILE_SYSTEM_PROMPT) == 2
    assert first_gateway.calls_for(prompts.FOLDER_SYSTEM_PROMPT) == 2
    assert sorted(first.folder_summaries) == ["root", "utils"]
    assert first.project_summary.purpose == "A tiny demo application"
    assert first.project_summary.detailed_analysis.confidence == 0.8
    assert [q.question for q in first.helpful_questions] == ["How do I run it?"]
    assert events[-1].type is EventType.COMPLETE

    second_gateway = gateway_cls()
    second, _ = await run(make_use_case(second_gateway), crawler_for(repo))

    assert second_gateway.calls == []
    assert second.project_summary == first.project_summary
    assert second.file_summaries == first.file_summaries


@pytest.mark.asyncio
async def test_event_stream_shape(repo: Path, fake_gateway, make_use_case, crawler_for) -> None:
    _, events = await run(make_use_case(fake_gateway), crawler_for(repo))

    progress = [e.progress for e in events]
    assert progress == sorted(progress)
    stamps = [e.timestamp for e in events]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))
    assert terminal(events) == [events[-1]]
    assert events[-1].progress == 100
    assert events[-1].data.stats.total_files == 2

    map_progress = [e.progress for e in events if e.stage == "map" and e.type is EventType.PROGRESS]
    assert map_progress[0] == MAP_START
    assert map_progress[-1] == MAP_END
    assert len(map_progress) == 3


@pytest.mark.asyncio
async def test_deadline_ends_with_a_single_cancelled_error(
    repo: Path, gateway_cls, make_use_case, crawler_for
) -> None:
    use_case = make_use_case(gateway_cls(delay=5), timeout=0.3)

    result, events = await run(use_case, crawler_for(repo))

    assert result is None
    (last,) = terminal(events)
    assert last is events[-1]
    assert last.type is EventType.ERROR
    assert last.data == {"kind": "cancelled"}
    assert last.stage == "map"


@pytest.mark.asyncio
async def test_rate_limit_wait_past_the_deadline_cancels_the_run(
    repo: Path, fake_gateway, make_use_case, crawler_for
) -> None:
    use_case = make_use_case(fake_gateway, rate_limiter=RateLimiter(1, 1000), timeout=1.0)

    result, events = await run(use_case, crawler_for(repo))

    assert result is None
    (last,) = terminal(events)
    assert last is events[-1]
    assert last.type is EventType.ERROR
    assert last.data == {"kind": "cancelled"}
    assert last.stage == "map"
    assert not any(e.type is EventType.WARNING for e in events)
    assert len(fake_gateway.calls) == 1


@pytest.mark.asyncio
async def test_empty_repository_is_an_input_error(
    tmp_path: Path, fake_gateway, make_use_case, write_repo, crawler_for
) -> None:
    root = write_repo(tmp_path / "empty", {"notes.txt": "nothing to analyze\n"})

    result, events = await run(make_use_case(fake_gateway), crawler_for(root))

    assert result is None
    assert events[-1].type is EventType.ERROR
    assert events[-1].data == {"kind": "input"}
    assert fake_gateway.calls == []


@pytest.mark.asyncio
async def test_failed_file_becomes_a_warning(repo: Path, gateway_cls, make_use_case, crawler_for):
    def fail_helpers(system: str, user: str) -> Exception | None:
        if system == prompts.FILE_SYSTEM_PROMPT and "helpers.py" in user:
            return ProviderError("upstream returned 503")
        return None

    gateway = gateway_cls(fail_on=fail_helpers)
    result, events = await run(make_use_case(gateway), crawler_for(repo))

    assert events[-1].type is EventType.COMPLETE
    assert list(result.file_summaries) == ["main.py"]
    assert list(result.folder_summaries) == ["root"]
    assert any("utils/helpers.py" in w and "503" in w for w in result.warnings)
    warning_events = [e for e in events if e.type is EventType.WARNING]
    assert warning_events[0].data == {"file": "utils/helpers.py"}


@pytest.mark.asyncio
async def test_long_files_send_only_the_first_chunk(
    repo: Path, fake_gateway, make_use_case, crawler_for
) -> None:
    use_case = make_use_case(fake_gateway, chunker=Chunker(40, len))

    await run(use_case, crawler_for(repo))

    file_prompts = [
        user for system, user, _ in fake_gateway.calls if system == prompts.FILE_SYSTEM_PROMPT
    ]
    helper_prompt = next(p for p in file_prompts if "helpers.py" in p)
    assert "2 chunks, analyzing first chunk only" in helper_prompt
    assert "text.upper()" not in helper_prompt


@pytest.mark.asyncio
async def test_backend_migrations_produce_a_schema(
    tmp_path: Path, fake_gateway, make_use_case, write_repo, crawler_for
) -> None:
    root = write_repo(
        tmp_path / "shop",
        {
            "cmd/api/main.go": "package main\n\nfunc main() {}\n",
            "db/migrations/001_init.sql": "CREATE TABLE users (id INT PRIMARY KEY, email TEXT UNIQUE);",
            "db/migrations/002_orders.sql": (
                "CREATE TABLE orders (id INT PRIMARY KEY, user_id INT REFERENCES users(id));"
            ),
        },
    )

    result, events = await run(make_use_case(fake_gateway), crawler_for(root))

    assert result.project_type.primary is ProjectType.BACKEND
    schema = result.database_schema
    assert sorted(schema.canonical.tables) == ["orders", "users"]
    assert schema.migrations == ("001_init.sql", "002_orders.sql")
    assert 'users ||--o{ orders : "user_id -> users.id"' in schema.erd
    assert any(e.stage == "schema" and e.type is EventType.DATA for e in events)


@pytest.mark.asyncio
async def test_schema_with_no_surviving_table_is_a_warning(
    tmp_path: Path, fake_gateway, make_use_case, write_repo, crawler_for
) -> None:
    root = write_repo(
        tmp_path / "svc",
        {
            "main.go": "package main\n",
            "migrations/001_tmp.sql": "CREATE TABLE tmp (id INT); DROP TABLE tmp;",
        },
    )

    result, events = await run(make_use_case(fake_gateway), crawler_for(root))

    assert events[-1].type is EventType.COMPLETE
    assert result.database_schema is None
    assert any("No tables survived" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_secrets_are_reported(
    repo: Path, fake_gateway, make_use_case, write_repo, crawler_for
) -> None:
    write_repo(repo, {".env": "OPENAI_API_KEY=\nDEBUG=true\n"})

    result, _ = await run(make_use_case(fake_gateway), crawler_for(repo))

    assert ".env" not in result.file_summaries
    assert [v.name for v in result.secrets.global_secrets] == ["OPENAI_API_KEY"]


@pytest.mark.asyncio
async def test_question_failure_falls_back_to_defaults(
    repo: Path, gateway_cls, make_use_case, crawler_for
) -> None:
    gateway = gateway_cls(
        fail_on=lambda system, _: ProviderError("down")
        if system == prompts.QUESTIONS_SYSTEM_PROMPT
        else None
    )

    result, _ = await run(make_use_case(gateway), crawler_for(repo))

    questions = result.helpful_questions
    assert len(questions) >= 3
    assert questions[-1].answer == "A tiny demo application"
    assert any("Question generation failed" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_monorepo_services_and_graph(
    tmp_path: Path, fake_gateway, make_use_case, write_repo, crawler_for
) -> None:
    fake_gateway.responses[prompts.DETAILS_SYSTEM_PROMPT] = {
        "repo_summary_line": "Two Go services",
        "architecture": "microservices",
        "repo_layout": "monorepo",
        "confidence": 0.9,
    }
    root = write_repo(
        tmp_path / "mono",
        {
            "docker-compose.yml": (
                "services:\n"
                "  api:\n    build: ./services/api\n    depends_on: [users]\n"
                "  users:\n    build: ./services/users\n"
            ),
            "services/api/main.go": "package main\n\nfunc main() {}\n",
            "services/users/main.go": 'package main\n\nimport "google.golang.org/grpc"\n',
        },
    )
    store = RelationshipStore(tmp_path / "graphs")
    crawler = crawler_for(root)

    result, _ = await run(make_use_case(fake_gateway, relationship_store=store), crawler)

    assert [s.name for s in result.services] == ["api", "users"]
    graph = result.service_graph
    assert [(r.from_service, r.to_service) for r in graph.relationships] == [("api", "users")]
    assert graph.project_path == str(crawler.root)
    assert store.load(str(crawler.root)) == graph


def test_invalid_pool_settings_are_rejected(fake_gateway, make_use_case) -> None:
    with pytest.raises(ValueError):
        make_use_case(fake_gateway, workers=0)
