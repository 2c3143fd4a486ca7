"""Tests for the content-addressed summary cache."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from repo_explainer.domain.exceptions import CacheError
from repo_explainer.domain.summaries import (
    DetailedAnalysis,
    FileSummary,
    FolderSummary,
    HelpfulQuestion,
    HelpfulQuestions,
    ProjectSummary,
)
from repo_explainer.infrastructure.summary_cache import SummaryCache, md5_hex

URL = "https://github.com/acme/widgets"


@pytest.fixture
def summary() -> FileSummary:
    return FileSummary(language="Go", purpose="HTTP entry point", functions=["main"])


def test_file_summary_round_trip(tmp_path: Path, summary: FileSummary) -> None:
    cache = SummaryCache(tmp_path)
    cache.set_file_summary("cmd/api/main.go", "package main", summary)

    assert cache.get_file_summary("cmd/api/main.go", "package main") == summary


def test_changed_content_is_a_miss(tmp_path: Path, summary: FileSummary) -> None:
    cache = SummaryCache(tmp_path)
    cache.set_file_summary("main.go", "package main", summary)

    assert cache.get_file_summary("main.go", "package main // edited") is None


def test_entry_envelope_and_file_name(tmp_path: Path, summary: FileSummary) -> None:
    cache = SummaryCache(tmp_path)
    cache.set_file_summary("cmd/api/main.go", "package main", summary)

    path = cache.entry_path("file", "cmd/api/main.go")
    assert path.name == f"main.go_file_{md5_hex('cmd/api/main.go')[:8]}.json"
    envelope = json.loads(path.read_text(encoding="utf-8"))
    assert set(envelope) == {"content_hash", "timestamp", "result"}
    assert envelope["content_hash"] == md5_hex("package main")
    assert envelope["result"]["purpose"] == "HTTP entry point"


def test_entries_expire_after_ttl(tmp_path: Path, summary: FileSummary, fake_clock) -> None:
    cache = SummaryCache(tmp_path, ttl_hours=1, clock=fake_clock)
    cache.set_file_summary("main.go", "x", summary)

    fake_clock.advance(minutes=59)
    assert cache.get_file_summary("main.go", "x") == summary
    fake_clock.advance(minutes=2)
    assert cache.get_file_summary("main.go", "x") is None
    assert cache.clear() == 0


def test_disabled_cache_never_hits_or_writes(tmp_path: Path, summary: FileSummary) -> None:
    cache = SummaryCache(tmp_path / "c", enabled=False)
    cache.set_file_summary("main.go", "x", summary)

    assert cache.get_file_summary("main.go", "x") is None
    assert not (tmp_path / "c").exists()


def test_corrupt_entry_degrades_to_miss(tmp_path: Path, summary: FileSummary) -> None:
    cache = SummaryCache(tmp_path)
    cache.set_file_summary("main.go", "x", summary)
    cache.entry_path("file", "main.go").write_text("{not json", encoding="utf-8")

    assert cache.get_file_summary("main.go", "x") is None


def test_folder_key_follows_member_summaries(tmp_path: Path, summary: FileSummary) -> None:
    cache = SummaryCache(tmp_path)
    folder = FolderSummary(path="cmd/api", purpose="API binary")
    cache.set_folder_summary("cmd/api", {"cmd/api/main.go": summary}, folder)

    assert cache.get_folder_summary("cmd/api", {"cmd/api/main.go": summary}) == folder
    changed = summary.model_copy(update={"purpose": "something else"})
    assert cache.get_folder_summary("cmd/api", {"cmd/api/main.go": changed}) is None


def test_url_project_key_names_owner_and_repo(tmp_path: Path) -> None:
    cache = SummaryCache(tmp_path)

    path = cache.entry_path("project", URL)

    assert path.name == f"acme-widgets_project_{md5_hex(URL)[:8]}.json"


def test_stable_url_keys_survive_content_churn(tmp_path: Path) -> None:
    folders = {"root": FolderSummary(purpose="v1")}
    project = ProjectSummary(purpose="Widgets service")

    stable = SummaryCache(tmp_path / "stable", stable_url_keys=True)
    stable.set_project_summary(URL, folders, project)
    assert stable.get_project_summary(URL, {"root": FolderSummary(purpose="v2")}) == project

    strict = SummaryCache(tmp_path / "strict")
    strict.set_project_summary(URL, folders, project)
    assert strict.get_project_summary(URL, {"root": FolderSummary(purpose="v2")}) is None


def test_details_and_questions_kinds(tmp_path: Path, summary: FileSummary) -> None:
    cache = SummaryCache(tmp_path)
    folders = {"root": FolderSummary(purpose="root")}
    files = {"main.go": summary}
    important = {"go.mod": "module example.com/widgets"}
    details = DetailedAnalysis(repo_summary_line="Widgets API", confidence=0.7)
    project = ProjectSummary(purpose="Widgets")
    questions = HelpfulQuestions(questions=[HelpfulQuestion(question="Q?", answer="A.")])

    cache.set_repository_details("/repo", folders, files, important, details)
    cache.set_questions("/repo", project, questions)

    assert cache.get_repository_details("/repo", folders, files, important) == details
    assert cache.get_repository_details("/repo", folders, files, {}) is None
    assert cache.get_questions("/repo", project) == questions


def test_clear_removes_the_directory(tmp_path: Path, summary: FileSummary) -> None:
    cache = SummaryCache(tmp_path / "cache")
    cache.set_file_summary("main.go", "x", summary)
    cache.set_file_summary("util.go", "y", summary)

    assert cache.clear() == 2

    assert not (tmp_path / "cache").exists()
    assert cache.get_file_summary("main.go", "x") is None
    assert cache.clear() == 0


def test_write_failure_raises_cache_error(tmp_path: Path, summary: FileSummary) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    cache = SummaryCache(blocker)

    with pytest.raises(CacheError):
        cache.set_file_summary("main.go", "x", summary)
