"""Tests for response parsing and the typed analysis calls."""

from __future__ import annotations

import pytest

from repo_explainer.domain.exceptions import ResponseParseError, ResponseSchemaError
from repo_explainer.domain.summaries import DetailedAnalysis, FileSummary, FolderSummary
from repo_explainer.infrastructure.rate_limiter import RateLimiter
from repo_explainer.services import prompts
from repo_explainer.services.llm_analyzer import LlmAnalyzer, parse_response, strip_fences


class TestParseResponse:
    def test_fenced_json_is_accepted(self) -> None:
        raw = '```json\n{"purpose": "Entry point", "functions": null}\n```'

        summary = parse_response(raw, FileSummary)

        assert summary.purpose == "Entry point"
        assert summary.functions == []

    def test_bare_fence_without_language(self) -> None:
        assert strip_fences('```\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_invalid_json_is_a_parse_error(self) -> None:
        with pytest.raises(ResponseParseError):
            parse_response("The file prints a greeting.", FileSummary)

    def test_non_object_is_a_schema_error(self) -> None:
        with pytest.raises(ResponseSchemaError):
            parse_response('["purpose"]', FileSummary)

    def test_missing_required_field_is_a_schema_error(self) -> None:
        with pytest.raises(ResponseSchemaError):
            parse_response('{"language": "Go"}', FileSummary)

    def test_lenient_field_coercion(self) -> None:
        details = parse_response(
            '{"repo_summary_line": "Shop", "architecture": "Microservices", '
            '"repo_layout": "MONOREPO", "main_stacks": "Go", '
            '"monorepo_services": [{"name": "api", "port": "8080/tcp"}]}',
            DetailedAnalysis,
        )

        assert details.architecture.value == "microservices"
        assert details.repo_layout.value == "monorepo"
        assert details.main_stacks == ["Go"]
        assert details.monorepo_services[0].port == 8080

    def test_out_of_range_confidence_is_rejected(self) -> None:
        with pytest.raises(ResponseSchemaError):
            parse_response('{"repo_summary_line": "x", "confidence": 3}', DetailedAnalysis)


class TestLlmAnalyzer:
    @pytest.fixture
    def analyzer_and_gateway(self, fake_gateway):
        analyzer = LlmAnalyzer(fake_gateway, RateLimiter(100, 1000), map_temperature=0.7)
        return analyzer, fake_gateway

    @pytest.mark.asyncio
    async def test_file_calls_use_a_low_temperature(self, analyzer_and_gateway) -> None:
        analyzer, gateway = analyzer_and_gateway

        summary = await analyzer.analyze_file("main.py", "print('hi')")

        assert summary.purpose == "Prints a greeting"
        system, user, temperature = gateway.calls[0]
        assert system == prompts.FILE_SYSTEM_PROMPT
        assert "main.py" in user and "print('hi')" in user
        assert temperature is not None and temperature <= 0.1

    @pytest.mark.asyncio
    async def test_details_are_deterministic(self, analyzer_and_gateway) -> None:
        analyzer, gateway = analyzer_and_gateway

        details = await analyzer.analyze_repository_details(
            "/repo", {}, {}, {"README.md": "# Demo"}
        )

        assert details.confidence == 0.8
        assert gateway.calls[-1][2] == 0.0
        assert "# Demo" in gateway.calls[-1][1]

    @pytest.mark.asyncio
    async def test_folder_summary_carries_its_path_and_members(self, analyzer_and_gateway) -> None:
        analyzer, _ = analyzer_and_gateway
        member = FileSummary(purpose="helper")

        folder = await analyzer.analyze_folder("utils", {"utils/helpers.py": member})

        assert folder.path == "utils"
        assert folder.purpose == "Application entry points"
        assert folder.file_summaries == {"utils/helpers.py": member}

    @pytest.mark.asyncio
    async def test_project_prompt_omits_nested_file_summaries(self, analyzer_and_gateway) -> None:
        analyzer, gateway = analyzer_and_gateway
        folders = {
            "utils": FolderSummary(
                path="utils",
                purpose="helpers",
                file_summaries={"utils/secret_name.py": FileSummary(purpose="x")},
            )
        }

        project = await analyzer.analyze_project("/repo", folders)

        assert project.folder_summaries == folders
        assert "secret_name.py" not in gateway.calls[-1][1]

    @pytest.mark.asyncio
    async def test_schema_errors_propagate(self, gateway_cls) -> None:
        gateway = gateway_cls({prompts.FILE_SYSTEM_PROMPT: {"language": "Go"}})
        analyzer = LlmAnalyzer(gateway, RateLimiter(10, 10))

        with pytest.raises(ResponseSchemaError):
            await analyzer.analyze_file("main.go", "package main")
