"""LLM analyzer — typed analysis calls on top of the ``LlmGateway`` port.

Every call waits for the shared rate limiter, sends one JSON-mode request
and validates the answer against the target pydantic model.  There are no
retries here: a failed call surfaces as ``ProviderError``,
``ResponseParseError`` or ``ResponseSchemaError`` and the pipeline decides
what to skip.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from repo_explainer.domain.exceptions import ResponseParseError, ResponseSchemaError
from repo_explainer.domain.ports.llm_gateway import LlmGateway
from repo_explainer.domain.summaries import (
    DetailedAnalysis,
    FileSummary,
    FolderSummary,
    HelpfulQuestions,
    ProjectSummary,
)
from repo_explainer.infrastructure.rate_limiter import RateLimiter
from repo_explainer.services import prompts

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def _dump(summaries: Mapping[str, BaseModel], exclude: set[str] | None = None) -> str:
    return json.dumps(
        {k: v.model_dump(mode="json", exclude=exclude) for k, v in sorted(summaries.items())},
        ensure_ascii=False,
    )


def strip_fences(raw: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    text = raw.strip()
    if text.startswith("```"):
        first_nl = text.index("\n") if "\n" in text else 3
        text = text[first_nl + 1 :]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


def parse_response(raw: str, model: type[T]) -> T:
    """Parse *raw* strictly into *model*."""
    text = strip_fences(raw)
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"LLM returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ResponseSchemaError(
            f"Expected a JSON object for {model.__name__}, got {type(data).__name__}"
        )
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ResponseSchemaError(
            f"LLM response does not match {model.__name__}: {exc.error_count()} error(s)"
        ) from exc


class LlmAnalyzer:
    """File, folder, project and repository-level analysis over one gateway.

    Parameters
    ----------
    gateway:
        Any ``LlmGateway`` implementation.
    rate_limiter:
        Shared limiter; one token is taken per request.
    map_temperature:
        Used for file, folder, project and question calls.  Capped at 0.1.
    details_temperature:
        Used for the detailed repository analysis.
    """

    def __init__(
        self,
        gateway: LlmGateway,
        rate_limiter: RateLimiter,
        *,
        map_temperature: float = 0.1,
        details_temperature: float = 0.0,
    ) -> None:
        self._gateway = gateway
        self._limiter = rate_limiter
        self._map_temperature = min(map_temperature, 0.1)
        self._details_temperature = details_temperature

    async def _call(self, system: str, user: str, model: type[T], temperature: float) -> T:
        await self._limiter.acquire()
        raw = await self._gateway.complete(system, user, json_mode=True, temperature=temperature)
        return parse_response(raw, model)

    # ── Map ─────────────────────────────────────────────────────────────

    async def analyze_file(self, path: str, content: str) -> FileSummary:
        user = prompts.FILE_USER_PROMPT.format(path=path, content=content)
        return await self._call(
            prompts.FILE_SYSTEM_PROMPT, user, FileSummary, self._map_temperature
        )

    # ── Reduce ──────────────────────────────────────────────────────────

    async def analyze_folder(
        self, path: str, file_summaries: Mapping[str, FileSummary]
    ) -> FolderSummary:
        user = prompts.FOLDER_USER_PROMPT.format(path=path, summaries=_dump(file_summaries))
        folder = await self._call(
            prompts.FOLDER_SYSTEM_PROMPT, user, FolderSummary, self._map_temperature
        )
        return folder.model_copy(update={"path": path, "file_summaries": dict(file_summaries)})

    async def analyze_project(
        self, path: str, folder_summaries: Mapping[str, FolderSummary]
    ) -> ProjectSummary:
        user = prompts.PROJECT_USER_PROMPT.format(
            path=path, summaries=_dump(folder_summaries, exclude={"file_summaries"})
        )
        project = await self._call(
            prompts.PROJECT_SYSTEM_PROMPT, user, ProjectSummary, self._map_temperature
        )
        return project.model_copy(update={"folder_summaries": dict(folder_summaries)})

    async def analyze_repository_details(
        self,
        path: str,
        folder_summaries: Mapping[str, FolderSummary],
        file_summaries: Mapping[str, FileSummary],
        important_files: Mapping[str, str],
    ) -> DetailedAnalysis:
        user = prompts.DETAILS_USER_PROMPT.format(
            file_summaries=_dump(file_summaries),
            folder_summaries=_dump(folder_summaries, exclude={"file_summaries"}),
            important_files=json.dumps(dict(sorted(important_files.items())), ensure_ascii=False),
        )
        logger.debug("Requesting detailed analysis for %s", path)
        return await self._call(
            prompts.DETAILS_SYSTEM_PROMPT, user, DetailedAnalysis, self._details_temperature
        )

    # ── Questions ───────────────────────────────────────────────────────

    async def generate_questions(
        self, project: ProjectSummary, project_type: str
    ) -> HelpfulQuestions:
        overview = project.model_dump_json(exclude={"folder_summaries"})
        user = prompts.QUESTIONS_USER_PROMPT.format(project_type=project_type, overview=overview)
        return await self._call(
            prompts.QUESTIONS_SYSTEM_PROMPT, user, HelpfulQuestions, self._map_temperature
        )
