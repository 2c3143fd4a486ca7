"""Pydantic request / response DTOs for the API boundary."""

from __future__ import annotations

from pydantic import BaseModel, field_validator, model_validator


class AnalyzeRequest(BaseModel):
    """Request body for ``POST /analyze``: exactly one of *url* or *path*."""

    url: str | None = None
    path: str | None = None
    token: str | None = None

    @field_validator("url", "path", "token")
    @classmethod
    def _blank_is_missing(cls, v: str | None) -> str | None:
        if v is None:
            return None
        stripped = v.strip()
        return stripped or None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> AnalyzeRequest:
        if (self.url is None) == (self.path is None):
            msg = "Provide exactly one of 'url' or 'path'."
            raise ValueError(msg)
        return self


class StatusResponse(BaseModel):
    status: str = "ok"
    message: str


class ErrorResponse(BaseModel):
    """Standard error envelope returned on all failure paths."""

    status: str = "error"
    message: str
