"""Application configuration — loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SUPPORTED_EXTENSIONS: list[str] = [
    ".go", ".py", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs",
    ".java", ".kt", ".scala", ".rs", ".rb", ".php", ".cs", ".swift",
    ".c", ".h", ".cpp", ".hpp", ".cc",
    ".vue", ".svelte", ".html", ".css", ".scss",
    ".sql", ".graphql", ".proto",
    ".sh", ".bash", ".ps1",
    ".json", ".yaml", ".yml", ".toml", ".ini", ".xml",
    ".md", ".rst", ".txt",
    ".dockerfile", ".tf", ".mod", ".gradle",
]  # fmt: skip

DEFAULT_SECRET_FILE_PATTERNS: list[str] = [
    ".env", ".env.*", "*.pem", "*.key", "*.p12", "*.pfx", "*.jks",
    "id_rsa*", "id_ed25519*", "*.keystore", ".npmrc", ".pypirc",
    "credentials*.json", "secrets.*", "*.secret", "*.secrets",
]  # fmt: skip


class Settings(BaseSettings):
    """Central configuration loaded from env vars (or ``.env`` file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── OpenAI ──────────────────────────────────────────────────────────
    openai_api_key: SecretStr
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None
    max_tokens_per_request: int = Field(default=4000, gt=0)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    llm_timeout_seconds: float = Field(default=120.0, gt=0)

    # ── Rate limiting ───────────────────────────────────────────────────
    requests_per_minute: int = Field(default=60, gt=0)
    requests_per_day: int = Field(default=10_000, gt=0)
    concurrent_workers: int = Field(default=5, gt=0)

    # ── File processing ─────────────────────────────────────────────────
    max_file_size_mb: float = Field(default=1.0, gt=0)
    chunk_size_tokens: int = Field(default=3000, gt=0)
    token_counter: Literal["tiktoken", "estimate"] = "tiktoken"
    supported_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_EXTENSIONS)
    )

    # ── Cache ───────────────────────────────────────────────────────────
    cache_enabled: bool = True
    cache_directory: str = "./cache"
    cache_ttl_hours: float = Field(default=24.0, ge=0)
    stable_url_project_cache: bool = False
    relationships_cache_directory: str = "./relationships_cache"

    # ── Security ────────────────────────────────────────────────────────
    redact_secrets: bool = True
    skip_secret_files: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SECRET_FILE_PATTERNS)
    )

    # ── Pipeline ────────────────────────────────────────────────────────
    pipeline_timeout_seconds: float = Field(default=1800.0, gt=0)
    progress_every: int = Field(default=5, gt=0)
    progress_queue_size: int = Field(default=64, gt=0)
    clone_timeout_seconds: float = Field(default=300.0, gt=0)
    allow_local_paths: bool = False

    # ── Server ──────────────────────────────────────────────────────────
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @property
    def map_temperature(self) -> float:
        """Temperature for map/reduce calls, never above 0.1."""
        return min(self.temperature, 0.1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton application settings (cached after first call)."""
    return Settings()  # type: ignore[call-arg]
