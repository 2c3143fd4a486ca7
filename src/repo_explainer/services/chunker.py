"""Token-bounded chunking of oversized file contents.

Uses ``tiktoken`` for token counting by default; the cheaper character
estimate can be selected in settings for offline runs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import tiktoken

from repo_explainer.infrastructure.config import Settings

# ── Token counting ──────────────────────────────────────────────────────────

_ENCODING_NAME = "cl100k_base"  # GPT-4o family

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    global _encoder  # noqa: PLW0603
    if _encoder is None:
        _encoder = tiktoken.get_encoding(_ENCODING_NAME)
    return _encoder


def count_tokens(text: str) -> int:
    """Return the exact token count for *text* under cl100k_base."""
    return len(_get_encoder().encode(text, disallowed_special=()))


def estimate_tokens(text: str) -> int:
    """Rough count, about three characters per token plus overhead."""
    return len(text) // 3 + 10


TokenCounter = Callable[[str], int]


# ── Chunks ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Chunk:
    content: str
    start_line: int  # 1-based, inclusive
    end_line: int
    tokens: int


class Chunker:
    """Split text on line boundaries into chunks of at most *max_tokens*.

    A single line longer than the budget is cut into character slices.
    """

    def __init__(self, max_tokens: int, token_counter: TokenCounter = count_tokens) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self._max = max_tokens
        self._count = token_counter

    @classmethod
    def from_settings(cls, settings: Settings) -> Chunker:
        counter = count_tokens if settings.token_counter == "tiktoken" else estimate_tokens
        return cls(settings.chunk_size_tokens, counter)

    @property
    def max_tokens(self) -> int:
        return self._max

    def split(self, content: str) -> list[Chunk]:
        if not content:
            return []
        lines = content.splitlines(keepends=True)
        total = self._count(content)
        if total <= self._max:
            return [Chunk(content, 1, len(lines), total)]

        chunks: list[Chunk] = []
        buf: list[str] = []
        buf_tokens = 0
        start = 1

        def flush(end_line: int) -> None:
            nonlocal buf, buf_tokens, start
            if buf:
                text = "".join(buf)
                chunks.append(Chunk(text, start, end_line, self._count(text)))
            buf, buf_tokens, start = [], 0, end_line + 1

        for lineno, line in enumerate(lines, start=1):
            line_tokens = self._count(line)
            if line_tokens > self._max:
                flush(lineno - 1)
                for piece in self._slice_line(line, line_tokens):
                    chunks.append(Chunk(piece, lineno, lineno, self._count(piece)))
                start = lineno + 1
                continue
            if buf and buf_tokens + line_tokens > self._max:
                flush(lineno - 1)
            buf.append(line)
            buf_tokens += line_tokens
        flush(len(lines))
        return chunks

    def _slice_line(self, line: str, line_tokens: int) -> list[str]:
        width = max(1, len(line) * self._max // max(line_tokens, 1))
        pieces: list[str] = []
        pos = 0
        while pos < len(line):
            piece = line[pos : pos + width]
            while len(piece) > 1 and self._count(piece) > self._max:
                piece = piece[: len(piece) * 3 // 4]
            pieces.append(piece)
            pos += len(piece)
        return pieces


def describe(chunks: list[Chunk]) -> str:
    if not chunks:
        return "No chunks"
    if len(chunks) == 1:
        return f"Single chunk: {chunks[0].tokens} tokens"
    return f"{len(chunks)} chunks, {sum(c.tokens for c in chunks)} total tokens"
