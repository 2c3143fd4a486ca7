"""Low-level SQL text handling for the DDL reducer.

Comment stripping, statement splitting, statement classification and a
small tokenizer.  Quoted strings, quoted identifiers and dollar-quoted
bodies are treated as opaque everywhere.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class DdlSyntaxError(ValueError):
    """A statement could not be parsed."""


class StatementKind(str, Enum):
    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    ALTER_TABLE = "alter_table"
    CREATE_INDEX = "create_index"
    DROP_INDEX = "drop_index"
    CREATE_TYPE = "create_type"
    ALTER_TYPE = "alter_type"
    DROP_TYPE = "drop_type"
    CREATE_VIEW = "create_view"
    DROP_VIEW = "drop_view"
    COMMENT = "comment"


_CLASSIFIERS: list[tuple[StatementKind, re.Pattern[str]]] = [
    (
        StatementKind.CREATE_TABLE,
        re.compile(
            r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:GLOBAL|LOCAL)\s+)?"
            r"(?:TEMP(?:ORARY)?\s+|UNLOGGED\s+)?TABLE\b",
            re.IGNORECASE,
        ),
    ),
    (StatementKind.DROP_TABLE, re.compile(r"^DROP\s+TABLE\b", re.IGNORECASE)),
    (StatementKind.ALTER_TABLE, re.compile(r"^ALTER\s+TABLE\b", re.IGNORECASE)),
    (StatementKind.CREATE_INDEX, re.compile(r"^CREATE\s+(?:UNIQUE\s+)?INDEX\b", re.IGNORECASE)),
    (StatementKind.DROP_INDEX, re.compile(r"^DROP\s+INDEX\b", re.IGNORECASE)),
    (StatementKind.CREATE_TYPE, re.compile(r"^CREATE\s+TYPE\b", re.IGNORECASE)),
    (StatementKind.ALTER_TYPE, re.compile(r"^ALTER\s+TYPE\b", re.IGNORECASE)),
    (StatementKind.DROP_TYPE, re.compile(r"^DROP\s+TYPE\b", re.IGNORECASE)),
    (
        StatementKind.CREATE_VIEW,
        re.compile(
            r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:TEMP(?:ORARY)?\s+)?(?:MATERIALIZED\s+)?VIEW\b",
            re.IGNORECASE,
        ),
    ),
    (StatementKind.DROP_VIEW, re.compile(r"^DROP\s+(?:MATERIALIZED\s+)?VIEW\b", re.IGNORECASE)),
    (StatementKind.COMMENT, re.compile(r"^COMMENT\s+ON\b", re.IGNORECASE)),
]

_DOLLAR_TAG_RE = re.compile(r"\$[A-Za-z_]*\$")


def classify(statement: str) -> StatementKind | None:
    for kind, pattern in _CLASSIFIERS:
        if pattern.match(statement):
            return kind
    return None


# ── Splitting ───────────────────────────────────────────────────────────────


def _read_quoted(text: str, i: int, quote: str) -> int:
    """Index just past the quoted run starting at *i*; doubled quotes escape."""
    n = len(text)
    j = i + 1
    while j < n:
        if text[j] == quote:
            if j + 1 < n and text[j + 1] == quote:
                j += 2
                continue
            return j + 1
        j += 1
    return n


def split_statements(sql: str) -> list[str]:
    """Strip comments and split *sql* on top-level semicolons.

    Whitespace runs outside quotes collapse to one space; empty statements
    are dropped.
    """
    statements: list[str] = []
    buf: list[str] = []
    depth = 0
    i, n = 0, len(sql)

    def push_space() -> None:
        if buf and buf[-1] != " ":
            buf.append(" ")

    while i < n:
        ch = sql[i]
        if ch == "-" and sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end
            push_space()
            continue
        if ch == "/" and sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            push_space()
            continue
        if ch in ("'", '"', "`"):
            j = _read_quoted(sql, i, ch)
            buf.append(sql[i:j])
            i = j
            continue
        if ch == "$":
            tag = _DOLLAR_TAG_RE.match(sql, i)
            if tag:
                end = sql.find(tag.group(), tag.end())
                j = n if end == -1 else end + len(tag.group())
                buf.append(sql[i:j])
                i = j
                continue
        if ch.isspace():
            push_space()
            i += 1
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == ";" and depth == 0:
            statement = "".join(buf).strip()
            if statement:
                statements.append(statement)
            buf = []
            i += 1
            continue
        buf.append(ch)
        i += 1

    tail = "".join(buf).strip()
    if tail:
        statements.append(tail)
    return statements


def split_top_level(text: str, sep: str = ",") -> list[str]:
    """Split on *sep* outside parentheses and quotes; empty parts are dropped."""
    parts: list[str] = []
    depth = 0
    start = 0
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch in ("'", '"', "`"):
            i = _read_quoted(text, i, ch)
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == sep and depth == 0:
            parts.append(text[start:i].strip())
            start = i + 1
        i += 1
    parts.append(text[start:].strip())
    return [p for p in parts if p]


# ── Tokens ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Token:
    text: str
    start: int
    end: int

    @property
    def upper(self) -> str:
        return self.text.upper()

    @property
    def is_group(self) -> bool:
        return self.text.startswith("(")

    @property
    def is_string(self) -> bool:
        return self.text.startswith("'")


def _group_end(text: str, i: int) -> int:
    depth = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in ("'", '"', "`"):
            i = _read_quoted(text, i, ch)
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise DdlSyntaxError(f"unbalanced parentheses in: {text[:80]}")


def tokenize(text: str) -> list[Token]:
    """Words, quoted strings and balanced ``( … )`` groups, with source spans.

    Quoted runs and ``[bracketed]`` identifiers stay inside the word they
    belong to, so ``"public"."users"`` is a single token.
    """
    tokens: list[Token] = []
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch.isspace() or ch == ",":
            i += 1
            continue
        if ch == "(":
            j = _group_end(text, i)
        else:
            j = i
            while j < n and not text[j].isspace() and text[j] not in "(,":
                c = text[j]
                if c in ("'", '"', "`"):
                    j = _read_quoted(text, j, c)
                    continue
                if c == "[" and (j == i or text[j - 1] == "."):
                    close = text.find("]", j)
                    j = n if close == -1 else close + 1
                    continue
                j += 1
        tokens.append(Token(text[i:j], i, j))
        i = j
    return tokens


def group_inner(token: Token) -> str:
    if not token.is_group:
        raise DdlSyntaxError(f"expected '(' but found {token.text!r}")
    return token.text[1:-1].strip()


# ── Identifiers and literals ────────────────────────────────────────────────

_QUOTE_PAIRS = {'"': '"', "`": "`", "[": "]"}


def identifier_parts(raw: str) -> list[str]:
    """``public."Users"`` → ``["public", "users"]``: unquoted, lowercased."""
    raw = raw.strip()
    if not raw:
        raise DdlSyntaxError("missing identifier")
    parts: list[str] = []
    buf: list[str] = []
    i, n = 0, len(raw)
    while i < n:
        ch = raw[i]
        if ch in _QUOTE_PAIRS:
            close = _QUOTE_PAIRS[ch]
            end = raw.find(close, i + 1)
            if end == -1:
                raise DdlSyntaxError(f"unterminated identifier: {raw}")
            buf.append(raw[i + 1 : end])
            i = end + 1
            continue
        if ch == ".":
            parts.append("".join(buf).strip().lower())
            buf = []
        else:
            buf.append(ch)
        i += 1
    parts.append("".join(buf).strip().lower())
    if not all(parts):
        raise DdlSyntaxError(f"malformed identifier {raw!r}")
    return parts


def unquote_identifier(raw: str) -> str:
    """Last part of a possibly schema-qualified identifier, unquoted and lowercased."""
    return identifier_parts(raw)[-1]


def unquote_string(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == "'" and raw[-1] == "'":
        return raw[1:-1].replace("''", "'")
    raise DdlSyntaxError(f"expected a string literal, found {raw!r}")


def quote_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


_PLAIN_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_$]*$")
_RESERVED = frozenset(
    {
        "all", "and", "as", "by", "check", "column", "constraint", "create",
        "default", "desc", "asc", "foreign", "from", "group", "index", "key",
        "not", "null", "on", "or", "order", "primary", "references", "select",
        "table", "to", "unique", "user", "using", "where", "with", "fulltext",
        "spatial", "exclude", "like", "identity", "generated", "collate",
    }
)  # fmt: skip


def quote_identifier(name: str) -> str:
    if _PLAIN_IDENT_RE.match(name) and name not in _RESERVED:
        return name
    return '"' + name.replace('"', '""') + '"'


def identifier_list(inner: str) -> list[str]:
    """``a, "B", c DESC`` → ``["a", "b", "c"]``."""
    names: list[str] = []
    for part in split_top_level(inner):
        words = tokenize(part)
        if not words:
            continue
        names.append(unquote_identifier(words[0].text))
    return names
