"""Deterministic chronological fold of SQL migrations into a canonical schema.

Migrations are applied in lexicographic name order and statements in
textual order, so later DDL overwrites earlier DDL.  Each statement applier
returns the warnings it produced; a statement that cannot be parsed raises
:class:`DdlSyntaxError`, which is recorded against the migration and
statement index before the fold moves on.  Nothing a single statement does
can abort the run.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from repo_explainer.domain.canonical_schema import (
    CanonicalSchema,
    Column,
    DdlWarning,
    ForeignKey,
    Index,
    SchemaReport,
    Table,
)
from repo_explainer.domain.entities import Migration
from repo_explainer.domain.exceptions import NoSchemaExtractedError
from repo_explainer.services.schema_render import render_erd, render_final_migration
from repo_explainer.services.sql_text import (
    DdlSyntaxError,
    StatementKind,
    Token,
    classify,
    group_inner,
    identifier_list,
    identifier_parts,
    split_statements,
    split_top_level,
    tokenize,
    unquote_identifier,
    unquote_string,
)

logger = logging.getLogger(__name__)

FINALIZE = "<finalize>"

# Words that end a column's type and start its modifiers.
_COLUMN_KEYWORDS = frozenset(
    {
        "NOT", "NULL", "PRIMARY", "UNIQUE", "DEFAULT", "REFERENCES", "CHECK",
        "CONSTRAINT", "GENERATED", "COLLATE", "AUTO_INCREMENT", "AUTOINCREMENT",
        "COMMENT", "ON", "IDENTITY",
    }
)  # fmt: skip
_DEFAULT_STOP = _COLUMN_KEYWORDS - {"NULL"}

_TABLE_CONSTRAINT_RE = re.compile(
    r"^(?:CONSTRAINT\s"
    r"|PRIMARY\s+KEY\b"
    r"|FOREIGN\s+KEY\b"
    r"|UNIQUE\s*(?:(?:KEY|INDEX)\b)?\s*(?:[\w\"`]+\s*)?\("
    r"|CHECK\s*\("
    r"|EXCLUDE\b"
    r"|(?:FULLTEXT|SPATIAL)\s"
    r"|(?:KEY|INDEX)\s*(?:[\w\"`]+\s*)?\()",
    re.IGNORECASE,
)

_CREATE_TABLE_RE = re.compile(
    r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:GLOBAL|LOCAL)\s+)?"
    r"(?:TEMP(?:ORARY)?\s+|UNLOGGED\s+)?TABLE\s+(?P<if_not_exists>IF\s+NOT\s+EXISTS\s+)?",
    re.IGNORECASE,
)
_ALTER_TABLE_RE = re.compile(
    r"^ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?", re.IGNORECASE
)
_CREATE_ENUM_RE = re.compile(
    r"^CREATE\s+TYPE\s+(?P<name>.+?)\s+AS\s+ENUM\s*\((?P<body>.*)\)$",
    re.IGNORECASE | re.DOTALL,
)
_CREATE_VIEW_RE = re.compile(
    r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:TEMP(?:ORARY)?\s+)?(?:MATERIALIZED\s+)?VIEW\s+"
    r"(?:IF\s+NOT\s+EXISTS\s+)?",
    re.IGNORECASE,
)
_LEADING_DROP_RE = re.compile(
    r"^DROP\s+(?:MATERIALIZED\s+)?(?:TABLE|VIEW|TYPE|INDEX)\s+(?:CONCURRENTLY\s+)?"
    r"(?:IF\s+EXISTS\s+)?",
    re.IGNORECASE,
)

_FK_ACTIONS = ("CASCADE", "RESTRICT", "NO ACTION", "SET NULL", "SET DEFAULT")


def normalize_type(raw: str) -> str:
    """``NUMERIC (10, 2)`` → ``numeric(10,2)``; quotes dropped, lowercase."""
    text = raw.replace('"', "").strip().lower()
    text = re.sub(r"\s*\(\s*", "(", text)
    text = re.sub(r"\s*\)", ")", text)
    text = re.sub(r"\s*,\s*", ",", text)
    return re.sub(r"\s+", " ", text) or "unknown"


def _preview(statement: str, width: int = 60) -> str:
    return statement if len(statement) <= width else statement[: width - 3] + "..."


# ── Mutable drafts (private to one reducer run) ────────────────────────────


@dataclass
class _ColumnDraft:
    type: str
    nullable: bool = True
    default: str | None = None
    comment: str | None = None


@dataclass
class _ForeignKeyDraft:
    columns: list[str]
    ref_table: str
    ref_columns: list[str] = field(default_factory=list)
    on_delete: str | None = None
    on_update: str | None = None
    name: str | None = None


@dataclass
class _IndexDraft:
    name: str
    columns: list[str]
    unique: bool = False
    using: str | None = None


@dataclass
class _TableDraft:
    columns: dict[str, _ColumnDraft] = field(default_factory=dict)
    primary_key: list[str] = field(default_factory=list)
    unique: list[list[str]] = field(default_factory=list)
    foreign_keys: list[_ForeignKeyDraft] = field(default_factory=list)
    indexes: list[_IndexDraft] = field(default_factory=list)
    comment: str | None = None
    implicit: bool = False

    def add_unique(self, columns: list[str]) -> None:
        if columns and columns not in self.unique:
            self.unique.append(columns)

    def drop_column(self, name: str) -> None:
        self.columns.pop(name, None)
        self.primary_key = [c for c in self.primary_key if c != name]
        self.unique = [s for s in ([c for c in cols if c != name] for cols in self.unique) if s]
        self.foreign_keys = [fk for fk in self.foreign_keys if name not in fk.columns]
        self.indexes = [ix for ix in self.indexes if name not in ix.columns]

    def rename_column(self, old: str, new: str) -> None:
        if old not in self.columns:
            raise DdlSyntaxError(f"column {old} does not exist")
        self.columns[new] = self.columns.pop(old)

        def swap(cols: list[str]) -> list[str]:
            return [new if c == old else c for c in cols]

        self.primary_key = swap(self.primary_key)
        self.unique = [swap(cols) for cols in self.unique]
        for fk in self.foreign_keys:
            fk.columns = swap(fk.columns)
        for ix in self.indexes:
            ix.columns = swap(ix.columns)

    def merge_from(self, other: _TableDraft) -> None:
        """Fold in what ALTER statements attached to an implicitly created table."""
        for name, column in other.columns.items():
            self.columns.setdefault(name, column)
        self.primary_key.extend(other.primary_key)
        for cols in other.unique:
            self.add_unique(cols)
        self.foreign_keys.extend(other.foreign_keys)
        self.indexes.extend(other.indexes)
        if self.comment is None:
            self.comment = other.comment


# ── The fold ────────────────────────────────────────────────────────────────


class _Fold:
    """Schema under construction plus one applier per statement kind."""

    def __init__(self) -> None:
        self.tables: dict[str, _TableDraft] = {}
        self.enums: dict[str, list[str]] = {}
        self.views: dict[str, str] = {}
        self._appliers: dict[StatementKind, Callable[[str], list[str]]] = {
            StatementKind.CREATE_TABLE: self.create_table,
            StatementKind.DROP_TABLE: self.drop_table,
            StatementKind.ALTER_TABLE: self.alter_table,
            StatementKind.CREATE_INDEX: self.create_index,
            StatementKind.DROP_INDEX: self.drop_index,
            StatementKind.CREATE_TYPE: self.create_type,
            StatementKind.ALTER_TYPE: self.alter_type,
            StatementKind.DROP_TYPE: self.drop_type,
            StatementKind.CREATE_VIEW: self.create_view,
            StatementKind.DROP_VIEW: self.drop_view,
            StatementKind.COMMENT: self.comment_on,
        }

    def apply(self, kind: StatementKind, statement: str) -> list[str]:
        return self._appliers[kind](statement)

    def _table_for_alter(self, name: str) -> _TableDraft:
        table = self.tables.get(name)
        if table is None:
            table = _TableDraft(implicit=True)
            self.tables[name] = table
        return table

    # ── CREATE / DROP TABLE ─────────────────────────────────────────────

    def create_table(self, statement: str) -> list[str]:
        match = _CREATE_TABLE_RE.match(statement)
        if match is None:
            raise DdlSyntaxError("malformed CREATE TABLE")
        tokens = tokenize(statement[match.end() :])
        if not tokens:
            raise DdlSyntaxError("CREATE TABLE without a name")
        name = unquote_identifier(tokens[0].text)
        if len(tokens) < 2 or not tokens[1].is_group:
            if any(t.upper == "AS" for t in tokens[1:]):
                raise DdlSyntaxError(f"CREATE TABLE {name} AS ... is not supported")
            raise DdlSyntaxError(f"CREATE TABLE {name} has no column list")

        existing = self.tables.get(name)
        if existing is not None and match["if_not_exists"] and not existing.implicit:
            return []

        table = _TableDraft()
        notes: list[str] = []
        for item in split_top_level(group_inner(tokens[1])):
            try:
                if _TABLE_CONSTRAINT_RE.match(item):
                    notes.extend(self._table_constraint(name, table, item))
                elif re.match(r"^LIKE\s", item, re.IGNORECASE):
                    notes.append(f"{name}: LIKE clause ignored")
                else:
                    notes.extend(self._column_def(name, table, item))
            except DdlSyntaxError as exc:
                notes.append(f"{name}: skipped {_preview(item)!r}: {exc}")

        if existing is not None and existing.implicit:
            table.merge_from(existing)
        elif existing is not None:
            notes.append(f"table {name} redefined; earlier definition replaced")
        self.tables[name] = table
        return notes

    def drop_table(self, statement: str) -> list[str]:
        names, cascade = self._drop_targets(statement)
        for name in names:
            self.tables.pop(name, None)
            if cascade:
                for table in self.tables.values():
                    table.foreign_keys = [fk for fk in table.foreign_keys if fk.ref_table != name]
        return []

    @staticmethod
    def _drop_targets(statement: str) -> tuple[list[str], bool]:
        match = _LEADING_DROP_RE.match(statement)
        if match is None:
            raise DdlSyntaxError("malformed DROP statement")
        rest = statement[match.end() :].strip()
        cascade = False
        tail = re.search(r"\s+(CASCADE|RESTRICT)$", rest, re.IGNORECASE)
        if tail:
            cascade = tail.group(1).upper() == "CASCADE"
            rest = rest[: tail.start()]
        names = [unquote_identifier(part) for part in split_top_level(rest)]
        if not names:
            raise DdlSyntaxError("DROP without a target")
        return names, cascade

    # ── Columns and constraints ─────────────────────────────────────────

    def _column_def(self, table_name: str, table: _TableDraft, item: str) -> list[str]:
        tokens = tokenize(item)
        if not tokens:
            raise DdlSyntaxError("empty column definition")
        name = unquote_identifier(tokens[0].text)

        i = 1
        type_start = type_end = None
        while i < len(tokens) and tokens[i].upper not in _COLUMN_KEYWORDS:
            if type_start is None:
                type_start = tokens[i].start
            type_end = tokens[i].end
            i += 1
        col_type = "unknown" if type_start is None else normalize_type(item[type_start:type_end])
        column = _ColumnDraft(type=col_type)

        notes: list[str] = []
        constraint_name: str | None = None
        n = len(tokens)
        while i < n:
            word = tokens[i].upper
            nxt = tokens[i + 1].upper if i + 1 < n else ""
            if word == "NOT" and nxt == "NULL":
                column.nullable = False
                i += 2
            elif word == "NULL":
                column.nullable = True
                i += 1
            elif word == "PRIMARY" and nxt == "KEY":
                table.primary_key.append(name)
                column.nullable = False
                i += 2
            elif word == "UNIQUE":
                table.add_unique([name])
                i += 2 if nxt == "KEY" else 1
            elif word == "DEFAULT":
                if i + 1 >= n:
                    raise DdlSyntaxError(f"DEFAULT without a value on column {name}")
                j = i + 2
                while j < n and tokens[j].upper not in _DEFAULT_STOP:
                    j += 1
                column.default = item[tokens[i + 1].start : tokens[j - 1].end]
                i = j
            elif word == "REFERENCES":
                fk, i = self._references(tokens, i + 1, [name], constraint_name)
                table.foreign_keys.append(fk)
                constraint_name = None
            elif word == "CONSTRAINT" and i + 1 < n:
                constraint_name = unquote_identifier(tokens[i + 1].text)
                i += 2
            elif word == "CHECK":
                i += 2 if nxt.startswith("(") else 1
            elif word == "COMMENT" and i + 1 < n:
                column.comment = unquote_string(tokens[i + 1].text)
                i += 2
            elif word == "COLLATE":
                i += 2
            elif word == "ON" and nxt == "UPDATE":
                i += 3
                if i < n and tokens[i].is_group:
                    i += 1
            elif word == "GENERATED":
                i += 1
                while i < n and (
                    tokens[i].is_group
                    or tokens[i].upper in ("ALWAYS", "BY", "DEFAULT", "AS", "IDENTITY", "STORED", "VIRTUAL")
                ):
                    i += 1
            elif word in ("AUTO_INCREMENT", "AUTOINCREMENT", "IDENTITY"):
                i += 1
                if i < n and tokens[i].is_group:
                    i += 1
            else:
                notes.append(f"{table_name}.{name}: ignored modifier {tokens[i].text!r}")
                i += 1

        table.columns[name] = column
        return notes

    @staticmethod
    def _action(tokens: Sequence[Token], i: int) -> tuple[str, int]:
        word = tokens[i].upper if i < len(tokens) else ""
        nxt = tokens[i + 1].upper if i + 1 < len(tokens) else ""
        pair = f"{word} {nxt}"
        if pair in _FK_ACTIONS:
            return pair, i + 2
        if word in _FK_ACTIONS:
            return word, i + 1
        raise DdlSyntaxError(f"unknown referential action {word!r}")

    def _references(
        self, tokens: Sequence[Token], i: int, columns: list[str], name: str | None
    ) -> tuple[_ForeignKeyDraft, int]:
        if i >= len(tokens):
            raise DdlSyntaxError("REFERENCES without a table")
        fk = _ForeignKeyDraft(columns=columns, ref_table=unquote_identifier(tokens[i].text), name=name)
        i += 1
        if i < len(tokens) and tokens[i].is_group:
            fk.ref_columns = identifier_list(group_inner(tokens[i]))
            i += 1
        n = len(tokens)
        while i < n:
            word = tokens[i].upper
            nxt = tokens[i + 1].upper if i + 1 < n else ""
            if word == "ON" and nxt in ("DELETE", "UPDATE"):
                action, i = self._action(tokens, i + 2)
                if nxt == "DELETE":
                    fk.on_delete = action
                else:
                    fk.on_update = action
            elif word == "MATCH":
                i += 2
            elif word in ("DEFERRABLE", "INITIALLY", "DEFERRED", "IMMEDIATE"):
                i += 1
            elif word == "NOT" and nxt == "DEFERRABLE":
                i += 2
            else:
                break
        return fk, i

    def _table_constraint(self, table_name: str, table: _TableDraft, item: str) -> list[str]:
        tokens = tokenize(item)
        i = 0
        name: str | None = None
        if tokens and tokens[0].upper == "CONSTRAINT":
            if len(tokens) < 3:
                raise DdlSyntaxError("incomplete CONSTRAINT clause")
            name = unquote_identifier(tokens[1].text)
            i = 2
        if i >= len(tokens):
            raise DdlSyntaxError("empty constraint")

        word = tokens[i].upper
        nxt = tokens[i + 1].upper if i + 1 < len(tokens) else ""

        def columns_at(j: int) -> tuple[list[str], int]:
            # skip an optional constraint/index name before the column list
            if j < len(tokens) and not tokens[j].is_group:
                j += 1
            if j >= len(tokens):
                raise DdlSyntaxError("missing column list")
            return identifier_list(group_inner(tokens[j])), j + 1

        if word == "PRIMARY" and nxt == "KEY":
            cols, _ = columns_at(i + 2)
            table.primary_key.extend(cols)
            return []
        if word == "UNIQUE":
            j = i + 1
            if j < len(tokens) and tokens[j].upper in ("KEY", "INDEX"):
                j += 1
            cols, _ = columns_at(j)
            table.add_unique(cols)
            return []
        if word == "FOREIGN" and nxt == "KEY":
            cols, j = columns_at(i + 2)
            if j >= len(tokens) or tokens[j].upper != "REFERENCES":
                raise DdlSyntaxError("FOREIGN KEY without REFERENCES")
            fk, _ = self._references(tokens, j + 1, cols, name)
            table.foreign_keys.append(fk)
            return []
        if word in ("KEY", "INDEX", "FULLTEXT", "SPATIAL"):
            j = i + 1
            using = word.lower() if word in ("FULLTEXT", "SPATIAL") else None
            if using and j < len(tokens) and tokens[j].upper in ("KEY", "INDEX"):
                j += 1
            index_name = None
            if j < len(tokens) and not tokens[j].is_group:
                index_name = unquote_identifier(tokens[j].text)
                j += 1
            if j >= len(tokens):
                raise DdlSyntaxError("index without a column list")
            cols = self._index_columns(group_inner(tokens[j]))
            self._put_index(table_name, table, _IndexDraft(index_name or "", cols, using=using))
            return []
        if word in ("CHECK", "EXCLUDE"):
            return [f"{table_name}: {word} constraint ignored"]
        raise DdlSyntaxError(f"unsupported table constraint {_preview(item)!r}")

    # ── ALTER TABLE ─────────────────────────────────────────────────────

    def alter_table(self, statement: str) -> list[str]:
        match = _ALTER_TABLE_RE.match(statement)
        if match is None:
            raise DdlSyntaxError("malformed ALTER TABLE")
        body = statement[match.end() :]
        tokens = tokenize(body)
        if len(tokens) < 2:
            raise DdlSyntaxError("ALTER TABLE without an action")
        name = unquote_identifier(tokens[0].text)
        table = self._table_for_alter(name)

        notes: list[str] = []
        for action in split_top_level(body[tokens[0].end :]):
            try:
                notes.extend(self._alter_action(name, table, action))
            except DdlSyntaxError as exc:
                notes.append(f"ALTER TABLE {name}: {exc}")
            # RENAME TO re-keys the draft; later actions use the new name.
            name = next((key for key, draft in self.tables.items() if draft is table), name)
        return notes

    def _alter_action(self, name: str, table: _TableDraft, action: str) -> list[str]:
        tokens = tokenize(action)
        word = tokens[0].upper
        nxt = tokens[1].upper if len(tokens) > 1 else ""

        if word == "ADD":
            if len(tokens) < 2:
                raise DdlSyntaxError("ADD without a definition")
            j = 1
            if nxt == "COLUMN":
                j = 2
                if len(tokens) > 5 and " ".join(t.upper for t in tokens[2:5]) == "IF NOT EXISTS":
                    j = 5
                    if unquote_identifier(tokens[j].text) in table.columns:
                        return []
                if j >= len(tokens):
                    raise DdlSyntaxError("ADD COLUMN without a definition")
                return self._column_def(name, table, action[tokens[j].start :])
            rest = action[tokens[j].start :]
            if _TABLE_CONSTRAINT_RE.match(rest):
                return self._table_constraint(name, table, rest)
            return self._column_def(name, table, rest)

        if word == "DROP":
            return self._alter_drop(name, table, tokens)

        if word == "ALTER":
            j = 2 if nxt == "COLUMN" else 1
            if j >= len(tokens):
                raise DdlSyntaxError("ALTER COLUMN without a column")
            column_name = unquote_identifier(tokens[j].text)
            column = table.columns.get(column_name)
            if column is None:
                raise DdlSyntaxError(f"column {column_name} does not exist")
            return self._alter_column(name, column_name, column, action, tokens[j + 1 :])

        if word in ("MODIFY", "CHANGE"):
            j = 2 if nxt == "COLUMN" else 1
            if j >= len(tokens):
                raise DdlSyntaxError(f"{word} without a column")
            if word == "CHANGE":
                if j + 2 >= len(tokens):
                    raise DdlSyntaxError("CHANGE without a column definition")
                old = unquote_identifier(tokens[j].text)
                new = unquote_identifier(tokens[j + 1].text)
                if old != new:
                    table.rename_column(old, new)
                j += 1
            return self._column_def(name, table, action[tokens[j].start :])

        if word == "RENAME":
            return self._alter_rename(name, table, tokens)

        raise DdlSyntaxError(f"unsupported action {_preview(action)!r}")

    def _alter_drop(self, name: str, table: _TableDraft, tokens: list[Token]) -> list[str]:
        words = [t.upper for t in tokens]
        j = 1
        target = words[j] if j < len(words) else ""
        if target == "CONSTRAINT":
            j = 2
            if words[j : j + 2] == ["IF", "EXISTS"]:
                j += 2
            if j >= len(tokens):
                raise DdlSyntaxError("DROP CONSTRAINT without a name")
            return self._drop_constraint(name, table, unquote_identifier(tokens[j].text))
        if target == "PRIMARY" and words[2:3] == ["KEY"]:
            table.primary_key = []
            return []
        if target == "FOREIGN" and words[2:3] == ["KEY"] and len(tokens) > 3:
            return self._drop_constraint(name, table, unquote_identifier(tokens[3].text))
        if target in ("INDEX", "KEY") and len(tokens) > 2:
            index_name = unquote_identifier(tokens[2].text)
            table.indexes = [ix for ix in table.indexes if ix.name != index_name]
            return []
        if target == "COLUMN":
            j = 2
        if words[j : j + 2] == ["IF", "EXISTS"]:
            j += 2
        if j >= len(tokens):
            raise DdlSyntaxError("DROP COLUMN without a column")
        table.drop_column(unquote_identifier(tokens[j].text))
        return []

    @staticmethod
    def _drop_constraint(table_name: str, table: _TableDraft, constraint: str) -> list[str]:
        before = len(table.foreign_keys)
        table.foreign_keys = [
            fk
            for fk in table.foreign_keys
            if (fk.name or f"fk_{table_name}_{'_'.join(fk.columns)}") != constraint
        ]
        if len(table.foreign_keys) != before:
            return []
        if constraint == f"{table_name}_pkey":
            table.primary_key = []
            return []
        for cols in table.unique:
            if constraint == f"{table_name}_{'_'.join(cols)}_key":
                table.unique.remove(cols)
                return []
        return [f"ALTER TABLE {table_name}: constraint {constraint} is not tracked; DROP ignored"]

    def _alter_column(
        self,
        table_name: str,
        column_name: str,
        column: _ColumnDraft,
        action: str,
        tokens: list[Token],
    ) -> list[str]:
        words = [t.upper for t in tokens]
        if words[:1] == ["TYPE"] or words[:3] == ["SET", "DATA", "TYPE"]:
            start = 1 if words[0] == "TYPE" else 3
            end = start
            while end < len(tokens) and words[end] not in ("USING", "COLLATE"):
                end += 1
            if end == start:
                raise DdlSyntaxError(f"missing type for {column_name}")
            column.type = normalize_type(action[tokens[start].start : tokens[end - 1].end])
            return []
        if words[:3] == ["SET", "NOT", "NULL"]:
            column.nullable = False
            return []
        if words[:3] == ["DROP", "NOT", "NULL"]:
            column.nullable = True
            return []
        if words[:2] == ["SET", "DEFAULT"] and len(tokens) > 2:
            column.default = action[tokens[2].start : tokens[-1].end]
            return []
        if words[:2] == ["DROP", "DEFAULT"]:
            column.default = None
            return []
        return [f"{table_name}.{column_name}: ALTER COLUMN {' '.join(words[:3])} ignored"]

    def _alter_rename(self, name: str, table: _TableDraft, tokens: list[Token]) -> list[str]:
        words = [t.upper for t in tokens]
        if words[1:2] == ["TO"] and len(tokens) > 2:
            self._rename_table(name, unquote_identifier(tokens[2].text))
            return []
        if words[1:2] == ["CONSTRAINT"] and len(tokens) > 4:
            old, new = unquote_identifier(tokens[2].text), unquote_identifier(tokens[4].text)
            for fk in table.foreign_keys:
                if (fk.name or f"fk_{name}_{'_'.join(fk.columns)}") == old:
                    fk.name = new
                    return []
            return [f"ALTER TABLE {name}: constraint {old} is not tracked; RENAME ignored"]
        if words[1:2] in (["INDEX"], ["KEY"]) and len(tokens) > 4:
            old, new = unquote_identifier(tokens[2].text), unquote_identifier(tokens[4].text)
            for ix in table.indexes:
                if ix.name == old:
                    ix.name = new
            return []
        j = 2 if words[1:2] == ["COLUMN"] else 1
        if len(tokens) < j + 3 or words[j + 1] != "TO":
            raise DdlSyntaxError("malformed RENAME")
        old, new = unquote_identifier(tokens[j].text), unquote_identifier(tokens[j + 2].text)
        table.rename_column(old, new)
        for other in self.tables.values():
            for fk in other.foreign_keys:
                if fk.ref_table == name:
                    fk.ref_columns = [new if c == old else c for c in fk.ref_columns]
        return []

    def _rename_table(self, old: str, new: str) -> None:
        if old not in self.tables:
            raise DdlSyntaxError(f"table {old} does not exist")
        self.tables[new] = self.tables.pop(old)
        for table in self.tables.values():
            for fk in table.foreign_keys:
                if fk.ref_table == old:
                    fk.ref_table = new

    # ── Indexes ─────────────────────────────────────────────────────────

    @staticmethod
    def _index_columns(inner: str) -> list[str]:
        columns: list[str] = []
        for part in split_top_level(inner):
            words = tokenize(part)
            if len(words) == 1 or (len(words) > 1 and not words[1].is_group):
                try:
                    columns.append(unquote_identifier(words[0].text))
                    continue
                except DdlSyntaxError:
                    pass
            columns.append(part.lower())
        return columns

    @staticmethod
    def _put_index(table_name: str, table: _TableDraft, index: _IndexDraft) -> None:
        if not index.name:
            slug = "_".join(re.sub(r"\W+", "_", c).strip("_") for c in index.columns)
            index.name = f"idx_{table_name}_{slug}"
        table.indexes = [ix for ix in table.indexes if ix.name != index.name]
        table.indexes.append(index)

    def create_index(self, statement: str) -> list[str]:
        tokens = tokenize(statement)
        words = [t.upper for t in tokens]
        unique = words[1] == "UNIQUE"
        i = 3 if unique else 2
        if words[i : i + 1] == ["CONCURRENTLY"]:
            i += 1
        if words[i : i + 3] == ["IF", "NOT", "EXISTS"]:
            i += 3
        index_name = ""
        if i < len(tokens) and words[i] != "ON":
            index_name = unquote_identifier(tokens[i].text)
            i += 1
        if words[i : i + 1] != ["ON"]:
            raise DdlSyntaxError("CREATE INDEX without ON")
        i += 1
        if words[i : i + 1] == ["ONLY"]:
            i += 1
        if i >= len(tokens):
            raise DdlSyntaxError("CREATE INDEX without a table")
        table_name = unquote_identifier(tokens[i].text)
        i += 1
        using = None
        if words[i : i + 1] == ["USING"] and i + 1 < len(tokens):
            using = tokens[i + 1].text.lower()
            i += 2
        if i >= len(tokens) or not tokens[i].is_group:
            raise DdlSyntaxError("CREATE INDEX without a column list")
        columns = self._index_columns(group_inner(tokens[i]))

        table = self.tables.get(table_name)
        if table is None:
            logger.debug("CREATE INDEX on unknown table %s ignored", table_name)
            return []
        self._put_index(table_name, table, _IndexDraft(index_name, columns, unique, using))
        return []

    def drop_index(self, statement: str) -> list[str]:
        on_table = re.search(r"\s+ON\s+(\S+)\s*$", statement, re.IGNORECASE)
        scope = [unquote_identifier(on_table.group(1))] if on_table else list(self.tables)
        if on_table:
            statement = statement[: on_table.start()]
        names, _ = self._drop_targets(statement)
        for table_name in scope:
            table = self.tables.get(table_name)
            if table is not None:
                table.indexes = [ix for ix in table.indexes if ix.name not in names]
        return []

    # ── Types, views, comments ──────────────────────────────────────────

    def create_type(self, statement: str) -> list[str]:
        match = _CREATE_ENUM_RE.match(statement)
        if match is None:
            raise DdlSyntaxError("only CREATE TYPE ... AS ENUM is supported")
        name = unquote_identifier(match["name"])
        self.enums[name] = [unquote_string(v) for v in split_top_level(match["body"])]
        return []

    def alter_type(self, statement: str) -> list[str]:
        tokens = tokenize(statement)
        words = [t.upper for t in tokens]
        if len(tokens) < 4:
            raise DdlSyntaxError("malformed ALTER TYPE")
        name = unquote_identifier(tokens[2].text)
        values = self.enums.get(name)
        if values is None:
            return [f"ALTER TYPE on unknown enum {name} ignored"]
        if words[3:5] == ["ADD", "VALUE"]:
            i = 5
            if words[i : i + 3] == ["IF", "NOT", "EXISTS"]:
                i += 3
            if i >= len(tokens):
                raise DdlSyntaxError("ADD VALUE without a value")
            value = unquote_string(tokens[i].text)
            if value in values:
                return []
            if words[i + 1 : i + 2] in (["BEFORE"], ["AFTER"]) and i + 2 < len(tokens):
                anchor = unquote_string(tokens[i + 2].text)
                if anchor in values:
                    pos = values.index(anchor) + (1 if words[i + 1] == "AFTER" else 0)
                    values.insert(pos, value)
                    return []
            values.append(value)
            return []
        if words[3:5] == ["RENAME", "VALUE"] and len(tokens) > 7:
            old, new = unquote_string(tokens[5].text), unquote_string(tokens[7].text)
            self.enums[name] = [new if v == old else v for v in values]
            return []
        if words[3:5] == ["RENAME", "TO"] and len(tokens) > 5:
            self.enums[unquote_identifier(tokens[5].text)] = self.enums.pop(name)
            return []
        return [f"ALTER TYPE {name}: unsupported action ignored"]

    def drop_type(self, statement: str) -> list[str]:
        names, _ = self._drop_targets(statement)
        for name in names:
            self.enums.pop(name, None)
        return []

    def create_view(self, statement: str) -> list[str]:
        match = _CREATE_VIEW_RE.match(statement)
        if match is None:
            raise DdlSyntaxError("malformed CREATE VIEW")
        body = statement[match.end() :]
        tokens = tokenize(body)
        if not tokens:
            raise DdlSyntaxError("CREATE VIEW without a name")
        name = unquote_identifier(tokens[0].text)
        for token in tokens[1:]:
            if token.upper == "AS":
                self.views[name] = body[token.end :].strip()
                return []
        raise DdlSyntaxError(f"CREATE VIEW {name} without AS")

    def drop_view(self, statement: str) -> list[str]:
        names, _ = self._drop_targets(statement)
        for name in names:
            self.views.pop(name, None)
        return []

    def comment_on(self, statement: str) -> list[str]:
        tokens = tokenize(statement)
        words = [t.upper for t in tokens]
        if len(tokens) < 6 or words[4] != "IS":
            raise DdlSyntaxError("malformed COMMENT ON")
        text = None if words[5] == "NULL" else unquote_string(tokens[5].text)
        target = words[2]
        if target == "TABLE":
            table = self.tables.get(unquote_identifier(tokens[3].text))
            if table is None:
                return [f"COMMENT ON unknown table {tokens[3].text} ignored"]
            table.comment = text
            return []
        if target == "COLUMN":
            parts = identifier_parts(tokens[3].text)
            if len(parts) < 2:
                raise DdlSyntaxError("COMMENT ON COLUMN needs table.column")
            table = self.tables.get(parts[-2])
            column = table.columns.get(parts[-1]) if table else None
            if column is None:
                return [f"COMMENT ON unknown column {tokens[3].text} ignored"]
            column.comment = text
            return []
        return [f"COMMENT ON {target} ignored"]

    # ── Finalization ────────────────────────────────────────────────────

    def finalize(self) -> tuple[CanonicalSchema, list[str]]:
        notes: list[str] = []
        tables: dict[str, Table] = {}
        for name in sorted(self.tables):
            draft = self.tables[name]
            primary_key = list(dict.fromkeys(draft.primary_key))
            for col in primary_key:
                if col in draft.columns:
                    draft.columns[col].nullable = False

            unique_sets = {tuple(dict.fromkeys(cols)) for cols in draft.unique if cols}

            foreign_keys: list[ForeignKey] = []
            for fk in draft.foreign_keys:
                ref_columns = fk.ref_columns
                target = self.tables.get(fk.ref_table)
                if target is None:
                    notes.append(
                        f"{name}({', '.join(fk.columns)}) references unknown table {fk.ref_table}"
                    )
                elif not ref_columns:
                    ref_columns = list(dict.fromkeys(target.primary_key))
                foreign_keys.append(
                    ForeignKey(
                        columns=tuple(fk.columns),
                        ref_table=fk.ref_table,
                        ref_columns=tuple(ref_columns),
                        on_delete=fk.on_delete,
                        on_update=fk.on_update,
                        name=fk.name or f"fk_{name}_{'_'.join(fk.columns)}",
                    )
                )

            tables[name] = Table(
                columns={
                    col: Column(
                        type=c.type, nullable=c.nullable, default=c.default, comment=c.comment
                    )
                    for col, c in sorted(draft.columns.items())
                },
                primary_key=tuple(primary_key),
                unique=tuple(sorted(unique_sets)),
                foreign_keys=tuple(foreign_keys),
                indexes=tuple(
                    Index(name=ix.name, columns=tuple(ix.columns), unique=ix.unique, using=ix.using)
                    for ix in draft.indexes
                ),
                comment=draft.comment,
            )

        schema = CanonicalSchema(
            tables=tables,
            enums={k: tuple(v) for k, v in sorted(self.enums.items())},
            views=dict(sorted(self.views.items())),
        )
        return schema, notes


class DdlReducer:
    """Fold an ordered set of migrations into a :class:`SchemaReport`."""

    def reduce(self, migrations: Sequence[Migration]) -> SchemaReport:
        """Apply *migrations* in name order.

        Raises :class:`NoSchemaExtractedError` when no table survives; the
        warnings gathered so far travel on the exception.
        """
        ordered = sorted(migrations, key=lambda m: m.name)
        fold = _Fold()
        warnings: list[DdlWarning] = []

        for migration in ordered:
            for index, statement in enumerate(split_statements(migration.sql), start=1):
                kind = classify(statement)
                if kind is None:
                    notes = [f"skipped unsupported statement: {_preview(statement)}"]
                else:
                    try:
                        notes = fold.apply(kind, statement)
                    except DdlSyntaxError as exc:
                        notes = [f"{kind.value} failed: {exc}"]
                    except LookupError as exc:
                        logger.warning(
                            "Unexpected failure in %s statement %d", migration.name, index, exc_info=True
                        )
                        notes = [f"{kind.value} failed: {exc!r}"]
                warnings.extend(
                    DdlWarning(migration=migration.name, statement_index=index, message=note)
                    for note in notes
                )

        schema, notes = fold.finalize()
        warnings.extend(
            DdlWarning(migration=FINALIZE, statement_index=0, message=note) for note in notes
        )
        if not schema.tables:
            raise NoSchemaExtractedError(
                f"No tables survived {len(ordered)} migration(s)", warnings=warnings
            )

        logger.info(
            "Reduced %d migrations into %d tables (%d warnings)",
            len(ordered),
            len(schema.tables),
            len(warnings),
        )
        return SchemaReport(
            canonical=schema,
            erd=render_erd(schema),
            final_migration=render_final_migration(schema, migration_count=len(ordered)),
            migrations=tuple(m.name for m in ordered),
            warnings=tuple(warnings),
        )
