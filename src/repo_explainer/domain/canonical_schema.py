"""Canonical database schema value types.

These are produced by the DDL reducer once all migrations have been folded
and are frozen from then on.  Names of tables, columns, enums and types are
always lowercase; string literals (defaults, enum values, comments) keep
their original case.
"""

from __future__ import annotations

import json

from pydantic import BaseModel, ConfigDict


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Column(_Frozen):
    type: str
    nullable: bool = True
    default: str | None = None
    comment: str | None = None


class ForeignKey(_Frozen):
    columns: tuple[str, ...]
    ref_table: str
    ref_columns: tuple[str, ...] = ()
    on_delete: str | None = None
    on_update: str | None = None
    name: str | None = None


class Index(_Frozen):
    name: str
    columns: tuple[str, ...]
    unique: bool = False
    using: str | None = None


class Table(_Frozen):
    columns: dict[str, Column] = {}
    primary_key: tuple[str, ...] = ()
    unique: tuple[tuple[str, ...], ...] = ()
    foreign_keys: tuple[ForeignKey, ...] = ()
    indexes: tuple[Index, ...] = ()
    comment: str | None = None

    def is_unique_column(self, column: str) -> bool:
        return (column,) in self.unique

    def is_foreign_key_column(self, column: str) -> bool:
        return any(column in fk.columns for fk in self.foreign_keys)


class CanonicalSchema(_Frozen):
    """Tables, enums and views left after every migration has been applied."""

    tables: dict[str, Table] = {}
    enums: dict[str, tuple[str, ...]] = {}
    views: dict[str, str] = {}

    def table(self, name: str) -> Table | None:
        return self.tables.get(name.lower())

    def canonical_json(self) -> str:
        """Byte-stable JSON serialization used for equality and hashing."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, indent=2)


class DdlWarning(_Frozen):
    """A statement that could not be applied, or a finalization finding."""

    migration: str
    statement_index: int  # 1-based; 0 for findings made during finalization
    message: str

    def __str__(self) -> str:
        if self.statement_index:
            return f"{self.migration} [statement {self.statement_index}]: {self.message}"
        return f"{self.migration}: {self.message}"


class SchemaReport(_Frozen):
    """Everything the schema stage hands back to the pipeline."""

    canonical: CanonicalSchema
    erd: str
    final_migration: str
    migrations: tuple[str, ...] = ()
    warnings: tuple[DdlWarning, ...] = ()
