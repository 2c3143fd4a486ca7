"""Text renderings of a finalized :class:`CanonicalSchema`.

``render_erd`` produces a Mermaid ``erDiagram``; ``render_final_migration``
produces one consolidated SQL script that, fed back through the reducer,
yields the same schema.
"""

from __future__ import annotations

import re

import networkx as nx

from repo_explainer.domain.canonical_schema import CanonicalSchema, ForeignKey, Table
from repo_explainer.services.sql_text import quote_identifier, quote_string

_EXPRESSION_RE = re.compile(r"[()\s]")


# ── ERD ─────────────────────────────────────────────────────────────────────


def _erd_type(col_type: str) -> str:
    cleaned = re.sub(r"\W+", "_", col_type.replace("[]", "_array")).strip("_")
    return cleaned or "unknown"


def render_erd(schema: CanonicalSchema) -> str:
    lines = ["erDiagram"]
    edges: list[str] = []
    for name in sorted(schema.tables):
        table = schema.tables[name]
        lines.append(f"  {name} {{")
        for col_name in sorted(table.columns):
            marks = []
            if col_name in table.primary_key:
                marks.append("PK")
            if table.is_unique_column(col_name):
                marks.append("UK")
            if table.is_foreign_key_column(col_name):
                marks.append("FK")
            suffix = f" {','.join(marks)}" if marks else ""
            lines.append(f"    {_erd_type(table.columns[col_name].type)} {col_name}{suffix}")
        lines.append("  }")

        for fk in table.foreign_keys:
            if len(fk.columns) == 1 and len(fk.ref_columns) == 1:
                edges.append(
                    f'  {fk.ref_table} ||--o{{ {name} : '
                    f'"{fk.columns[0]} -> {fk.ref_table}.{fk.ref_columns[0]}"'
                )
    return "\n".join(lines + edges) + "\n"


# ── Final migration ─────────────────────────────────────────────────────────


def dependency_order(schema: CanonicalSchema) -> list[str]:
    """Tables ordered so referenced tables come first.

    Each round takes every table whose remaining dependencies are satisfied,
    alphabetically.  When a cycle leaves no such table, the alphabetically
    first remaining table is taken to break it.
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(schema.tables)
    for name, table in schema.tables.items():
        for fk in table.foreign_keys:
            if fk.ref_table in schema.tables and fk.ref_table != name:
                graph.add_edge(fk.ref_table, name)

    order: list[str] = []
    remaining = set(graph.nodes)
    while remaining:
        pending = graph.subgraph(remaining)
        ready = sorted(n for n in remaining if pending.in_degree(n) == 0)
        if not ready:
            ready = [min(remaining)]
        order.extend(ready)
        remaining.difference_update(ready)
    return order


def _columns(cols: tuple[str, ...]) -> str:
    return ", ".join(quote_identifier(c) for c in cols)


def _index_column(col: str) -> str:
    return col if _EXPRESSION_RE.search(col) else quote_identifier(col)


def _foreign_key(fk: ForeignKey) -> str:
    parts = []
    if fk.name:
        parts.append(f"CONSTRAINT {quote_identifier(fk.name)}")
    parts.append(f"FOREIGN KEY ({_columns(fk.columns)}) REFERENCES {quote_identifier(fk.ref_table)}")
    if fk.ref_columns:
        parts.append(f"({_columns(fk.ref_columns)})")
    if fk.on_delete:
        parts.append(f"ON DELETE {fk.on_delete}")
    if fk.on_update:
        parts.append(f"ON UPDATE {fk.on_update}")
    return " ".join(parts)


def _create_table(name: str, table: Table) -> list[str]:
    items = []
    for col_name in sorted(table.columns):
        column = table.columns[col_name]
        item = f"{quote_identifier(col_name)} {column.type}"
        if column.default is not None:
            item += f" DEFAULT {column.default}"
        if not column.nullable:
            item += " NOT NULL"
        items.append(item)
    if table.primary_key:
        items.append(f"PRIMARY KEY ({_columns(table.primary_key)})")
    items.extend(f"UNIQUE ({_columns(cols)})" for cols in table.unique)
    items.extend(_foreign_key(fk) for fk in table.foreign_keys)

    lines = [f"CREATE TABLE {quote_identifier(name)} ("]
    lines.append(",\n".join(f"    {item}" for item in items))
    lines.append(");")

    if table.comment is not None:
        lines.append(f"COMMENT ON TABLE {quote_identifier(name)} IS {quote_string(table.comment)};")
    for col_name in sorted(table.columns):
        comment = table.columns[col_name].comment
        if comment is not None:
            lines.append(
                f"COMMENT ON COLUMN {quote_identifier(name)}.{quote_identifier(col_name)} "
                f"IS {quote_string(comment)};"
            )
    return lines


def render_final_migration(schema: CanonicalSchema, *, migration_count: int = 0) -> str:
    """Consolidated SQL for *schema*: enums, tables, indexes, then views."""
    out = [
        "-- Final consolidated migration",
        f"-- Source migrations: {migration_count}",
        f"-- Tables: {len(schema.tables)}  Enums: {len(schema.enums)}  Views: {len(schema.views)}",
        "",
    ]

    if schema.enums:
        out.append("-- ENUMS")
        for name in sorted(schema.enums):
            values = ", ".join(quote_string(v) for v in schema.enums[name])
            out.append(f"CREATE TYPE {quote_identifier(name)} AS ENUM ({values});")
        out.append("")

    out.append("-- TABLES")
    for name in dependency_order(schema):
        out.extend(_create_table(name, schema.tables[name]))
        out.append("")

    index_lines = []
    for name in sorted(schema.tables):
        for index in schema.tables[name].indexes:
            unique = "UNIQUE " if index.unique else ""
            using = f" USING {index.using}" if index.using else ""
            cols = ", ".join(_index_column(c) for c in index.columns)
            index_lines.append(
                f"CREATE {unique}INDEX {quote_identifier(index.name)} "
                f"ON {quote_identifier(name)}{using} ({cols});"
            )
    if index_lines:
        out.append("-- INDEXES")
        out.extend(index_lines)
        out.append("")

    if schema.views:
        out.append("-- VIEWS")
        for name in sorted(schema.views):
            out.append(f"CREATE VIEW {quote_identifier(name)} AS {schema.views[name]};")
        out.append("")

    out.append("-- MIGRATION COMPLETE")
    return "\n".join(out) + "\n"
