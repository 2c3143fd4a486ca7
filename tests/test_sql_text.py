"""Tests for SQL splitting, classification and identifier handling."""

from __future__ import annotations

import pytest

from repo_explainer.services.sql_text import (
    DdlSyntaxError,
    StatementKind,
    classify,
    identifier_list,
    identifier_parts,
    quote_identifier,
    split_statements,
    split_top_level,
    tokenize,
)


def test_split_strips_comments_and_collapses_whitespace() -> None:
    sql = """
    -- users table
    CREATE TABLE users (
        id INT  PRIMARY KEY /* surrogate */
    );
    /* trailing block */ DROP TABLE old;
    """

    assert split_statements(sql) == [
        "CREATE TABLE users ( id INT PRIMARY KEY )",
        "DROP TABLE old",
    ]


def test_semicolons_inside_strings_and_parentheses_do_not_split() -> None:
    sql = "INSERT INTO t VALUES ('a;b'); CREATE TABLE x (note TEXT DEFAULT 'x;y', c INT);"

    statements = split_statements(sql)

    assert len(statements) == 2
    assert statements[0] == "INSERT INTO t VALUES ('a;b')"


def test_dollar_quoted_bodies_are_opaque() -> None:
    sql = (
        "CREATE FUNCTION f() RETURNS trigger AS $$ BEGIN NEW.x := 1; RETURN NEW; END; $$ "
        "LANGUAGE plpgsql; CREATE TABLE t (id INT);"
    )

    statements = split_statements(sql)

    assert len(statements) == 2
    assert statements[1] == "CREATE TABLE t (id INT)"


@pytest.mark.parametrize(
    ("statement", "kind"),
    [
        ("create table users (id int)", StatementKind.CREATE_TABLE),
        ("CREATE TEMPORARY TABLE t (a int)", StatementKind.CREATE_TABLE),
        ("ALTER TABLE users ADD COLUMN age INT", StatementKind.ALTER_TABLE),
        ("CREATE UNIQUE INDEX i ON t (a)", StatementKind.CREATE_INDEX),
        ("CREATE TYPE role AS ENUM ('a')", StatementKind.CREATE_TYPE),
        ("CREATE OR REPLACE VIEW v AS SELECT 1", StatementKind.CREATE_VIEW),
        ("DROP MATERIALIZED VIEW v", StatementKind.DROP_VIEW),
        ("COMMENT ON TABLE t IS 'x'", StatementKind.COMMENT),
        ("INSERT INTO t VALUES (1)", None),
        ("CREATE EXTENSION pgcrypto", None),
    ],
)
def test_classify(statement: str, kind: StatementKind | None) -> None:
    assert classify(statement) is kind


def test_split_top_level_respects_nesting() -> None:
    assert split_top_level("a INT, b NUMERIC(10, 2), c TEXT DEFAULT 'x,y'") == [
        "a INT",
        "b NUMERIC(10, 2)",
        "c TEXT DEFAULT 'x,y'",
    ]


def test_tokenize_keeps_groups_and_qualified_names_whole() -> None:
    tokens = tokenize('"public"."Users" (id INT, name TEXT) WITH (fillfactor=70)')

    assert [t.text for t in tokens] == [
        '"public"."Users"',
        "(id INT, name TEXT)",
        "WITH",
        "(fillfactor=70)",
    ]
    assert tokens[1].is_group


def test_identifiers_are_unquoted_and_lowercased() -> None:
    assert identifier_parts('public."Users"') == ["public", "users"]
    assert identifier_parts("`Orders`") == ["orders"]
    assert identifier_parts("[dbo].[Items]") == ["dbo", "items"]
    assert identifier_list('a, "B", c DESC') == ["a", "b", "c"]
    with pytest.raises(DdlSyntaxError):
        identifier_parts('"unterminated')


def test_quote_identifier_only_when_needed() -> None:
    assert quote_identifier("users") == "users"
    assert quote_identifier("user") == '"user"'
    assert quote_identifier("Mixed Case") == '"Mixed Case"'
