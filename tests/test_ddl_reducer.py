"""Tests for folding migrations into a canonical schema."""

from __future__ import annotations

import random

import pytest

from repo_explainer.domain.entities import Migration
from repo_explainer.domain.exceptions import NoSchemaExtractedError
from repo_explainer.services.ddl_reducer import FINALIZE, DdlReducer, normalize_type
from repo_explainer.services.schema_render import dependency_order

BLOG_SQL = """
CREATE TYPE role AS ENUM ('admin', 'editor');
CREATE TABLE users (
    id SERIAL PRIMARY KEY,
    email VARCHAR(255) NOT NULL UNIQUE,
    role role DEFAULT 'editor',
    created_at TIMESTAMP DEFAULT now()
);
CREATE TABLE posts (
    id BIGINT PRIMARY KEY,
    author_id INT REFERENCES users(id) ON DELETE CASCADE,
    title TEXT NOT NULL
);
CREATE INDEX idx_posts_author ON posts (author_id);
COMMENT ON TABLE posts IS 'Blog posts';
CREATE VIEW recent_posts AS SELECT * FROM posts;
"""


def reduce(*migrations: tuple[str, str]):
    return DdlReducer().reduce([Migration(name=name, sql=sql) for name, sql in migrations])


# ── Scenarios ───────────────────────────────────────────────────────────────


def test_minimal_migration() -> None:
    report = reduce(
        ("001_init.sql", "CREATE TABLE users (id UUID PRIMARY KEY, email TEXT UNIQUE NOT NULL);")
    )

    users = report.canonical.tables["users"]
    assert list(report.canonical.tables) == ["users"]
    assert users.primary_key == ("id",)
    assert users.unique == (("email",),)
    assert not users.columns["id"].nullable
    assert "  users {" in report.erd
    assert "    uuid id PK" in report.erd
    assert "    text email UK" in report.erd
    assert "||--o{" not in report.erd


def test_forward_foreign_key_resolves_at_finalization() -> None:
    report = reduce(
        ("001_a.sql", "CREATE TABLE orders (id INT PRIMARY KEY, user_id INT);"),
        (
            "002_b.sql",
            "ALTER TABLE orders ADD CONSTRAINT fk_u FOREIGN KEY (user_id) REFERENCES users(id);",
        ),
        ("003_c.sql", "CREATE TABLE users (id INT PRIMARY KEY);"),
    )

    assert set(report.canonical.tables) == {"orders", "users"}
    (fk,) = report.canonical.tables["orders"].foreign_keys
    assert (fk.columns, fk.ref_table, fk.ref_columns, fk.name) == (
        ("user_id",),
        "users",
        ("id",),
        "fk_u",
    )
    assert '  users ||--o{ orders : "user_id -> users.id"' in report.erd
    assert report.warnings == ()


def test_drop_then_recreate_keeps_only_the_new_definition() -> None:
    report = reduce(
        ("001.sql", "CREATE TABLE t (a INT);"),
        ("002.sql", "DROP TABLE t;"),
        ("003.sql", "CREATE TABLE t (b TEXT);"),
    )

    columns = report.canonical.tables["t"].columns
    assert list(columns) == ["b"]
    assert columns["b"].type == "text"


def test_enum_values_keep_their_order() -> None:
    report = reduce(
        ("001.sql", "CREATE TYPE role AS ENUM ('admin','user','guest'); CREATE TABLE t (r role);")
    )

    assert report.canonical.enums["role"] == ("admin", "user", "guest")


# ── Ordering and determinism ────────────────────────────────────────────────


def test_migrations_apply_in_name_order_regardless_of_input_order() -> None:
    migrations = [
        Migration("20240101_create.sql", "CREATE TABLE a (x INT);"),
        Migration("20240102_add.sql", "ALTER TABLE a ADD COLUMN y TEXT;"),
        Migration("20240103_drop.sql", "ALTER TABLE a DROP COLUMN x;"),
        Migration("20240104_b.sql", "CREATE TABLE b (id INT PRIMARY KEY, a_y TEXT);"),
    ]
    expected = DdlReducer().reduce(migrations).canonical.canonical_json()

    rng = random.Random(7)
    for _ in range(5):
        shuffled = migrations[:]
        rng.shuffle(shuffled)
        assert DdlReducer().reduce(shuffled).canonical.canonical_json() == expected

    assert list(DdlReducer().reduce(migrations).canonical.tables["a"].columns) == ["y"]


def test_erd_has_one_node_per_table_and_one_edge_per_single_column_fk() -> None:
    report = reduce(("001_blog.sql", BLOG_SQL))

    nodes = [line for line in report.erd.splitlines() if line.endswith(" {")]
    edges = [line for line in report.erd.splitlines() if "||--o{" in line]
    assert len(nodes) == len(report.canonical.tables) == 2
    assert edges == ['  users ||--o{ posts : "author_id -> users.id"']


def test_final_migration_round_trips() -> None:
    report = reduce(("001_blog.sql", BLOG_SQL))

    again = reduce(("999_final.sql", report.final_migration))

    assert again.canonical == report.canonical
    assert again.canonical.canonical_json() == report.canonical.canonical_json()
    assert again.warnings == ()


def test_final_migration_lists_referenced_tables_first() -> None:
    report = reduce(("001_blog.sql", BLOG_SQL))

    sql = report.final_migration
    assert sql.index("CREATE TABLE users") < sql.index("CREATE TABLE posts")
    assert sql.index("-- ENUMS") < sql.index("-- TABLES") < sql.index("-- INDEXES")
    assert sql.rstrip().endswith("-- MIGRATION COMPLETE")
    assert dependency_order(report.canonical) == ["users", "posts"]


def test_dependency_order_breaks_cycles_alphabetically() -> None:
    report = reduce(
        (
            "001.sql",
            "CREATE TABLE a (id INT PRIMARY KEY, b_id INT REFERENCES b(id));"
            "CREATE TABLE b (id INT PRIMARY KEY, a_id INT REFERENCES a(id));"
            "CREATE TABLE c (id INT PRIMARY KEY);",
        )
    )

    assert dependency_order(report.canonical) == ["c", "a", "b"]


# ── Statement coverage ──────────────────────────────────────────────────────


def test_blog_schema_details() -> None:
    schema = reduce(("001_blog.sql", BLOG_SQL)).canonical

    users, posts = schema.tables["users"], schema.tables["posts"]
    assert users.columns["email"].type == "varchar(255)"
    assert users.columns["created_at"].default == "now()"
    assert users.columns["role"].default == "'editor'"
    (fk,) = posts.foreign_keys
    assert fk.on_delete == "CASCADE"
    assert fk.name == "fk_posts_author_id"
    assert posts.indexes[0].name == "idx_posts_author"
    assert posts.comment == "Blog posts"
    assert schema.views["recent_posts"] == "SELECT * FROM posts"


def test_alter_table_operations() -> None:
    report = reduce(
        ("001.sql", "CREATE TABLE accounts (id INT, name TEXT, email TEXT, UNIQUE (email));"),
        (
            "002.sql",
            "ALTER TABLE accounts ADD PRIMARY KEY (id);"
            "ALTER TABLE accounts ALTER COLUMN name TYPE VARCHAR (100);"
            "ALTER TABLE accounts ALTER COLUMN name SET NOT NULL;"
            "ALTER TABLE accounts ALTER COLUMN name SET DEFAULT 'anon';"
            "ALTER TABLE accounts RENAME COLUMN email TO contact;",
        ),
        ("003.sql", "ALTER TABLE accounts DROP COLUMN contact;"),
        ("004.sql", "ALTER TABLE accounts RENAME TO members;"),
    )

    assert "accounts" not in report.canonical.tables
    members = report.canonical.tables["members"]
    assert members.primary_key == ("id",)
    assert members.unique == ()
    assert list(members.columns) == ["id", "name"]
    name = members.columns["name"]
    assert (name.type, name.nullable, name.default) == ("varchar(100)", False, "'anon'")


def test_drop_constraint_removes_a_named_foreign_key() -> None:
    report = reduce(
        ("001.sql", "CREATE TABLE users (id INT PRIMARY KEY);"),
        (
            "002.sql",
            "CREATE TABLE orders (id INT, user_id INT, "
            "CONSTRAINT fk_orders_user FOREIGN KEY (user_id) REFERENCES users (id));",
        ),
        ("003.sql", "ALTER TABLE orders DROP CONSTRAINT fk_orders_user;"),
        ("004.sql", "ALTER TABLE orders DROP CONSTRAINT chk_positive;"),
    )

    assert report.canonical.tables["orders"].foreign_keys == ()
    assert [(w.migration, w.statement_index) for w in report.warnings] == [("004.sql", 1)]
    assert "chk_positive" in report.warnings[0].message


def test_change_without_a_definition_is_a_warning() -> None:
    report = reduce(
        ("001.sql", "CREATE TABLE t (a INT);"),
        ("002.sql", "ALTER TABLE t CHANGE a;"),
        ("003.sql", "ALTER TABLE t CHANGE a b BIGINT;"),
    )

    assert list(report.canonical.tables["t"].columns) == ["b"]
    assert [(w.migration, w.statement_index) for w in report.warnings] == [("002.sql", 1)]
    assert "CHANGE without a column definition" in report.warnings[0].message


def test_chained_renames_follow_the_new_name() -> None:
    report = reduce(
        ("001.sql", "CREATE TABLE a (id INT);"),
        ("002.sql", "ALTER TABLE a RENAME TO b, RENAME TO c, ADD COLUMN note TEXT;"),
    )

    assert list(report.canonical.tables) == ["c"]
    assert list(report.canonical.tables["c"].columns) == ["id", "note"]
    assert report.warnings == ()


def test_alter_on_a_future_table_creates_it_implicitly() -> None:
    report = reduce(
        ("001.sql", "ALTER TABLE audit ADD COLUMN actor TEXT;"),
        ("002.sql", "CREATE TABLE audit (id INT PRIMARY KEY);"),
    )

    assert list(report.canonical.tables["audit"].columns) == ["actor", "id"]


def test_indexes_create_and_drop() -> None:
    report = reduce(
        (
            "001.sql",
            "CREATE TABLE t (a INT, b TEXT);"
            "CREATE UNIQUE INDEX CONCURRENTLY IF NOT EXISTS t_a ON public.t USING btree (a);"
            "CREATE INDEX ON t (lower(b));"
            "CREATE INDEX idx_missing ON nowhere (x);",
        ),
        ("002.sql", "DROP INDEX IF EXISTS t_a;"),
    )

    (index,) = report.canonical.tables["t"].indexes
    assert index.columns == ("lower(b)",)
    assert index.name.startswith("idx_t_")


def test_alter_type_adds_enum_values() -> None:
    report = reduce(
        (
            "001.sql",
            "CREATE TYPE mood AS ENUM ('sad', 'happy');"
            "ALTER TYPE mood ADD VALUE 'ok' BEFORE 'happy';"
            "CREATE TABLE t (m mood);",
        )
    )

    assert report.canonical.enums["mood"] == ("sad", "ok", "happy")


def test_quoted_and_schema_qualified_names_are_normalized() -> None:
    report = reduce(("001.sql", 'CREATE TABLE "Public"."Users" ("ID" INT PRIMARY KEY);'))

    assert list(report.canonical.tables) == ["users"]
    assert report.canonical.tables["users"].primary_key == ("id",)


def test_mysql_inline_keys_and_comments() -> None:
    report = reduce(
        (
            "001.sql",
            "CREATE TABLE `items` (`id` INT AUTO_INCREMENT PRIMARY KEY, "
            "`sku` VARCHAR(32) COMMENT 'stock unit', UNIQUE KEY `uk_sku` (`sku`), "
            "KEY `idx_sku` (`sku`)) ENGINE=InnoDB;",
        )
    )

    items = report.canonical.tables["items"]
    assert items.columns["sku"].comment == "stock unit"
    assert items.unique == (("sku",),)
    assert [ix.name for ix in items.indexes] == ["idx_sku"]


# ── Failure model ───────────────────────────────────────────────────────────


def test_bad_statements_become_warnings_with_location() -> None:
    report = reduce(
        (
            "001.sql",
            "CREATE TABLE ok (id INT);"
            "INSERT INTO ok VALUES (1);"
            "CREATE TABLE broken;",
        )
    )

    assert list(report.canonical.tables) == ["ok"]
    located = [(w.migration, w.statement_index) for w in report.warnings]
    assert located == [("001.sql", 2), ("001.sql", 3)]
    assert str(report.warnings[0]).startswith("001.sql [statement 2]:")


def test_unknown_reference_is_reported_at_finalization() -> None:
    report = reduce(("001.sql", "CREATE TABLE t (id INT, g INT REFERENCES ghosts(id));"))

    assert [w.migration for w in report.warnings] == [FINALIZE]
    assert "ghosts" in report.warnings[0].message


def test_no_surviving_table_raises_with_warnings() -> None:
    with pytest.raises(NoSchemaExtractedError) as info:
        reduce(("001.sql", "CREATE TABLE t (id INT); DROP TABLE t; SELECT 1;"))

    assert len(info.value.warnings) == 1


@pytest.mark.parametrize(
    ("raw", "normalized"),
    [
        ("NUMERIC (10, 2)", "numeric(10,2)"),
        ('"Timestamp"  WITH   TIME ZONE', "timestamp with time zone"),
        ("INT[]", "int[]"),
    ],
)
def test_normalize_type(raw: str, normalized: str) -> None:
    assert normalize_type(raw) == normalized
