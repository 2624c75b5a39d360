"""Tests for the migration runner helpers and the shipped schema."""

from pathlib import Path

from gallery.db.schema.migrate import MIGRATIONS_DIR, pending_migrations, split_sql_statements


class TestSplitStatements:
    def test_splits_on_semicolons(self):
        sql = "CREATE TABLE a (id INT);\nCREATE TABLE b (id INT);"
        assert split_sql_statements(sql) == [
            "CREATE TABLE a (id INT);",
            "CREATE TABLE b (id INT);",
        ]

    def test_ignores_semicolons_in_strings_and_dollar_quotes(self):
        sql = (
            "INSERT INTO t VALUES ('a;b');\n"
            "CREATE FUNCTION f() RETURNS void AS $$ BEGIN PERFORM 1; END $$ LANGUAGE plpgsql;"
        )
        statements = split_sql_statements(sql)

        assert len(statements) == 2
        assert statements[0] == "INSERT INTO t VALUES ('a;b');"
        assert "PERFORM 1; END" in statements[1]

    def test_strips_comments_and_keeps_trailing_statement(self):
        sql = "-- header; not a statement\n/* block; */SELECT 1;\nSELECT 2"
        assert split_sql_statements(sql) == ["SELECT 1;", "SELECT 2"]


class TestPendingMigrations:
    def test_orders_and_skips_applied(self, tmp_path: Path):
        for name in ("010_later.sql", "002_second.sql", "001_first.sql", "notes.sql"):
            (tmp_path / name).write_text("SELECT 1;")

        pending = pending_migrations(tmp_path, applied={1})

        assert [(v, p.name) for v, p in pending] == [(2, "002_second.sql"), (10, "010_later.sql")]


class TestShippedSchema:
    def test_initial_migration_present(self):
        pending = pending_migrations(MIGRATIONS_DIR, applied=set())
        assert pending[0][0] == 1

    def test_idempotency_constraints_declared(self):
        sql = (MIGRATIONS_DIR / "001_initial.sql").read_text()

        assert "purchase_records_payment_reference_key UNIQUE (payment_reference)" in sql
        assert "lifetime_grants_payment_reference_key UNIQUE (payment_reference)" in sql
        assert "lifetime_grants_active_purchaser_idx" in sql
        assert len(split_sql_statements(sql)) == 5
