"""Tests for versioned schema migrations."""

import pytest

from core.errors import SchemaError
from storage.database import Database
from storage.migrations import MIGRATIONS, Migration, SchemaMigrator, version_key


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "migrations.db")
    yield database
    database.close()


def ledger(db):
    return [row["version"] for row in db.fetchall("SELECT version FROM schema_version ORDER BY version")]


class TestSchemaMigrator:
    def test_fresh_database_gets_every_migration(self, db):
        applied = SchemaMigrator().ensure(db)

        assert applied == [m.version for m in MIGRATIONS]
        assert SchemaMigrator().current_version(db) == MIGRATIONS[-1].version
        assert "pull_request_number" in db.table_columns("build_contexts")

    def test_ensure_twice_is_a_no_op(self, db):
        migrator = SchemaMigrator()
        migrator.ensure(db)
        assert migrator.ensure(db) == []

        versions = ledger(db)
        assert len(versions) == len(set(versions)) == len(MIGRATIONS)

    def test_up_to_date_database_runs_no_ddl(self, db):
        migrator = SchemaMigrator()
        migrator.ensure(db)

        statements = []
        db.conn.set_trace_callback(statements.append)
        try:
            assert migrator.ensure(db) == []
        finally:
            db.conn.set_trace_callback(None)

        assert statements
        writes = [s for s in statements if s.lstrip().upper().startswith(("CREATE", "ALTER", "INSERT", "DROP"))]
        assert writes == []

    def test_target_version_stops_early(self, db):
        migrator = SchemaMigrator()
        assert migrator.ensure(db, target_version="1.0.0") == ["1.0.0"]
        assert "pull_request_number" not in db.table_columns("build_contexts")

        assert migrator.ensure(db) == ["1.1.0"]
        assert set(db.table_columns("build_contexts")) >= {
            "pull_request_number", "pull_request_base", "pull_request_head"
        }

    def test_lower_target_does_nothing(self, db):
        migrator = SchemaMigrator()
        migrator.ensure(db)
        assert migrator.ensure(db, target_version="1.0.0") == []
        assert migrator.current_version(db) == "1.1.0"

    def test_unknown_target(self, db):
        with pytest.raises(SchemaError, match="Unknown target version"):
            SchemaMigrator().ensure(db, target_version="9.9.9")

    def test_pull_request_columns_added_only_when_missing(self, db):
        migrator = SchemaMigrator()
        migrator.ensure(db, target_version="1.0.0")
        db.execute("ALTER TABLE build_contexts ADD COLUMN pull_request_number INTEGER")

        assert migrator.ensure(db) == ["1.1.0"]
        assert db.table_columns("build_contexts").count("pull_request_number") == 1

    def test_failed_migration_rolls_back_and_is_not_recorded(self, db):
        def broken(database):
            database.execute("CREATE TABLE half_done (id INTEGER)")
            database.execute("CREATE TABLE broken (")

        migrator = SchemaMigrator([*MIGRATIONS, Migration("2.0.0", "Broken step", broken)])

        with pytest.raises(SchemaError, match="Migration 2.0.0 failed"):
            migrator.ensure(db)

        assert "2.0.0" not in ledger(db)
        assert migrator.current_version(db) == "1.1.0"
        assert db.table_columns("half_done") == []

    def test_empty_ledger_means_before_first_migration(self, db):
        migrator = SchemaMigrator()
        db.execute("CREATE TABLE IF NOT EXISTS schema_version (version TEXT PRIMARY KEY, applied_at TEXT, description TEXT)")
        assert migrator.current_version(db) is None


class TestVersionKey:
    def test_numeric_ordering(self):
        assert version_key("1.10.0") > version_key("1.9.0")
        assert sorted(["1.10.0", "1.2.0", "1.9.1"], key=version_key) == ["1.2.0", "1.9.1", "1.10.0"]

    def test_migrations_sorted_numerically(self):
        noop = lambda db: None
        migrator = SchemaMigrator([Migration("1.10.0", "b", noop), Migration("1.9.0", "a", noop)])
        assert [m.version for m in migrator.migrations] == ["1.9.0", "1.10.0"]
        assert migrator.latest_version == "1.10.0"

    def test_malformed_version(self):
        with pytest.raises(SchemaError):
            version_key("1.x")
