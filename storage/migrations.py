"""Versioned schema migrations for the metrics database."""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from core.errors import SchemaError

from .database import Database

logger = logging.getLogger(__name__)

SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     TEXT PRIMARY KEY,
    applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    description TEXT
)
"""

INITIAL_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS metric_definitions (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        name        TEXT NOT NULL UNIQUE,
        type        TEXT NOT NULL CHECK(type IN ('numeric', 'label')),
        unit        TEXT,
        description TEXT,
        created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_metric_name ON metric_definitions(name)",
    """
    CREATE TABLE IF NOT EXISTS build_contexts (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        commit_sha  TEXT NOT NULL,
        branch      TEXT NOT NULL,
        run_id      TEXT NOT NULL,
        run_number  INTEGER NOT NULL,
        actor       TEXT,
        event_name  TEXT,
        timestamp   TEXT NOT NULL,
        created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        UNIQUE(commit_sha, run_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_build_timestamp ON build_contexts(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_build_branch ON build_contexts(branch)",
    "CREATE INDEX IF NOT EXISTS idx_build_commit ON build_contexts(commit_sha)",
    """
    CREATE TABLE IF NOT EXISTS metric_values (
        id                     INTEGER PRIMARY KEY AUTOINCREMENT,
        metric_id              INTEGER NOT NULL REFERENCES metric_definitions(id),
        build_id               INTEGER NOT NULL REFERENCES build_contexts(id),
        value_numeric          REAL,
        value_label            TEXT,
        collected_at           TEXT NOT NULL,
        collection_duration_ms INTEGER,
        UNIQUE(metric_id, build_id),
        CHECK(
            (value_numeric IS NOT NULL AND value_label IS NULL) OR
            (value_numeric IS NULL AND value_label IS NOT NULL)
        )
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_metric_value_metric_time ON metric_values(metric_id, collected_at)",
    "CREATE INDEX IF NOT EXISTS idx_metric_value_build ON metric_values(build_id)",
]

PULL_REQUEST_COLUMNS = (
    ("pull_request_number", "INTEGER"),
    ("pull_request_base", "TEXT"),
    ("pull_request_head", "TEXT"),
)


def _create_initial_schema(db: Database) -> None:
    for statement in INITIAL_SCHEMA:
        db.execute(statement)


def _add_pull_request_columns(db: Database) -> None:
    existing = set(db.table_columns("build_contexts"))
    for column, column_type in PULL_REQUEST_COLUMNS:
        if column not in existing:
            db.execute(f"ALTER TABLE build_contexts ADD COLUMN {column} {column_type}")


@dataclass(frozen=True)
class Migration:
    version: str
    description: str
    apply: Callable[[Database], None]

    @property
    def key(self) -> Tuple[int, ...]:
        return version_key(self.version)


MIGRATIONS: List[Migration] = [
    Migration("1.0.0", "Initial schema", _create_initial_schema),
    Migration("1.1.0", "Add pull request columns to build_contexts", _add_pull_request_columns),
]


def version_key(version: str) -> Tuple[int, ...]:
    try:
        return tuple(int(part) for part in version.split("."))
    except ValueError:
        raise SchemaError(f"Malformed schema version: {version!r}") from None


class SchemaMigrator:
    """Brings a database up to a target schema version.

    The ``schema_version`` table is an append-only ledger; the current version
    is the highest version recorded there. Each migration runs together with
    its ledger row in a single transaction, so a failed step leaves neither
    partial DDL nor a ledger entry behind.
    """

    def __init__(self, migrations: Optional[Sequence[Migration]] = None):
        self.migrations = sorted(migrations if migrations is not None else MIGRATIONS, key=lambda m: m.key)

    @property
    def latest_version(self) -> Optional[str]:
        return self.migrations[-1].version if self.migrations else None

    def applied_versions(self, db: Database) -> List[str]:
        rows = db.fetchall("SELECT version FROM schema_version")
        return sorted((row["version"] for row in rows), key=version_key)

    def current_version(self, db: Database) -> Optional[str]:
        versions = self.applied_versions(db)
        return versions[-1] if versions else None

    @staticmethod
    def _has_ledger(db: Database) -> bool:
        row = db.fetchone("SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'")
        return row is not None

    def ensure(self, db: Database, target_version: Optional[str] = None) -> List[str]:
        """Apply pending migrations up to ``target_version`` (default: latest).

        Returns the versions applied by this call; an already up-to-date
        database yields an empty list and runs no DDL.
        """
        if not self._has_ledger(db):
            db.execute(SCHEMA_VERSION_SQL)

        target = target_version or self.latest_version
        if target is None:
            return []
        if target not in {m.version for m in self.migrations}:
            raise SchemaError(f"Unknown target version: {target}")

        current = self.current_version(db)
        current_key = version_key(current) if current else ()
        target_key = version_key(target)

        applied = []
        for migration in self.migrations:
            if migration.key <= current_key or migration.key > target_key:
                continue
            self._apply(db, migration)
            applied.append(migration.version)

        if applied:
            logger.info(f"Schema migrated to {applied[-1]} ({len(applied)} migration(s) applied)")
        return applied

    @staticmethod
    def _apply(db: Database, migration: Migration) -> None:
        logger.info(f"Applying schema migration {migration.version}: {migration.description}")
        try:
            with db.transaction():
                migration.apply(db)
                db.execute(
                    "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                    [migration.version, migration.description],
                )
        except sqlite3.Error as exc:
            raise SchemaError(f"Migration {migration.version} failed: {exc}") from exc
