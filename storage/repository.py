"""Repository pattern for metrics, builds and baseline queries."""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from core.errors import StorageError

from .database import Database
from .models import (
    BuildContext,
    BuildContextInput,
    CollectedMetric,
    MetricDefinition,
    MetricDefinitionInput,
    MetricValue,
    TimeSeriesPoint,
    to_db_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

BASELINE_EVENT = "push"


class MetricsRepository:
    """Domain operations on the metrics database.

    The repository is the only writer of domain rows. Reads that find nothing
    return ``None`` or an empty list rather than raising.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    # ── Write path ────────────────────────────────────────────────────

    def record_build(self, build_context: BuildContextInput, metrics: Sequence[CollectedMetric]) -> int:
        """Insert a build and all of its metric values atomically. Returns the build id."""
        for metric in metrics:
            metric.validate()

        try:
            with self.db.transaction():
                build_id = self._insert_build_context(build_context)
                for metric in metrics:
                    definition = self._upsert_metric_definition(metric.definition)
                    self._upsert_metric_value(definition.id, build_id, metric)
        except sqlite3.Error as e:
            if isinstance(e, sqlite3.IntegrityError) and "build_contexts.commit_sha" in str(e):
                raise StorageError.duplicate_build(build_context.commit_sha, build_context.run_id) from e
            raise StorageError.write_failed(
                f"Failed to record build {build_context.commit_sha[:8]}: {e}",
                commit_sha=build_context.commit_sha,
                run_id=build_context.run_id,
            ) from e

        logger.info(
            f"Recorded build {build_id} ({build_context.commit_sha[:8]} on {build_context.branch}) "
            f"with {len(metrics)} metric(s)"
        )
        return build_id

    def _insert_build_context(self, ctx: BuildContextInput) -> int:
        row = self.db.fetchall(
            """INSERT INTO build_contexts (
                commit_sha, branch, run_id, run_number, actor, event_name, timestamp,
                pull_request_number, pull_request_base, pull_request_head
            ) VALUES (?,?,?,?,?,?,?,?,?,?)
            RETURNING id""",
            [
                ctx.commit_sha, ctx.branch, str(ctx.run_id), int(ctx.run_number),
                ctx.actor, ctx.event_name, to_db_timestamp(ctx.timestamp),
                ctx.pull_request_number, ctx.pull_request_base, ctx.pull_request_head,
            ],
        )[0]
        return row["id"]

    def _upsert_metric_definition(self, definition: MetricDefinitionInput) -> MetricDefinition:
        # The name is the immutable key and the type never changes after
        # creation; later observations only refresh unit and description.
        row = self.db.fetchall(
            """INSERT INTO metric_definitions (name, type, unit, description)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(name) DO UPDATE SET
                   unit = excluded.unit,
                   description = excluded.description
               RETURNING id, name, type, unit, description, created_at""",
            [definition.name, definition.type, definition.unit, definition.description],
        )[0]
        stored = MetricDefinition.from_row(row)
        if stored.type != definition.type:
            raise ValueError(
                f"Metric '{definition.name}' is stored as {stored.type}, cannot record it as {definition.type}"
            )
        return stored

    def _upsert_metric_value(self, metric_id: int, build_id: int, metric: CollectedMetric) -> int:
        row = self.db.fetchall(
            """INSERT INTO metric_values (
                metric_id, build_id, value_numeric, value_label, collected_at, collection_duration_ms
            ) VALUES (?,?,?,?,?,?)
            ON CONFLICT(metric_id, build_id) DO UPDATE SET
                value_numeric = excluded.value_numeric,
                value_label = excluded.value_label,
                collected_at = excluded.collected_at,
                collection_duration_ms = excluded.collection_duration_ms
            RETURNING id""",
            [
                metric_id, build_id,
                None if metric.value_numeric is None else float(metric.value_numeric),
                metric.value_label,
                to_db_timestamp(metric.collected_at),
                metric.collection_duration_ms,
            ],
        )[0]
        return row["id"]

    # ── Baseline and pull request lookups ─────────────────────────────

    def get_baseline_metric_values(
        self,
        metric_name: str,
        reference_branch: str,
        max_builds: int = 20,
        max_age_days: int = 90,
    ) -> List[MetricValue]:
        """Numeric values of a metric from recent push builds on the reference branch, newest first."""
        cutoff = to_db_timestamp(self.clock() - timedelta(days=max_age_days))
        rows = self.db.fetchall(
            """SELECT mv.*, md.name AS metric_name
               FROM metric_values mv
               JOIN metric_definitions md ON md.id = mv.metric_id
               JOIN build_contexts bc ON bc.id = mv.build_id
               WHERE md.name = ?
                 AND bc.branch = ?
                 AND bc.event_name = ?
                 AND bc.timestamp >= ?
                 AND mv.value_numeric IS NOT NULL
               ORDER BY bc.timestamp DESC, bc.id DESC
               LIMIT ?""",
            [metric_name, reference_branch, BASELINE_EVENT, cutoff, max_builds],
        )
        return [MetricValue.from_row(row) for row in rows]

    def get_pull_request_metric_value(self, metric_name: str, build_id: int) -> Optional[float]:
        row = self.db.fetchone(
            """SELECT mv.value_numeric
               FROM metric_values mv
               JOIN metric_definitions md ON md.id = mv.metric_id
               WHERE md.name = ? AND mv.build_id = ?""",
            [metric_name, build_id],
        )
        if row is None:
            return None
        return row["value_numeric"]

    # ── Reporting reads ───────────────────────────────────────────────

    def get_metric_time_series(self, metric_name: str) -> List[TimeSeriesPoint]:
        """Full history of a metric joined with build metadata, oldest first."""
        rows = self.db.fetchall(
            """SELECT md.name AS metric_name, mv.value_numeric, mv.value_label, mv.collected_at,
                      bc.id AS build_id, bc.commit_sha, bc.branch, bc.run_number,
                      bc.timestamp AS build_timestamp, bc.event_name
               FROM metric_values mv
               JOIN metric_definitions md ON md.id = mv.metric_id
               JOIN build_contexts bc ON bc.id = mv.build_id
               WHERE md.name = ?
               ORDER BY bc.timestamp ASC, bc.id ASC""",
            [metric_name],
        )
        return [TimeSeriesPoint.from_row(row) for row in rows]

    def get_all_metric_definitions(self) -> List[MetricDefinition]:
        rows = self.db.fetchall("SELECT * FROM metric_definitions ORDER BY name")
        return [MetricDefinition.from_row(row) for row in rows]

    def get_metric_definition(self, name: str) -> Optional[MetricDefinition]:
        row = self.db.fetchone("SELECT * FROM metric_definitions WHERE name = ?", [name])
        return MetricDefinition.from_row(row) if row else None

    def get_all_build_contexts(self, limit: Optional[int] = None) -> List[BuildContext]:
        query = "SELECT * FROM build_contexts ORDER BY timestamp DESC, id DESC"
        params: list = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [BuildContext.from_row(row) for row in self.db.fetchall(query, params)]

    def get_build_context(self, build_id: int) -> Optional[BuildContext]:
        row = self.db.fetchone("SELECT * FROM build_contexts WHERE id = ?", [build_id])
        return BuildContext.from_row(row) if row else None

    def get_metric_values_for_build(self, build_id: int) -> List[MetricValue]:
        rows = self.db.fetchall(
            """SELECT mv.*, md.name AS metric_name
               FROM metric_values mv
               JOIN metric_definitions md ON md.id = mv.metric_id
               WHERE mv.build_id = ?
               ORDER BY md.name""",
            [build_id],
        )
        return [MetricValue.from_row(row) for row in rows]

    def count_rows(self) -> dict:
        """Row counts per domain table, for verification output."""
        return {
            table: self.db.fetchone(f"SELECT COUNT(*) AS n FROM {table}")["n"]
            for table in ("metric_definitions", "build_contexts", "metric_values")
        }
