"""Storage layer for qmetrics: the SQLite file, its schema and its domain rows."""

from .adapters import LocalStorageAdapter, S3StorageAdapter, StorageAdapter, create_storage_adapter
from .database import Database, SqlEngine, SqliteEngine, get_engine
from .migrations import MIGRATIONS, Migration, SchemaMigrator
from .models import (
    BuildContext,
    BuildContextInput,
    CollectedMetric,
    MetricDefinition,
    MetricDefinitionInput,
    MetricValue,
    TimeSeriesPoint,
)
from .repository import MetricsRepository
from .s3 import ObjectStore, S3Credentials, S3ObjectStore

__all__ = [
    "Database",
    "SqlEngine",
    "SqliteEngine",
    "get_engine",
    "Migration",
    "MIGRATIONS",
    "SchemaMigrator",
    "StorageAdapter",
    "LocalStorageAdapter",
    "S3StorageAdapter",
    "create_storage_adapter",
    "ObjectStore",
    "S3Credentials",
    "S3ObjectStore",
    "BuildContext",
    "BuildContextInput",
    "CollectedMetric",
    "MetricDefinition",
    "MetricDefinitionInput",
    "MetricValue",
    "TimeSeriesPoint",
    "MetricsRepository",
]
