"""Core shared utilities for qmetrics."""

from core.config import DEFAULT_CONFIG_NAME, find_project_root, load_config, parse_config, resolve_config_path
from core.errors import ConfigError, QMetricsError, SchemaError, StorageError, ValidationError

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "find_project_root",
    "load_config",
    "parse_config",
    "resolve_config_path",
    "QMetricsError",
    "ConfigError",
    "ValidationError",
    "SchemaError",
    "StorageError",
]
