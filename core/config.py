"""Project and configuration discovery helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import pydantic
import yaml

from core.errors import ConfigError, ValidationError
from core.schema import QMetricsConfig

DEFAULT_CONFIG_NAME = "qmetrics.yaml"
PROJECT_MARKERS = (DEFAULT_CONFIG_NAME, "pyproject.toml", ".git")


def find_project_root(start_dir: Optional[Path] = None) -> Path:
    """Find project root by scanning upward for known project markers."""
    current = (start_dir or Path.cwd()).resolve()

    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in PROJECT_MARKERS):
            return candidate

    return current


def resolve_config_path(config_path: Optional[str] = None, start_dir: Optional[Path] = None) -> Path:
    """Resolve a config path from explicit input or project root discovery."""
    if config_path:
        provided = Path(config_path).expanduser()
        if not provided.is_absolute():
            provided = (start_dir or Path.cwd()) / provided
        provided = provided.resolve()
        if not provided.exists():
            raise ConfigError(f"Config file not found: {provided}")
        return provided

    project_root = find_project_root(start_dir)
    config_file = project_root / DEFAULT_CONFIG_NAME
    if not config_file.exists():
        raise ConfigError("No qmetrics.yaml found. Run `qmetrics init`.")
    return config_file


def parse_config(data: Any, environ: Optional[Mapping[str, str]] = None) -> QMetricsConfig:
    """Validate raw config data, applying environment overrides first."""
    if not isinstance(data, dict):
        raise ValidationError("Configuration must be a mapping at the top level")

    data = _apply_env_overrides(data, os.environ if environ is None else environ)

    try:
        return QMetricsConfig.model_validate(data)
    except pydantic.ValidationError as exc:
        issue = exc.errors()[0]
        location = ".".join(str(part) for part in issue["loc"])
        message = issue["msg"].removeprefix("Value error, ")
        raise ValidationError(f"{location}: {message}" if location else message) from exc


def load_config(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> QMetricsConfig:
    """Locate, parse and validate qmetrics.yaml."""
    path = resolve_config_path(config_path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
    return parse_config(data or {}, environ)


def _apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    merged = dict(data)

    gate_mode = environ.get("QMETRICS_GATE_MODE")
    if gate_mode:
        merged["quality_gate"] = {**(merged.get("quality_gate") or {}), "mode": gate_mode}

    webhook_url = environ.get("QMETRICS_WEBHOOK_URL")
    if webhook_url:
        merged["notifications"] = {**(merged.get("notifications") or {}), "webhook_url": webhook_url}

    return merged
