"""Pydantic models for the qmetrics.yaml configuration file."""

from __future__ import annotations

import re
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

METRIC_NAME_PATTERN = r"^[a-z0-9-]+$"
BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")

ThresholdMode = Literal["min", "max", "no-regression", "delta-max-drop"]
Severity = Literal["warning", "blocker"]
GateMode = Literal["off", "soft", "hard"]


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class MetricConfig(_StrictModel):
    name: str = Field(min_length=1, max_length=64, pattern=METRIC_NAME_PATTERN)
    type: Literal["numeric", "label"]
    unit: Optional[str] = Field(default=None, max_length=16)
    description: Optional[str] = Field(default=None, max_length=256)


class MetricThreshold(_StrictModel):
    """Threshold rule applied to one metric by the quality gate."""

    metric: str = Field(min_length=1)
    mode: ThresholdMode
    target: Optional[float] = None
    tolerance: Optional[float] = Field(default=None, ge=0)
    max_drop_percent: Optional[float] = Field(default=None, ge=0)
    severity: Severity = "blocker"

    @model_validator(mode="after")
    def _check_mode_parameters(self) -> "MetricThreshold":
        if self.mode in ("min", "max") and self.target is None:
            raise ValueError(f"threshold for '{self.metric}' with mode '{self.mode}' requires a target")
        if self.mode == "delta-max-drop" and self.max_drop_percent is None:
            raise ValueError(f"threshold for '{self.metric}' with mode 'delta-max-drop' requires max_drop_percent")
        return self


class BaselineConfig(_StrictModel):
    reference_branch: Optional[str] = None
    max_builds: int = Field(default=20, ge=1, le=1000)
    max_age_days: int = Field(default=90, ge=1)


class QualityGateConfig(_StrictModel):
    mode: GateMode = "soft"
    baseline: BaselineConfig = Field(default_factory=BaselineConfig)
    thresholds: List[MetricThreshold] = Field(default_factory=list)

    @field_validator("thresholds")
    @classmethod
    def _unique_threshold_metrics(cls, thresholds: List[MetricThreshold]) -> List[MetricThreshold]:
        seen = set()
        for threshold in thresholds:
            if threshold.metric in seen:
                raise ValueError(f"Duplicate threshold for metric '{threshold.metric}'")
            seen.add(threshold.metric)
        return thresholds


class LocalStorageConfig(_StrictModel):
    type: Literal["local"] = "local"
    path: str = "qmetrics.db"


class S3StorageConfig(_StrictModel):
    type: Literal["s3"]
    endpoint: Optional[str] = None
    bucket: str
    region: str = Field(min_length=1)
    key: str = Field(default="qmetrics.db", min_length=1)

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, endpoint: Optional[str]) -> Optional[str]:
        if endpoint is not None and not re.match(r"^https?://[^/\s]+", endpoint):
            raise ValueError(f"Invalid S3 endpoint URL: {endpoint}")
        return endpoint

    @field_validator("bucket")
    @classmethod
    def _check_bucket(cls, bucket: str) -> str:
        if not 3 <= len(bucket) <= 63:
            raise ValueError(f"Invalid S3 bucket name: {bucket}. Bucket names must be between 3 and 63 characters")
        if not BUCKET_NAME_PATTERN.match(bucket):
            raise ValueError(
                f"Invalid S3 bucket name: {bucket}. Bucket names must be lowercase and contain only "
                "letters, numbers, dots, and hyphens"
            )
        return bucket


StorageConfig = Annotated[Union[LocalStorageConfig, S3StorageConfig], Field(discriminator="type")]


class DatabaseConfig(_StrictModel):
    engine: Literal["sqlite"] = "sqlite"
    busy_timeout_ms: int = Field(default=5000, ge=0)


class NotificationConfig(_StrictModel):
    webhook_url: Optional[str] = None


class QMetricsConfig(_StrictModel):
    metrics: List[MetricConfig] = Field(min_length=1, max_length=50)
    storage: StorageConfig = Field(default_factory=LocalStorageConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    quality_gate: QualityGateConfig = Field(default_factory=QualityGateConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    @field_validator("metrics")
    @classmethod
    def _unique_metric_names(cls, metrics: List[MetricConfig]) -> List[MetricConfig]:
        names = set()
        for metric in metrics:
            if metric.name in names:
                raise ValueError(
                    f'Duplicate metric name "{metric.name}" found. '
                    "Metric names must be unique within the configuration"
                )
            names.add(metric.name)
        return metrics

    def metric(self, name: str) -> Optional[MetricConfig]:
        for metric in self.metrics:
            if metric.name == name:
                return metric
        return None
