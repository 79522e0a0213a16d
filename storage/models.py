"""Data models for the storage layer."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

MetricType = str  # "numeric" | "label"
Timestamp = Union[datetime, str]

_DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_ISO_TIMESTAMP = re.compile(
    r"^(\d{4}-\d{2}-\d{2})"
    r"(?:[T ](\d{2}:\d{2})(:\d{2})?(?:[.,](\d+))?)?"
    r"\s*(Z|[+-]\d{2}(?::?\d{2})?)?$",
    re.IGNORECASE,
)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, including forms older ``fromisoformat`` rejects.

    Accepts a ``Z`` suffix, ``+HHMM`` and ``+HH`` offsets, a space separator
    and fractions of any length (truncated to microseconds).
    """
    match = _ISO_TIMESTAMP.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid timestamp: {value!r}")
    date, hours_minutes, seconds, fraction, offset = match.groups()

    text = f"{date}T{hours_minutes or '00:00'}{seconds or ':00'}.{(fraction or '')[:6].ljust(6, '0')}"
    if offset:
        if offset.upper() == "Z":
            offset = "+00:00"
        else:
            digits = offset[1:].replace(":", "")
            offset = f"{offset[0]}{digits[:2]}:{digits[2:4] or '00'}"
        text += offset
    return datetime.fromisoformat(text)


def to_db_timestamp(value: Timestamp) -> str:
    """Normalize a datetime or ISO-8601 string to the fixed-width UTC text stored in SQLite.

    Naive datetimes are taken to be UTC. Every stored timestamp has the same
    width, so comparing them as text in SQL orders them chronologically.
    """
    if isinstance(value, str):
        value = parse_timestamp(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_DB_TIMESTAMP_FORMAT)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MetricDefinitionInput:
    """A metric definition as observed by the collector."""
    name: str
    type: MetricType = "numeric"
    unit: Optional[str] = None
    description: Optional[str] = None


@dataclass
class MetricDefinition:
    id: int
    name: str
    type: MetricType
    unit: Optional[str]
    description: Optional[str]
    created_at: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MetricDefinition":
        return cls(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            unit=row["unit"],
            description=row["description"],
            created_at=row["created_at"],
        )


@dataclass
class BuildContextInput:
    """Metadata of the CI run that produced a set of metrics."""
    commit_sha: str
    branch: str
    run_id: str
    run_number: int
    timestamp: Timestamp
    actor: Optional[str] = None
    event_name: Optional[str] = None
    pull_request_number: Optional[int] = None
    pull_request_base: Optional[str] = None
    pull_request_head: Optional[str] = None

    @property
    def is_pull_request(self) -> bool:
        return self.event_name in ("pull_request", "pull_request_target") or self.pull_request_number is not None


@dataclass
class BuildContext:
    id: int
    commit_sha: str
    branch: str
    run_id: str
    run_number: int
    actor: Optional[str]
    event_name: Optional[str]
    timestamp: str
    created_at: str
    pull_request_number: Optional[int] = None
    pull_request_base: Optional[str] = None
    pull_request_head: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BuildContext":
        return cls(
            id=row["id"],
            commit_sha=row["commit_sha"],
            branch=row["branch"],
            run_id=row["run_id"],
            run_number=row["run_number"],
            actor=row["actor"],
            event_name=row["event_name"],
            timestamp=row["timestamp"],
            created_at=row["created_at"],
            pull_request_number=row.get("pull_request_number"),
            pull_request_base=row.get("pull_request_base"),
            pull_request_head=row.get("pull_request_head"),
        )


@dataclass
class CollectedMetric:
    """One collected value, ready to be recorded against a build.

    Exactly one of ``value_numeric`` and ``value_label`` must be set.
    """
    definition: MetricDefinitionInput
    value_numeric: Optional[float] = None
    value_label: Optional[str] = None
    collected_at: Optional[Timestamp] = None
    collection_duration_ms: Optional[int] = None

    def __post_init__(self):
        if self.collected_at is None:
            self.collected_at = utc_now()

    def validate(self) -> None:
        has_numeric = self.value_numeric is not None
        has_label = self.value_label is not None
        if has_numeric == has_label:
            raise ValueError(
                f"Metric '{self.definition.name}' must have exactly one of value_numeric or value_label"
            )
        if has_numeric and self.definition.type != "numeric":
            raise ValueError(f"Metric '{self.definition.name}' is a label metric but got a numeric value")
        if has_label and self.definition.type != "label":
            raise ValueError(f"Metric '{self.definition.name}' is a numeric metric but got a label value")


@dataclass
class MetricValue:
    id: int
    metric_id: int
    build_id: int
    value_numeric: Optional[float]
    value_label: Optional[str]
    collected_at: str
    collection_duration_ms: Optional[int] = None
    metric_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MetricValue":
        return cls(
            id=row["id"],
            metric_id=row["metric_id"],
            build_id=row["build_id"],
            value_numeric=row["value_numeric"],
            value_label=row["value_label"],
            collected_at=row["collected_at"],
            collection_duration_ms=row["collection_duration_ms"],
            metric_name=row.get("metric_name"),
        )


@dataclass
class TimeSeriesPoint:
    """A metric value joined with the build that produced it, for charting."""
    metric_name: str
    value_numeric: Optional[float]
    value_label: Optional[str]
    collected_at: str
    build_id: int
    commit_sha: str
    branch: str
    run_number: int
    build_timestamp: str
    event_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TimeSeriesPoint":
        return cls(**{name: row[name] for name in cls.__dataclass_fields__})
