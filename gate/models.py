"""Result containers for the quality gate."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.schema import MetricThreshold

MetricGateStatus = str  # "pass" | "fail" | "unknown"


@dataclass
class MetricSample:
    """Baseline history and pull request value of one numeric metric."""
    name: str
    baseline_values: List[float] = field(default_factory=list)
    pull_request_value: Optional[float] = None
    unit: Optional[str] = None
    type: str = "numeric"


@dataclass
class MetricEvaluationResult:
    metric: str
    status: MetricGateStatus = "unknown"
    unit: Optional[str] = None
    baseline_median: Optional[float] = None
    pull_request_value: Optional[float] = None
    absolute_delta: Optional[float] = None
    relative_delta_percent: Optional[float] = None
    threshold: Optional[MetricThreshold] = None
    message: Optional[str] = None
    is_blocking: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "status": self.status,
            "unit": self.unit,
            "baseline_median": self.baseline_median,
            "pull_request_value": self.pull_request_value,
            "absolute_delta": self.absolute_delta,
            "relative_delta_percent": self.relative_delta_percent,
            "threshold": self.threshold.model_dump() if self.threshold is not None else None,
            "message": self.message,
            "is_blocking": self.is_blocking,
        }


@dataclass
class GateSummary:
    total_metrics: int = 0
    evaluated_metrics: int = 0
    passed: int = 0
    failed: int = 0
    unknown: int = 0


@dataclass
class BaselineInfo:
    """Which baseline the pull request was compared against."""
    reference_branch: str
    builds_considered: int
    max_builds: int
    max_age_days: int


@dataclass
class QualityGateResult:
    """Aggregate quality gate decision for one pull request build."""
    status: str
    mode: str
    baseline_info: BaselineInfo
    metrics: List[MetricEvaluationResult] = field(default_factory=list)
    failing_metrics: List[MetricEvaluationResult] = field(default_factory=list)
    summary: GateSummary = field(default_factory=GateSummary)

    def should_block(self) -> bool:
        """Only a failing gate in hard mode blocks the merge."""
        return self.mode == "hard" and self.status == "fail"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "mode": self.mode,
            "metrics": [m.to_dict() for m in self.metrics],
            "failing_metrics": [m.metric for m in self.failing_metrics],
            "summary": vars(self.summary).copy(),
            "baseline_info": vars(self.baseline_info).copy(),
        }

    def summary_text(self) -> str:
        lines = [
            f"Quality Gate: {self.status.upper()} (mode={self.mode}, "
            f"baseline={self.baseline_info.reference_branch}, builds={self.baseline_info.builds_considered})"
        ]
        for m in self.metrics:
            line = f"  [{m.status.upper()}] {m.metric}: {_fmt(m.pull_request_value)} (baseline {_fmt(m.baseline_median)}"
            if m.absolute_delta is not None:
                line += f", delta {m.absolute_delta:+.2f}"
                if m.relative_delta_percent is not None:
                    line += f" / {m.relative_delta_percent:+.2f}%"
            line += ")"
            if m.message:
                line += f" - {m.message}"
            if m.status == "fail" and not m.is_blocking:
                line += " [warning]"
            lines.append(line)
        return "\n".join(lines)


def _fmt(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:g}"
