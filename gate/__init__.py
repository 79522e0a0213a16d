"""Quality gate: compares pull request metrics against a baseline."""

from .evaluator import calculate_median, evaluate_quality_gate, evaluate_threshold
from .models import BaselineInfo, GateSummary, MetricEvaluationResult, MetricSample, QualityGateResult
from .samples import build_metric_samples, calculate_builds_considered, determine_reference_branch

__all__ = [
    "calculate_median",
    "evaluate_threshold",
    "evaluate_quality_gate",
    "BaselineInfo",
    "GateSummary",
    "MetricEvaluationResult",
    "MetricSample",
    "QualityGateResult",
    "build_metric_samples",
    "calculate_builds_considered",
    "determine_reference_branch",
]
