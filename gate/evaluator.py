"""Quality gate decision engine.

Each metric sample is classified pass, fail or unknown against its configured
threshold and the median of its baseline history. Evaluation is pure: it reads
no storage, keeps no state and never raises for missing data.
"""

import logging
from typing import Dict, List, Optional, Sequence

from core.schema import MetricThreshold, QualityGateConfig

from .models import BaselineInfo, GateSummary, MetricEvaluationResult, MetricSample, QualityGateResult

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.5


def calculate_median(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def _apply_deltas(result: MetricEvaluationResult) -> None:
    if result.baseline_median is None or result.pull_request_value is None:
        return
    result.absolute_delta = result.pull_request_value - result.baseline_median
    if result.baseline_median != 0:
        result.relative_delta_percent = result.absolute_delta / result.baseline_median * 100


def evaluate_threshold(
    sample: MetricSample,
    threshold: MetricThreshold,
    baseline_median: Optional[float],
) -> MetricEvaluationResult:
    """Classify one sample against its threshold."""
    result = MetricEvaluationResult(
        metric=sample.name,
        unit=sample.unit,
        baseline_median=baseline_median,
        pull_request_value=sample.pull_request_value,
        threshold=threshold,
        is_blocking=threshold.severity != "warning",
    )
    _apply_deltas(result)

    value = sample.pull_request_value
    if value is None:
        result.message = "Metric value not available for pull request"
        return result
    if baseline_median is None:
        result.message = "Baseline data not available"
        return result

    if threshold.mode == "min":
        if threshold.target is None:
            result.message = "Threshold target not specified"
        elif value >= threshold.target:
            result.status = "pass"
        else:
            result.status = "fail"
            result.message = f"{sample.name} ({value:g}) is below minimum threshold of {threshold.target:g}"

    elif threshold.mode == "max":
        if threshold.target is None:
            result.message = "Threshold target not specified"
        elif value <= threshold.target:
            result.status = "pass"
        else:
            result.status = "fail"
            result.message = f"{sample.name} ({value:g}) exceeds maximum threshold of {threshold.target:g}"

    elif threshold.mode == "no-regression":
        tolerance = DEFAULT_TOLERANCE if threshold.tolerance is None else threshold.tolerance
        if value >= baseline_median - tolerance:
            result.status = "pass"
        else:
            result.status = "fail"
            result.message = (
                f"{sample.name} regressed beyond tolerance "
                f"({value:g} vs baseline {baseline_median:g}, tolerance: {tolerance:g})"
            )

    elif threshold.mode == "delta-max-drop":
        if threshold.max_drop_percent is None:
            result.message = "maxDropPercent not specified"
        elif baseline_median == 0:
            result.message = "Cannot calculate percentage drop from zero baseline"
        else:
            drop_percent = (baseline_median - value) / baseline_median * 100
            if drop_percent <= threshold.max_drop_percent:
                result.status = "pass"
            else:
                result.status = "fail"
                result.message = (
                    f"{sample.name} dropped by {drop_percent:.2f}%, "
                    f"exceeding max allowed drop of {threshold.max_drop_percent:g}%"
                )

    return result


def evaluate_quality_gate(
    samples: Sequence[MetricSample],
    config: QualityGateConfig,
    baseline_info: BaselineInfo,
) -> QualityGateResult:
    """Evaluate every sample and aggregate the overall gate status."""
    mode = config.mode or "soft"
    thresholds = list(config.thresholds or [])

    if mode == "off":
        logger.info("Quality gate is off, skipping evaluation")
        return QualityGateResult(
            status="unknown",
            mode="off",
            baseline_info=baseline_info,
            summary=GateSummary(total_metrics=len(samples), unknown=len(samples)),
        )

    by_metric: Dict[str, MetricThreshold] = {t.metric: t for t in thresholds}
    results: List[MetricEvaluationResult] = []

    for sample in samples:
        baseline_median = calculate_median(sample.baseline_values)
        threshold = by_metric.get(sample.name)
        if threshold is None:
            result = MetricEvaluationResult(
                metric=sample.name,
                unit=sample.unit,
                baseline_median=baseline_median,
                pull_request_value=sample.pull_request_value,
                message="No threshold configured for this metric",
            )
            _apply_deltas(result)
        else:
            result = evaluate_threshold(sample, threshold, baseline_median)
        logger.debug(f"Metric {result.metric}: {result.status} ({result.message or 'ok'})")
        results.append(result)

    failing = [r for r in results if r.status == "fail" and r.is_blocking]
    summary = GateSummary(
        total_metrics=len(samples),
        evaluated_metrics=sum(1 for r in results if r.threshold is not None),
        passed=sum(1 for r in results if r.status == "pass"),
        failed=sum(1 for r in results if r.status == "fail"),
        unknown=sum(1 for r in results if r.status == "unknown"),
    )

    if not thresholds:
        status = "unknown"
    elif failing:
        status = "fail"
    elif summary.evaluated_metrics == 0:
        status = "unknown"
    elif summary.passed > 0:
        status = "pass"
    else:
        status = "unknown"

    logger.info(
        f"Quality gate {status}: {summary.passed} passed, {summary.failed} failed, "
        f"{summary.unknown} unknown ({len(failing)} blocking)"
    )
    return QualityGateResult(
        status=status,
        mode=mode,
        baseline_info=baseline_info,
        metrics=results,
        failing_metrics=failing,
        summary=summary,
    )
