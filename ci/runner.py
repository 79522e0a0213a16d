"""CI runner: record a build's metrics and evaluate the quality gate."""

import json
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar, Union

import httpx

from core.errors import QMetricsError, StorageError, ValidationError
from core.schema import QMetricsConfig
from gate import (
    BaselineInfo,
    QualityGateResult,
    build_metric_samples,
    calculate_builds_considered,
    determine_reference_branch,
    evaluate_quality_gate,
)
from storage.adapters import StorageAdapter, create_storage_adapter
from storage.models import BuildContextInput, CollectedMetric, MetricDefinitionInput
from storage.repository import MetricsRepository

from .context import extract_build_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0


def with_retries(
    operation: Callable[[], T],
    attempts: int = DEFAULT_RETRY_ATTEMPTS,
    delay: float = DEFAULT_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying retryable storage errors with exponential backoff.

    Anything else, and the last retryable failure, propagates unchanged.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except StorageError as e:
            attempt += 1
            if not e.retryable or attempt >= attempts:
                raise
            wait = delay * (2 ** (attempt - 1))
            logger.warning(f"Attempt {attempt}/{attempts} failed ({e.code}): {e}. Retrying in {wait:.1f}s")
            sleep(wait)


# ── Collected metrics input ───────────────────────────────────────────────

def parse_collected_metrics(entries: Any, config: QMetricsConfig) -> List[CollectedMetric]:
    """Pair ``[{"name", "value", "duration_ms"?}]`` entries with configured metric definitions."""
    if not isinstance(entries, list):
        raise ValidationError("Collected metrics must be a JSON list")

    collected = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or "name" not in entry or "value" not in entry:
            raise ValidationError(f"Collected metric #{i} must be an object with 'name' and 'value'")
        metric = config.metric(entry["name"])
        if metric is None:
            raise ValidationError(f"Collected metric '{entry['name']}' is not defined in the configuration")

        value = entry["value"]
        definition = MetricDefinitionInput(
            name=metric.name, type=metric.type, unit=metric.unit, description=metric.description
        )
        if metric.type == "numeric":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"Metric '{metric.name}' is numeric but got {value!r}")
            item = CollectedMetric(definition, value_numeric=float(value))
        else:
            if not isinstance(value, str):
                raise ValidationError(f"Metric '{metric.name}' is a label metric but got {value!r}")
            item = CollectedMetric(definition, value_label=value)
        item.collection_duration_ms = entry.get("duration_ms")
        collected.append(item)
    return collected


def load_collected_file(path: Union[str, Path], config: QMetricsConfig) -> List[CollectedMetric]:
    try:
        with open(path, "r") as f:
            entries = json.load(f)
    except FileNotFoundError:
        raise ValidationError(f"Collected metrics file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in collected metrics file {path}: {e}") from e
    return parse_collected_metrics(entries, config)


# ── Track pipeline ────────────────────────────────────────────────────────

@dataclass
class TrackResult:
    build_id: int
    build_context: BuildContextInput
    metrics_recorded: int
    gate: Optional[QualityGateResult] = None
    first_run: bool = False
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def should_block(self) -> bool:
        return self.gate is not None and self.gate.should_block()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "build_id": self.build_id,
            "commit_sha": self.build_context.commit_sha,
            "branch": self.build_context.branch,
            "metrics_recorded": self.metrics_recorded,
            "first_run": self.first_run,
            "quality_gate": self.gate.to_dict() if self.gate else None,
            "timings": self.timings,
        }


class TrackPipeline:
    """initialize -> record -> evaluate gate (pull requests) -> persist -> cleanup."""

    def __init__(
        self,
        config: QMetricsConfig,
        adapter: Optional[StorageAdapter] = None,
        environ: Optional[Mapping[str, str]] = None,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.adapter = adapter or create_storage_adapter(config.storage, config.database)
        self.environ = environ
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    def _retry(self, operation: Callable[[], T]) -> T:
        return with_retries(operation, self.retry_attempts, self.retry_delay, self.sleep)

    def run(
        self,
        collected: Sequence[CollectedMetric],
        build_context: Optional[BuildContextInput] = None,
        evaluate_gate: Optional[bool] = None,
    ) -> TrackResult:
        """Record ``collected`` against the current build.

        The gate is evaluated for pull request builds unless ``evaluate_gate``
        says otherwise; it never runs in ``off`` mode.
        """
        context = build_context or extract_build_context(self.environ)
        timings: Dict[str, float] = {}

        try:
            start = time.perf_counter()
            db = self._retry(self.adapter.initialize)
            timings["initialize"] = time.perf_counter() - start

            repository = MetricsRepository(db)
            start = time.perf_counter()
            build_id = repository.record_build(context, collected)
            timings["record"] = time.perf_counter() - start

            gate_result = None
            wants_gate = context.is_pull_request if evaluate_gate is None else evaluate_gate
            if wants_gate and self.config.quality_gate.mode != "off":
                start = time.perf_counter()
                gate_result = self._evaluate(repository, build_id, collected)
                timings["gate"] = time.perf_counter() - start

            start = time.perf_counter()
            self._retry(self.adapter.persist)
            timings["persist"] = time.perf_counter() - start
        finally:
            self.adapter.cleanup()

        return TrackResult(
            build_id=build_id,
            build_context=context,
            metrics_recorded=len(collected),
            gate=gate_result,
            first_run=getattr(self.adapter, "first_run", False),
            timings=timings,
        )

    def _evaluate(
        self,
        repository: MetricsRepository,
        build_id: int,
        collected: Sequence[CollectedMetric],
    ) -> QualityGateResult:
        gate_config = self.config.quality_gate
        reference_branch = determine_reference_branch(gate_config, self.environ)
        samples = build_metric_samples(
            [m.definition for m in collected],
            repository,
            build_id,
            reference_branch,
            gate_config.baseline.max_builds,
            gate_config.baseline.max_age_days,
        )
        baseline_info = BaselineInfo(
            reference_branch=reference_branch,
            builds_considered=calculate_builds_considered(samples),
            max_builds=gate_config.baseline.max_builds,
            max_age_days=gate_config.baseline.max_age_days,
        )
        return evaluate_quality_gate(samples, gate_config, baseline_info)


def send_notification(result: TrackResult, webhook_url: Optional[str] = None) -> str:
    """Log a summary of the run and post it to a webhook if one is configured."""
    ctx = result.build_context
    lines = [
        f"qmetrics: recorded {result.metrics_recorded} metric(s) for build {result.build_id}",
        f"Commit: {ctx.commit_sha[:8]}",
        f"Branch: {ctx.branch}",
    ]
    if ctx.pull_request_number is not None:
        lines.append(f"Pull request: #{ctx.pull_request_number}")
    if result.gate is not None:
        lines.append(result.gate.summary_text())
    message = "\n".join(lines)

    logger.info(message)

    if webhook_url:
        try:
            response = httpx.post(webhook_url, json={"text": message}, timeout=10)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to send notification: {e}")

    return message


def main(argv: Optional[List[str]] = None) -> None:
    import argparse

    from dotenv import load_dotenv

    from core.config import load_config

    parser = argparse.ArgumentParser(description="Record CI metrics and evaluate the quality gate")
    parser.add_argument("--config", default=None, help="Path to qmetrics.yaml")
    parser.add_argument("--metrics-file", required=True, help="JSON file of collected metric values")
    parser.add_argument("--output", default=None, help="Write the run result as JSON to this path")
    parser.add_argument("--retry-attempts", type=int, default=DEFAULT_RETRY_ATTEMPTS)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    load_dotenv()

    try:
        config = load_config(args.config)
        collected = load_collected_file(args.metrics_file, config)
        result = TrackPipeline(config, retry_attempts=args.retry_attempts).run(collected)
    except (QMetricsError, ValueError) as e:
        logger.error(f"Metrics tracking failed: {e}")
        sys.exit(1)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        logger.info(f"Results saved to {output_path}")

    send_notification(result, config.notifications.webhook_url)

    if result.should_block:
        logger.error("Quality gate FAILED")
        sys.exit(1)

    logger.info("Metrics tracking complete")


if __name__ == "__main__":
    main()
