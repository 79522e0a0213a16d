"""Build quality gate samples from the metrics repository."""

import logging
import os
from typing import List, Mapping, Optional, Sequence

from core.schema import QualityGateConfig
from storage.repository import MetricsRepository

from .models import MetricSample

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_BRANCH = "main"


def build_metric_samples(
    definitions: Sequence,
    repository: MetricsRepository,
    build_id: int,
    reference_branch: str,
    max_builds: int,
    max_age_days: int,
) -> List[MetricSample]:
    """One sample per numeric metric definition; label metrics are skipped.

    ``definitions`` may be config entries or collector definitions; anything
    with ``name``, ``type`` and ``unit`` works.
    """
    samples = []
    for definition in definitions:
        if definition.type != "numeric":
            continue
        baseline = repository.get_baseline_metric_values(
            definition.name, reference_branch, max_builds, max_age_days
        )
        samples.append(
            MetricSample(
                name=definition.name,
                unit=definition.unit,
                baseline_values=[v.value_numeric for v in baseline],
                pull_request_value=repository.get_pull_request_metric_value(definition.name, build_id),
            )
        )
        logger.debug(f"Sample {definition.name}: {len(baseline)} baseline value(s)")
    return samples


def calculate_builds_considered(samples: Sequence[MetricSample]) -> int:
    return max((len(s.baseline_values) for s in samples), default=0)


def determine_reference_branch(
    config: QualityGateConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Configured branch, else the pull request's base branch, else main."""
    env = os.environ if environ is None else environ
    return config.baseline.reference_branch or env.get("GITHUB_BASE_REF") or DEFAULT_REFERENCE_BRANCH
