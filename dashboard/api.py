"""Read-only JSON API over the metrics repository."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from gate.evaluator import calculate_median
from storage.database import Database
from storage.repository import MetricsRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["api-v1"])

DEFAULT_DB_PATH = "qmetrics.db"


def db_path() -> Path:
    return Path(os.getenv("QMETRICS_DB_PATH", DEFAULT_DB_PATH))


async def get_repo() -> AsyncIterator[MetricsRepository]:
    """Open the database read-only for the duration of one request."""
    path = db_path()
    if not path.exists():
        raise HTTPException(status_code=503, detail=f"Database not found: {path}")
    db = Database(path, readonly=True)
    try:
        yield MetricsRepository(db)
    finally:
        db.close()


def _require_metric(repo: MetricsRepository, name: str):
    definition = repo.get_metric_definition(name)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Unknown metric: {name}")
    return definition


@router.get("/metrics")
async def list_metrics(repo: MetricsRepository = Depends(get_repo)) -> Dict[str, Any]:
    return {"metrics": [asdict(d) for d in repo.get_all_metric_definitions()]}


@router.get("/metrics/{name}/series")
async def metric_series(
    name: str,
    branch: Optional[str] = None,
    repo: MetricsRepository = Depends(get_repo),
) -> Dict[str, Any]:
    definition = _require_metric(repo, name)
    points = repo.get_metric_time_series(name)
    if branch:
        points = [p for p in points if p.branch == branch]
    return {"metric": asdict(definition), "points": [asdict(p) for p in points]}


@router.get("/metrics/{name}/baseline")
async def metric_baseline(
    name: str,
    branch: str = "main",
    max_builds: int = Query(20, ge=1, le=1000),
    max_age_days: int = Query(90, ge=1),
    repo: MetricsRepository = Depends(get_repo),
) -> Dict[str, Any]:
    _require_metric(repo, name)
    values = repo.get_baseline_metric_values(name, branch, max_builds, max_age_days)
    return {
        "metric": name,
        "branch": branch,
        "max_builds": max_builds,
        "max_age_days": max_age_days,
        "values": [asdict(v) for v in values],
        "median": calculate_median([v.value_numeric for v in values]),
    }


@router.get("/builds")
async def list_builds(
    limit: int = Query(50, ge=1, le=500),
    repo: MetricsRepository = Depends(get_repo),
) -> Dict[str, Any]:
    builds = repo.get_all_build_contexts(limit=limit)
    return {"builds": [asdict(b) for b in builds], "total": len(builds)}


@router.get("/builds/{build_id}")
async def get_build(build_id: int, repo: MetricsRepository = Depends(get_repo)) -> Dict[str, Any]:
    build = repo.get_build_context(build_id)
    if build is None:
        raise HTTPException(status_code=404, detail=f"Build {build_id} not found")
    return {
        "build": asdict(build),
        "metrics": [asdict(v) for v in repo.get_metric_values_for_build(build_id)],
    }
