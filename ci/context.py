"""Build context extraction from the GitHub Actions environment."""

import os
import re
from typing import Mapping, Optional

from core.errors import ConfigError
from storage.models import BuildContextInput, utc_now

REQUIRED_VARIABLES = ("GITHUB_SHA", "GITHUB_REF", "GITHUB_RUN_ID", "GITHUB_RUN_NUMBER")
PULL_REQUEST_REF = re.compile(r"^refs/pull/(\d+)/(?:merge|head)$")


def _branch_from_ref(ref: str) -> str:
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def extract_build_context(environ: Optional[Mapping[str, str]] = None) -> BuildContextInput:
    """Describe the current CI run from its environment variables.

    Pull request refs (``refs/pull/<n>/merge``) record the PR number, and the
    head branch becomes the build's branch.
    """
    env = os.environ if environ is None else environ

    for name in REQUIRED_VARIABLES:
        if not env.get(name):
            raise ConfigError(f"Required environment variable {name} is missing")

    run_number = env["GITHUB_RUN_NUMBER"]
    try:
        parsed_run_number = int(run_number)
    except ValueError:
        raise ConfigError(f"GITHUB_RUN_NUMBER must be a valid integer, got: {run_number}") from None

    ref = env["GITHUB_REF"]
    branch = _branch_from_ref(ref)
    pull_request_number = None
    pull_request_base = None
    pull_request_head = None

    match = PULL_REQUEST_REF.match(ref)
    if match:
        pull_request_number = int(match.group(1))
        pull_request_base = env.get("GITHUB_BASE_REF") or None
        pull_request_head = env.get("GITHUB_HEAD_REF") or None
        branch = pull_request_head or branch

    return BuildContextInput(
        commit_sha=env["GITHUB_SHA"],
        branch=branch,
        run_id=env["GITHUB_RUN_ID"],
        run_number=parsed_run_number,
        timestamp=utc_now(),
        actor=env.get("GITHUB_ACTOR") or None,
        event_name=env.get("GITHUB_EVENT_NAME") or None,
        pull_request_number=pull_request_number,
        pull_request_base=pull_request_base,
        pull_request_head=pull_request_head,
    )
