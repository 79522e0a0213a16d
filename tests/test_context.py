"""Tests for build context extraction from the CI environment."""

import pytest

from ci.context import extract_build_context
from core.errors import ConfigError

BASE_ENV = {
    "GITHUB_SHA": "0123456789abcdef0123456789abcdef01234567",
    "GITHUB_REF": "refs/heads/main",
    "GITHUB_RUN_ID": "987654321",
    "GITHUB_RUN_NUMBER": "42",
    "GITHUB_ACTOR": "octocat",
    "GITHUB_EVENT_NAME": "push",
}


class TestExtractBuildContext:
    def test_push_build(self):
        ctx = extract_build_context(BASE_ENV)

        assert ctx.commit_sha == BASE_ENV["GITHUB_SHA"]
        assert ctx.branch == "main"
        assert ctx.run_id == "987654321"
        assert ctx.run_number == 42
        assert ctx.actor == "octocat"
        assert ctx.event_name == "push"
        assert ctx.pull_request_number is None
        assert ctx.is_pull_request is False

    def test_tag_ref(self):
        ctx = extract_build_context({**BASE_ENV, "GITHUB_REF": "refs/tags/v1.2.3"})
        assert ctx.branch == "v1.2.3"

    def test_pull_request_ref(self):
        ctx = extract_build_context({
            **BASE_ENV,
            "GITHUB_REF": "refs/pull/17/merge",
            "GITHUB_EVENT_NAME": "pull_request",
            "GITHUB_BASE_REF": "main",
            "GITHUB_HEAD_REF": "feature/faster-build",
        })

        assert ctx.pull_request_number == 17
        assert ctx.pull_request_base == "main"
        assert ctx.pull_request_head == "feature/faster-build"
        assert ctx.branch == "feature/faster-build"
        assert ctx.is_pull_request is True

    def test_pull_request_ref_without_head_ref(self):
        ctx = extract_build_context({**BASE_ENV, "GITHUB_REF": "refs/pull/3/merge"})
        assert ctx.pull_request_number == 3
        assert ctx.branch == "refs/pull/3/merge"

    def test_optional_variables_absent(self):
        env = {k: v for k, v in BASE_ENV.items() if k not in ("GITHUB_ACTOR", "GITHUB_EVENT_NAME")}
        ctx = extract_build_context(env)
        assert ctx.actor is None
        assert ctx.event_name is None

    @pytest.mark.parametrize("missing", ["GITHUB_SHA", "GITHUB_REF", "GITHUB_RUN_ID", "GITHUB_RUN_NUMBER"])
    def test_required_variables(self, missing):
        env = {k: v for k, v in BASE_ENV.items() if k != missing}
        with pytest.raises(ConfigError, match=missing):
            extract_build_context(env)

    def test_run_number_must_be_integer(self):
        with pytest.raises(ConfigError, match="must be a valid integer"):
            extract_build_context({**BASE_ENV, "GITHUB_RUN_NUMBER": "forty-two"})
