"""qmetrics CLI - code-quality metrics store and quality gate."""

import argparse
import json
import logging
import os
import subprocess
import sys
from pathlib import Path

from core.errors import QMetricsError

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """\
# qmetrics configuration
metrics:
  - name: coverage
    type: numeric
    unit: percent
    description: Line coverage of the test suite
  - name: bundle-size
    type: numeric
    unit: bytes
    description: Size of the production bundle

storage:
  type: local
  path: qmetrics.db
  # type: s3
  # endpoint: https://s3.example.com
  # bucket: ci-metrics
  # region: us-east-1
  # key: qmetrics.db
  # Credentials come from QMETRICS_S3_ACCESS_KEY_ID / QMETRICS_S3_SECRET_ACCESS_KEY.

database:
  engine: sqlite
  busy_timeout_ms: 5000

quality_gate:
  mode: soft            # off | soft | hard
  baseline:
    reference_branch: main
    max_builds: 20
    max_age_days: 90
  thresholds:
    - metric: coverage
      mode: no-regression
      tolerance: 0.5
    - metric: bundle-size
      mode: max
      target: 500000
      severity: warning

notifications:
  webhook_url: null
"""


def configure_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


# ── Commands ──────────────────────────────────────────────────────────

def cmd_init(args):
    """Write a template qmetrics.yaml."""
    config_path = Path(args.path) / "qmetrics.yaml"
    if config_path.exists() and not args.force:
        print(f"  [ok] {config_path} already exists (use --force to overwrite)")
        return

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(CONFIG_TEMPLATE)
    print(f"  [ok] {config_path} created")
    print("\nNext steps:")
    print("  1. Edit metrics and thresholds in qmetrics.yaml")
    print("  2. Run: qmetrics record --metrics-file collected.json")


def _run_pipeline(args, evaluate_gate: bool):
    from ci.runner import TrackPipeline, load_collected_file, send_notification
    from core.config import load_config

    config = load_config(args.config)
    collected = load_collected_file(args.metrics_file, config)
    result = TrackPipeline(config, retry_attempts=args.retry_attempts).run(
        collected, evaluate_gate=evaluate_gate
    )

    if args.output:
        with open(args.output, "w") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        print(f"Results saved to {args.output}")

    send_notification(result, config.notifications.webhook_url)
    return result


def cmd_record(args):
    """Record collected metrics for the current CI build."""
    result = _run_pipeline(args, evaluate_gate=False)
    note = " (new database)" if result.first_run else ""
    print(f"Recorded {result.metrics_recorded} metric(s) as build {result.build_id}{note}")


def cmd_gate(args):
    """Record collected metrics and evaluate the quality gate."""
    result = _run_pipeline(args, evaluate_gate=True)
    gate = result.gate

    if gate is None:
        print("Quality gate is off")
        return

    print(f"\n{'=' * 50}")
    print(gate.summary_text())
    s = gate.summary
    print(f"\n{s.total_metrics} metric(s): {s.passed} passed, {s.failed} failed, {s.unknown} unknown")

    if gate.failing_metrics:
        print(f"Blocking failures: {', '.join(m.metric for m in gate.failing_metrics)}")

    if gate.should_block() or (args.fail_on_gate and gate.status == "fail"):
        sys.exit(1)


def _open_readonly(args):
    from core.config import load_config
    from storage.adapters import create_storage_adapter

    config = load_config(args.config)
    return create_storage_adapter(config.storage, config.database, readonly=True)


def cmd_history(args):
    """Print the time series of one metric."""
    from storage.repository import MetricsRepository

    with _open_readonly(args) as db:
        repo = MetricsRepository(db)
        if repo.get_metric_definition(args.metric) is None:
            print(f"Unknown metric: {args.metric}")
            sys.exit(1)
        points = repo.get_metric_time_series(args.metric)

    if args.branch:
        points = [p for p in points if p.branch == args.branch]
    if not points:
        print(f"No values recorded for {args.metric}")
        return

    print(f"\n{'Timestamp':<28} {'Branch':<25} {'Commit':<9} {'Run':>6} {'Value':>14}")
    print("-" * 86)
    for p in points:
        value = p.value_label if p.value_numeric is None else f"{p.value_numeric:g}"
        print(f"{p.build_timestamp:<28} {p.branch[:25]:<25} {p.commit_sha[:8]:<9} {p.run_number:>6} {value:>14}")


def cmd_builds(args):
    """List recorded builds, newest first."""
    from storage.repository import MetricsRepository

    with _open_readonly(args) as db:
        builds = MetricsRepository(db).get_all_build_contexts(limit=args.limit)

    if not builds:
        print("No builds recorded. Run `qmetrics record` first.")
        return

    print(f"\n{'ID':>5} {'Timestamp':<28} {'Branch':<25} {'Commit':<9} {'Event':<14} {'PR':>5}")
    print("-" * 91)
    for b in builds:
        pr = f"#{b.pull_request_number}" if b.pull_request_number is not None else ""
        print(f"{b.id:>5} {b.timestamp:<28} {b.branch[:25]:<25} {b.commit_sha[:8]:<9} {(b.event_name or ''):<14} {pr:>5}")


def cmd_migrate(args):
    """Bring the configured database up to a schema version and persist it."""
    from ci.runner import with_retries
    from core.config import load_config
    from storage.adapters import create_storage_adapter

    config = load_config(args.config)
    adapter = create_storage_adapter(config.storage, config.database, target_version=args.target)
    try:
        db = with_retries(adapter.initialize)
        version = adapter.migrator.current_version(db)
        with_retries(adapter.persist)
    finally:
        adapter.cleanup()

    if adapter.applied_migrations:
        print(f"Applied migrations: {', '.join(adapter.applied_migrations)}")
    else:
        print("Schema already up to date")
    print(f"Schema version: {version}")


def cmd_verify(args):
    """Check that the configured storage holds a healthy database."""
    from storage.migrations import SchemaMigrator
    from storage.repository import MetricsRepository

    adapter = _open_readonly(args)
    with adapter as db:
        migrator = SchemaMigrator()
        version = migrator.current_version(db) if db.table_columns("schema_version") else None
        counts = MetricsRepository(db).count_rows() if version else {}
        integrity = db.integrity_check()

    print(f"Location:       {adapter.location}")
    print(f"Schema version: {version or 'none'} (latest {migrator.latest_version})")
    for table, count in counts.items():
        print(f"  {table:<20} {count:>8} rows")
    print(f"Integrity:      {integrity}")

    if integrity != "ok" or version is None:
        sys.exit(1)


def cmd_dashboard(args):
    """Launch the dashboard API."""
    env = dict(os.environ)
    if args.db:
        env["QMETRICS_DB_PATH"] = args.db
    print(f"Starting dashboard on http://{args.host}:{args.port}")
    subprocess.run([
        sys.executable, "-m", "uvicorn",
        "dashboard.app:app",
        "--host", args.host,
        "--port", str(args.port),
        "--reload" if args.reload else "--no-access-log",
    ], env=env)


# ── Argument parser ───────────────────────────────────────────────────

def _add_config_arg(p):
    p.add_argument("--config", "-c", default=None, help="Path to qmetrics.yaml (default: discovered)")


def _add_pipeline_args(p):
    _add_config_arg(p)
    p.add_argument("--metrics-file", "-f", required=True, help="JSON list of collected metric values")
    p.add_argument("--output", "-o", help="Write the run result as JSON to this path")
    p.add_argument("--retry-attempts", type=int, default=3, help="Attempts for storage download/upload")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qmetrics",
        description="qmetrics - code-quality metrics store and quality gate",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # init
    p_init = sub.add_parser("init", help="Write a template qmetrics.yaml")
    p_init.add_argument("--path", default=".", help="Directory to write the config into")
    p_init.add_argument("--force", action="store_true", help="Overwrite an existing config")

    # record
    p_record = sub.add_parser("record", help="Record collected metrics for this build")
    _add_pipeline_args(p_record)

    # gate
    p_gate = sub.add_parser("gate", help="Record metrics and evaluate the quality gate")
    _add_pipeline_args(p_gate)
    p_gate.add_argument("--fail-on-gate", action="store_true", help="Exit 1 if the quality gate fails")

    # history
    p_hist = sub.add_parser("history", help="Show the history of one metric")
    p_hist.add_argument("metric", help="Metric name")
    p_hist.add_argument("--branch", "-b", help="Only show builds of this branch")
    _add_config_arg(p_hist)

    # builds
    p_builds = sub.add_parser("builds", help="List recorded builds")
    p_builds.add_argument("--limit", "-n", type=int, default=20, help="Number of builds to show")
    _add_config_arg(p_builds)

    # migrate
    p_mig = sub.add_parser("migrate", help="Apply schema migrations to the configured database")
    p_mig.add_argument("--target", help="Schema version to migrate to (default: latest)")
    _add_config_arg(p_mig)

    # verify
    p_verify = sub.add_parser("verify", help="Verify the configured database")
    _add_config_arg(p_verify)

    # dashboard
    p_dash = sub.add_parser("dashboard", help="Launch the dashboard API")
    p_dash.add_argument("--port", type=int, default=8000, help="Port number")
    p_dash.add_argument("--host", default="127.0.0.1", help="Host address")
    p_dash.add_argument("--db", help="Local database file to serve")
    p_dash.add_argument("--reload", action="store_true", help="Enable auto-reload")

    return parser


def main():
    from dotenv import load_dotenv

    parser = build_parser()
    args = parser.parse_args()
    configure_logging(args.verbose)
    load_dotenv()

    commands = {
        "init": cmd_init,
        "record": cmd_record,
        "gate": cmd_gate,
        "history": cmd_history,
        "builds": cmd_builds,
        "migrate": cmd_migrate,
        "verify": cmd_verify,
        "dashboard": cmd_dashboard,
    }

    if not args.command:
        parser.print_help()
        sys.exit(0)

    handler = commands.get(args.command)
    if not handler:
        parser.print_help()
        return

    try:
        handler(args)
    except QMetricsError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
