#!/usr/bin/env python3
"""
valgate CLI -- entry point for the validation gate.

Usage:
  valgate run [--task NAMES] [--platform NAMES] [--output-format LIST]
              [--timeout MS] [--debug [true|false]] [--build-id ID]
  valgate aggregate --input-dir DIR [--output-format LIST] [--output-dir DIR]
  valgate discover
  valgate baselines

Exit codes: 0 gate passed, 1 gate blocked, 2 the run could not produce
results (bad configuration, unreadable task tree, unwritable report).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from dataclasses import replace
from pathlib import Path

from valgate.config import Settings, load_settings, log_file
from valgate.console import configure, console
from valgate.domain.errors import ConfigError, ReportWriteError, TaskSourceError
from valgate.domain.models import RunOutcome
from valgate.modules.emitter.core import STATUS_ICONS, blocking_regressions, parse_formats

logger = logging.getLogger("valgate")

EXIT_PASSED = 0
EXIT_BLOCKED = 1
EXIT_INTERNAL = 2

DEFAULT_FORMATS = "structured,ci,summary"


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"true", "yes", "1", "on"}:
        return True
    if lowered in {"false", "no", "0", "off"}:
        return False
    msg = f"expected true or false, got '{value}'"
    raise argparse.ArgumentTypeError(msg)


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        msg = f"expected an integer, got '{value}'"
        raise argparse.ArgumentTypeError(msg) from exc
    if parsed < 1:
        msg = f"expected a positive integer, got {parsed}"
        raise argparse.ArgumentTypeError(msg)
    return parsed


# ---------------------------------------------------------------------------
# CLI commands
# ---------------------------------------------------------------------------


def cmd_run(args: argparse.Namespace) -> int:
    """Run the validation pipeline and return the exit code."""
    from valgate.wiring import RunRequest, run_pipeline

    settings = _settings(args)
    formats = _formats(args)
    if formats is None:
        return EXIT_INTERNAL

    request = RunRequest(
        tasks=args.task,
        platforms=args.platform,
        formats=formats,
        timeout_ms=args.timeout,
        build_id=args.build_id,
    )
    started = time.monotonic()
    outcome = run_pipeline(settings, request, os.environ)
    return _show_outcome(outcome, started)


def cmd_aggregate(args: argparse.Namespace) -> int:
    """Merge per-job structured reports into one report and apply the gate."""
    from valgate.wiring import run_fan_in

    settings = _settings(args)
    formats = _formats(args)
    if formats is None:
        return EXIT_INTERNAL

    started = time.monotonic()
    outcome = run_fan_in(settings, settings.resolve(args.input_dir), formats, os.environ)
    return _show_outcome(outcome, started)


def _formats(args: argparse.Namespace) -> tuple[str, ...] | None:
    """Parsed --output-format, or None after reporting why it is unusable."""
    try:
        formats = parse_formats(args.output_format)
    except ValueError as exc:
        logger.error("Invalid --output-format: %s", exc)
        console.error(str(exc))
        return None
    if not formats:
        console.error("At least one output format is required")
        return None
    return formats


def _show_outcome(outcome: RunOutcome, started: float) -> int:
    report = outcome.report

    if report.task_details:
        rows = [
            [
                f"{STATUS_ICONS[t.status]} {t.task_name}",
                t.status.value,
                f"{t.mean_score:.2f}",
                ", ".join(name for name, _ in t.platforms),
            ]
            for t in report.task_details
        ]
        console.table(["Task", "Status", "Score", "Platforms"], rows, title="Task Results")
    else:
        console.warning("No validation results were produced")

    console.kv(
        {
            "Tasks": str(report.total_tasks),
            "Passed": str(report.passed_tasks),
            "Warnings": str(report.warning_tasks),
            "Failed": str(report.failed_tasks),
            "Errors": str(report.error_tasks),
            "Critical issues": str(report.total_critical_issues),
        },
        title="Overview",
    )
    if report.rejected_results:
        console.warning(f"{report.rejected_results} malformed result(s) were excluded")

    for r in outcome.regressions:
        if r.regression_detected:
            console.warning(
                f"Regression in {r.task_name} on {r.platform}: "
                f"{r.regression_percentage}% ({r.severity.value})"
            )

    if not outcome.gate_passed:
        causes = [f"Overall status: {report.overall_status.value}"]
        causes += [
            f"{r.task_name} [{r.platform}] regressed {r.regression_percentage}%"
            for r in blocking_regressions(outcome.regressions)
        ]
        console.panel("\n".join(causes), title="Gate blocked", style="red")

    console.gate_result(
        outcome.gate_passed,
        report.overall_status.value,
        report.overall_score,
        time.monotonic() - started,
    )
    return EXIT_PASSED if outcome.gate_passed else EXIT_BLOCKED


def cmd_discover(args: argparse.Namespace) -> int:
    """Discover tasks and write the task list and CI matrix files."""
    from valgate.wiring import run_discovery

    settings = _settings(args)
    tasks, failures, written = run_discovery(settings)
    rows = [
        [
            t.name,
            str(t.priority),
            t.complexity,
            "yes" if t.requires_runtime else "no",
            f"{t.estimated_cost_ms / 1000:.0f}s",
        ]
        for t in tasks
    ]
    console.table(
        ["Task", "Priority", "Complexity", "Runtime", "Estimate"], rows, title="Tasks"
    )
    for failure in failures:
        console.warning(f"{failure.source_path}: {failure.message}")
    console.success(f"Discovered {len(tasks)} task(s); wrote {', '.join(written)}")
    return EXIT_PASSED


def cmd_baselines(args: argparse.Namespace) -> int:
    """Show the stored baseline history per task and platform."""
    from valgate.wiring import read_baselines

    histories = read_baselines(_settings(args))
    if not histories:
        console.info("No baselines recorded yet.")
        return EXIT_PASSED
    rows: list[list[str]] = []
    for (task, platform), entries in histories.items():
        latest = entries[-1] if entries else None
        rows.append(
            [
                task,
                platform,
                str(len(entries)),
                f"{latest.overall_score:.2f}" if latest else "--",
                latest.build_identity if latest else "--",
                latest.timestamp if latest else "--",
            ]
        )
    console.table(
        ["Task", "Platform", "Entries", "Latest score", "Build", "Recorded"],
        rows,
        title="Baselines",
    )
    return EXIT_PASSED


def _settings(args: argparse.Namespace) -> Settings:
    root = Path(args.root).resolve()
    settings = load_settings(root, Path(args.config) if args.config else None)
    overrides: dict[str, str] = {}
    if getattr(args, "tasks_dir", None):
        overrides["tasks_dir"] = args.tasks_dir
    if getattr(args, "output_dir", None):
        overrides["output_dir"] = args.output_dir
    return replace(settings, **overrides) if overrides else settings


def _setup_logging(root: Path, debug: bool) -> None:
    """Send the package's loggers to the audit log under the state directory."""
    path = log_file(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    # Repeated main() calls in one process replace the previous log file.
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="valgate",
        description="valgate -- cross-platform validation gate",
    )
    parser.add_argument("--root", default=".", help="Project root (default: current directory)")
    parser.add_argument("--config", default=None, help="Configuration file (default: valgate.yaml)")
    sub = parser.add_subparsers(dest="command")

    # valgate run
    run_p = sub.add_parser("run", help="Run the validation matrix and apply the gate")
    run_p.add_argument("--task", default="all", help="Comma-separated task names or 'all'")
    run_p.add_argument(
        "--platform", default="all", help="Comma-separated platform names or 'all'"
    )
    run_p.add_argument(
        "--output-format",
        default=DEFAULT_FORMATS,
        help=f"Comma-separated report formats (default: {DEFAULT_FORMATS})",
    )
    run_p.add_argument(
        "--timeout", type=_positive_int, default=None, help="Per-task timeout in milliseconds"
    )
    run_p.add_argument(
        "--debug",
        type=_parse_bool,
        nargs="?",
        const=True,
        default=False,
        help="Enable debug logging (true/false)",
    )
    run_p.add_argument("--tasks-dir", default=None, help="Override the task source directory")
    run_p.add_argument("--output-dir", default=None, help="Override the report directory")
    run_p.add_argument("--build-id", default=None, help="Build identity stored with baselines")

    # valgate aggregate
    agg_p = sub.add_parser("aggregate", help="Merge per-job reports and apply the gate")
    agg_p.add_argument(
        "--input-dir", required=True, help="Directory holding the per-job report artifacts"
    )
    agg_p.add_argument(
        "--output-format",
        default=DEFAULT_FORMATS,
        help=f"Comma-separated report formats (default: {DEFAULT_FORMATS})",
    )
    agg_p.add_argument("--output-dir", default=None, help="Override the report directory")
    agg_p.add_argument(
        "--debug",
        type=_parse_bool,
        nargs="?",
        const=True,
        default=False,
        help="Enable debug logging (true/false)",
    )

    # valgate discover
    sub.add_parser("discover", help="List tasks and write the CI job matrix")

    # valgate baselines
    sub.add_parser("baselines", help="Show stored baseline histories")

    return parser


COMMANDS = {
    "run": cmd_run,
    "aggregate": cmd_aggregate,
    "discover": cmd_discover,
    "baselines": cmd_baselines,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return EXIT_INTERNAL

    # -- Console configuration ----------------------------------------------
    configure(backend="auto")

    # -- Logging configuration (file-based audit log) -----------------------
    _setup_logging(Path(args.root).resolve(), getattr(args, "debug", False))

    try:
        return COMMANDS[args.command](args)
    except (ConfigError, TaskSourceError, ReportWriteError) as exc:
        logger.error("%s", exc)
        console.error(str(exc))
        return EXIT_INTERNAL


if __name__ == "__main__":
    sys.exit(main())
