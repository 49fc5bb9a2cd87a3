"""
wiring.py: Composition root for a validation run.

Builds the adapters from ``Settings``, then drives the pipeline:
discover → build matrix → execute (async, bounded) → aggregate →
regression check and baseline promotion → emit reports → gate decision.
``run_fan_in`` merges the structured reports of separate CI jobs and
applies the same gate.

Only ``TaskSourceError`` (task tree unreadable) and ``ReportWriteError``
(an artifact could not be written) escape from here; everything else is
contained and shows up in the report.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from valgate.adapters.baseline_store import JsonBaselineStore
from valgate.adapters.local_fs import LocalFileSystem
from valgate.adapters.platforms import LocalPlatformProvider
from valgate.config import MATRIX_FILE, TASKS_FILE, Settings
from valgate.console import console
from valgate.domain.errors import BaselineConflictError, ReportWriteError
from valgate.domain.models import (
    AggregateReport,
    BaselineEntry,
    DiscoveryFailure,
    MatrixEntry,
    PlatformProfile,
    RegressionResult,
    RunOutcome,
    TaskDescriptor,
)
from valgate.modules.aggregator.core import aggregate
from valgate.modules.emitter.core import (
    RENDERERS,
    build_annotations,
    emit,
    gate_decision,
    regression_from_dict,
    render_summary,
    render_workflow_commands,
)
from valgate.modules.engine.core import ExecutionEngine
from valgate.modules.regression.core import RegressionDetector
from valgate.modules.registry.core import RegistryConfig, TaskRegistry, build_matrix, ci_matrix
from valgate.modules.runner.core import MatrixRunner, RunnerConfig

logger = logging.getLogger("valgate.wiring")

ALL = "all"
BUILD_ID_VARIABLES = ("GITHUB_SHA", "CI_COMMIT_SHA", "BUILD_SOURCEVERSION")
TOTAL_STEPS = 5
FAN_IN_STEPS = 3
JOB_REPORT_FILE = RENDERERS["structured"][0]


@dataclass(frozen=True)
class RunRequest:
    """What the caller asked for on the command line."""

    tasks: str = ALL
    platforms: str = ALL
    formats: tuple[str, ...] = ("structured", "ci", "summary")
    timeout_ms: int | None = None
    build_id: str | None = None


def build_identity(explicit: str | None, env: Mapping[str, str]) -> str:
    """``--build-id``, else the first CI commit variable set, else ``local``."""
    if explicit:
        return explicit
    for name in BUILD_ID_VARIABLES:
        if env.get(name):
            return env[name]
    return "local"


def _split(selection: str) -> list[str]:
    return [part.strip() for part in selection.split(",") if part.strip()]


def select_tasks(
    tasks: Sequence[TaskDescriptor],
    failures: Sequence[DiscoveryFailure],
    selection: str,
) -> tuple[list[TaskDescriptor], list[DiscoveryFailure]]:
    if selection.strip().lower() == ALL:
        return list(tasks), list(failures)
    wanted = _split(selection)
    known = {t.name for t in tasks} | {f.name for f in failures}
    for name in wanted:
        if name not in known:
            logger.warning("Requested task %s was not discovered", name)
            console.warning(f"Task '{name}' was not found under the task directory")
    return (
        [t for t in tasks if t.name in wanted],
        [f for f in failures if f.name in wanted],
    )


def select_platforms(settings: Settings, selection: str) -> list[str]:
    if selection.strip().lower() == ALL:
        return list(settings.platforms)
    return list(dict.fromkeys(_split(selection)))


def make_registry(settings: Settings, fs: LocalFileSystem) -> TaskRegistry:
    config = RegistryConfig(
        task_glob=settings.task_glob,
        task_prefix=settings.task_prefix,
        cost_ceiling_ms=settings.cost_ceiling_ms,
        priorities=settings.priorities,
    )
    return TaskRegistry(fs, settings.tasks_dir, config=config, policy=settings.scoring)


def make_store(settings: Settings) -> JsonBaselineStore:
    return JsonBaselineStore(
        settings.resolve(settings.baseline_dir),
        history_limit=settings.regression.history_limit,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def run_pipeline(
    settings: Settings,
    request: RunRequest,
    env: Mapping[str, str],
) -> RunOutcome:
    """Run one full validation pass and write the requested reports.

    Raises:
        TaskSourceError: the task source tree cannot be read.
        ReportWriteError: a report artifact cannot be written.
    """
    started = time.monotonic()
    fs = LocalFileSystem(str(settings.root))

    console.step(1, TOTAL_STEPS, "Discovering tasks...")
    registry = make_registry(settings, fs)
    discovered = registry.discover()
    tasks, failures = select_tasks(discovered, registry.failures, request.tasks)
    console.step_detail(f"{len(tasks)} task(s) selected, {len(failures)} unparseable")

    platform_names = select_platforms(settings, request.platforms)
    profiles: dict[str, PlatformProfile] = {
        name: settings.platforms[name] for name in platform_names if name in settings.platforms
    }
    unknown = [name for name in platform_names if name not in profiles]
    for name in unknown:
        logger.warning("Unknown platform %s requested", name)
    matrix = build_matrix(tasks, list(profiles.values()))
    # Unknown platforms still get entries so they surface as ERROR results.
    matrix += [MatrixEntry(task=t, platform=name) for t in tasks for name in unknown]

    console.step(2, TOTAL_STEPS, f"Executing {len(matrix)} task/platform pair(s)...")
    engine = ExecutionEngine(settings.scoring, known_tasks=[t.name for t in discovered])
    provider = LocalPlatformProvider(
        settings.root,
        sampler_interval=settings.sampler_interval_seconds,
        sampler_window=settings.sampler_window,
    )
    runner = MatrixRunner(
        engine,
        provider,
        profiles,
        RunnerConfig(
            concurrency=settings.concurrency,
            timeout_ceiling_ms=settings.timeout_ceiling_ms,
            timeout_ms=request.timeout_ms,
        ),
    )
    results = asyncio.run(runner.run(matrix, failures, platform_names))

    console.step(3, TOTAL_STEPS, "Aggregating results...")
    report = aggregate(results)
    console.step_detail(
        f"{report.overall_status.value}: {report.passed_tasks} passed, "
        f"{report.failed_tasks} failed, {report.error_tasks} errors"
    )

    console.step(4, TOTAL_STEPS, "Checking for regressions...")
    identity = build_identity(request.build_id, env)
    detector = RegressionDetector(make_store(settings), settings.regression)
    regressions = detector.analyze_all(report.results, identity)
    detected = sum(1 for r in regressions if r.regression_detected)
    console.step_detail(f"{detected} regression(s) against baselines (build {identity})")

    console.step(5, TOTAL_STEPS, "Writing reports...")
    outcome = _write_reports(settings, fs, report, regressions, request.formats, env)
    logger.info(
        "Run finished in %.1fs: %s, gate %s",
        time.monotonic() - started,
        report.overall_status.value,
        "passed" if outcome.gate_passed else "blocked",
    )
    return outcome


def _write_reports(
    settings: Settings,
    fs: LocalFileSystem,
    report: AggregateReport,
    regressions: Sequence[RegressionResult],
    formats: Sequence[str],
    env: Mapping[str, str],
) -> RunOutcome:
    """Apply the gate, write every format and publish to the CI host if present."""
    gate_passed = gate_decision(report, regressions)
    written = emit(report, regressions, gate_passed, formats, fs, settings.output_dir)
    for path in written:
        console.step_detail(path)

    if "ci" in formats and env.get("GITHUB_ACTIONS") == "true":
        for line in render_workflow_commands(build_annotations(report, regressions)):
            console.raw(line)
    if "summary" in formats and env.get("GITHUB_STEP_SUMMARY"):
        publish_step_summary(
            Path(env["GITHUB_STEP_SUMMARY"]),
            render_summary(report, regressions, gate_passed),
        )
    return RunOutcome(
        report=report,
        regressions=tuple(regressions),
        gate_passed=gate_passed,
        written=written,
    )


# ---------------------------------------------------------------------------
# Cross-job fan-in
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JobReports:
    """What the per-job structured reports under an input directory hold."""

    records: tuple[object, ...]
    regressions: tuple[RegressionResult, ...]
    files: int
    rejected: int


def collect_job_reports(input_dir: Path, *, exclude: Path | None = None) -> JobReports:
    """Read every per-job structured report below ``input_dir``.

    Result records are returned unparsed so that the aggregator validates
    and counts them. A report that cannot be read at all counts as one
    rejected input. Files below ``exclude`` are skipped.
    """
    if not input_dir.is_dir():
        logger.warning("Job report directory %s does not exist", input_dir)
        return JobReports(records=(), regressions=(), files=0, rejected=0)

    records: list[object] = []
    regressions: list[RegressionResult] = []
    files = rejected = 0
    for path in sorted(input_dir.rglob(JOB_REPORT_FILE)):
        if exclude is not None and path.resolve().is_relative_to(exclude):
            continue
        files += 1
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            results = document["results"]
            if not isinstance(results, list):
                msg = "'results' is not a list"
                raise TypeError(msg)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            rejected += 1
            logger.error("Skipping unreadable job report %s: %s", path, exc)
            continue
        records.extend(results)
        for raw in document.get("regressions") or ():
            try:
                regressions.append(regression_from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping malformed regression in %s: %s", path, exc)
        logger.info("Collected %d result(s) from %s", len(results), path)
    return JobReports(
        records=tuple(records),
        regressions=tuple(sorted(regressions, key=lambda r: (r.task_name, r.platform))),
        files=files,
        rejected=rejected,
    )


def run_fan_in(
    settings: Settings,
    input_dir: Path,
    formats: Sequence[str],
    env: Mapping[str, str],
) -> RunOutcome:
    """Merge the structured reports of separate CI jobs into one gated report.

    Regressions are carried over from the job reports; baselines are not
    touched since every job already recorded its own.

    Raises:
        ReportWriteError: a report artifact cannot be written.
    """
    started = time.monotonic()
    fs = LocalFileSystem(str(settings.root))
    output = settings.resolve(settings.output_dir).resolve()

    console.step(1, FAN_IN_STEPS, f"Collecting job reports from {input_dir}...")
    jobs = collect_job_reports(input_dir, exclude=output)
    console.step_detail(
        f"{len(jobs.records)} result(s) from {jobs.files} report(s), "
        f"{jobs.rejected} unreadable"
    )

    console.step(2, FAN_IN_STEPS, "Aggregating results...")
    report = aggregate(jobs.records, rejected=jobs.rejected)
    console.step_detail(
        f"{report.overall_status.value}: {report.passed_tasks} passed, "
        f"{report.failed_tasks} failed, {report.error_tasks} errors, "
        f"{report.rejected_results} rejected"
    )

    console.step(3, FAN_IN_STEPS, "Writing reports...")
    outcome = _write_reports(settings, fs, report, jobs.regressions, formats, env)
    logger.info(
        "Fan-in finished in %.1fs: %s, gate %s",
        time.monotonic() - started,
        report.overall_status.value,
        "passed" if outcome.gate_passed else "blocked",
    )
    return outcome


def publish_step_summary(path: Path, markdown: str) -> None:
    """Append the summary to the CI job summary file."""
    try:
        with path.open("a", encoding="utf-8") as handle:
            handle.write(markdown)
    except OSError as exc:
        msg = f"Cannot append job summary to {path}: {exc}"
        raise ReportWriteError(msg) from exc


def run_discovery(
    settings: Settings,
) -> tuple[list[TaskDescriptor], list[DiscoveryFailure], tuple[str, ...]]:
    """Discover tasks and write the task list and CI job matrix files.

    Raises:
        TaskSourceError: the task source tree cannot be read.
        ReportWriteError: the discovery files cannot be written.
    """
    fs = LocalFileSystem(str(settings.root))
    registry = make_registry(settings, fs)
    tasks = registry.discover()
    documents = {
        TASKS_FILE: json.dumps([t.name for t in tasks], indent=2),
        MATRIX_FILE: json.dumps(ci_matrix(tasks), indent=2),
    }
    for path, content in documents.items():
        try:
            fs.write_file(path, content + "\n")
        except OSError as exc:
            msg = f"Cannot write {path}: {exc}"
            raise ReportWriteError(msg) from exc
    return tasks, registry.failures, tuple(documents)


def read_baselines(settings: Settings) -> dict[tuple[str, str], list[BaselineEntry]]:
    """Every stored baseline history, keyed by (task, platform)."""
    store = make_store(settings)
    histories: dict[tuple[str, str], list[BaselineEntry]] = {}
    for key in store.keys():
        try:
            histories[key] = store.read(key)
        except BaselineConflictError as exc:
            logger.error("Skipping baselines for %s/%s: %s", *key, exc)
    return histories
