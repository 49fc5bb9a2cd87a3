"""Result aggregator: pure reduction of execution results into a report.

``aggregate`` sorts its input before reducing, so the report never depends
on completion order and re-aggregating the same results yields an equal
report. Malformed inputs are excluded, logged and counted.

ERROR results count toward ``error_tasks`` but are excluded from every score
statistic.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from valgate.domain.errors import AggregationInputError
from valgate.domain.models import (
    AggregateReport,
    ExecutionResult,
    ExecutionStatus,
    Issue,
    IssueType,
    PerformanceSummary,
    PlatformOutcome,
    PlatformRollup,
    Priority,
    Recommendation,
    TaskRollup,
)

logger = logging.getLogger("valgate.aggregator")

WARNING_BELOW = 7.0
STRUCTURAL_BELOW = 5.0
PLATFORM_GAP = 2.0

_STATUS_RANK = {
    ExecutionStatus.PASSED: 0,
    ExecutionStatus.WARNING: 1,
    ExecutionStatus.FAILED: 2,
    ExecutionStatus.ERROR: 3,
}
_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}
_ISSUE_RANK = {IssueType.CRITICAL: 0, IssueType.WARNING: 1}


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def validate_result(result: object) -> ExecutionResult:
    """Return the result if it is well formed.

    A mapping is read as a result record, as collected from job reports.

    Raises:
        AggregationInputError: describing what is wrong with the input.
    """
    if isinstance(result, Mapping):
        result = result_from_record(result)
    if not isinstance(result, ExecutionResult):
        msg = f"expected ExecutionResult, got {type(result).__name__}"
        raise AggregationInputError(msg)
    if not result.task_name or not result.platform:
        msg = "result is missing its task name or platform"
        raise AggregationInputError(msg)
    if result.status not in _STATUS_RANK:
        msg = f"{result.task_name}/{result.platform}: invalid status {result.status}"
        raise AggregationInputError(msg)
    if not isinstance(result.score, int | float) or not 0.0 <= result.score <= 10.0:
        msg = f"{result.task_name}/{result.platform}: score {result.score!r} outside [0, 10]"
        raise AggregationInputError(msg)
    if result.execution_time_ms < 0:
        msg = f"{result.task_name}/{result.platform}: negative execution time"
        raise AggregationInputError(msg)
    return result


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------


def result_to_record(result: ExecutionResult) -> dict[str, Any]:
    """camelCase record of one result, as carried in the structured report."""
    perf = result.performance
    return {
        "taskName": result.task_name,
        "platform": result.platform,
        "status": result.status.value,
        "score": result.score,
        "executionTimeMs": result.execution_time_ms,
        "timestamp": result.timestamp,
        "summary": result.summary,
        "issues": [
            {"type": i.type.value, "category": i.category, "message": i.message}
            for i in result.issues
        ],
        "categoryScores": dict(result.category_scores),
        "performance": None
        if perf is None
        else {
            "fpsMean": perf.fps_mean,
            "frameTimeMsMean": perf.frame_time_ms_mean,
            "totalMemoryMb": perf.total_memory_mb,
            "sampleCount": perf.sample_count,
        },
    }


def result_from_record(record: Mapping[str, Any]) -> ExecutionResult:
    """Rebuild a result from ``result_to_record`` output.

    Raises:
        AggregationInputError: when a field is missing or has the wrong shape.
    """
    try:
        perf = record.get("performance")
        return ExecutionResult(
            task_name=str(record["taskName"]),
            platform=str(record["platform"]),
            status=ExecutionStatus(record["status"]),
            score=float(record["score"]),
            issues=tuple(
                Issue(IssueType(i["type"]), str(i["category"]), str(i["message"]))
                for i in record.get("issues") or ()
            ),
            execution_time_ms=int(record.get("executionTimeMs", 0)),
            timestamp=str(record.get("timestamp", "")),
            summary=str(record.get("summary", "")),
            category_scores=tuple(
                sorted(
                    (str(k), float(v)) for k, v in (record.get("categoryScores") or {}).items()
                )
            ),
            performance=None
            if perf is None
            else PerformanceSummary(
                fps_mean=float(perf["fpsMean"]),
                frame_time_ms_mean=float(perf["frameTimeMsMean"]),
                total_memory_mb=float(perf["totalMemoryMb"]),
                sample_count=int(perf["sampleCount"]),
            ),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        msg = f"unreadable result record: {type(exc).__name__}: {exc}"
        raise AggregationInputError(msg) from exc


def _sort_key(result: ExecutionResult) -> tuple[str, str, int, float, str, int, str]:
    return (
        result.task_name,
        result.platform,
        _STATUS_RANK[result.status],
        result.score,
        result.timestamp,
        result.execution_time_ms,
        result.summary,
    )


def _worst_status(statuses: Iterable[ExecutionStatus]) -> ExecutionStatus:
    return max(statuses, key=_STATUS_RANK.__getitem__, default=ExecutionStatus.PASSED)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _scored(results: Iterable[ExecutionResult]) -> list[float]:
    return [r.score for r in results if r.status is not ExecutionStatus.ERROR]


def _unique_issues(results: Iterable[ExecutionResult]) -> tuple[Issue, ...]:
    issues = {issue for r in results for issue in r.issues}
    return tuple(sorted(issues, key=lambda i: (_ISSUE_RANK[i.type], i.category, i.message)))


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------


def rollup_tasks(results: Sequence[ExecutionResult]) -> tuple[TaskRollup, ...]:
    by_task: dict[str, list[ExecutionResult]] = defaultdict(list)
    for result in results:
        by_task[result.task_name].append(result)

    rollups: list[TaskRollup] = []
    for task_name in sorted(by_task):
        task_results = by_task[task_name]
        scores = _scored(task_results)
        rollups.append(
            TaskRollup(
                task_name=task_name,
                status=_worst_status(r.status for r in task_results),
                mean_score=round(_mean(scores), 2),
                best_score=max(scores, default=0.0),
                worst_score=min(scores, default=0.0),
                total_execution_time_ms=sum(r.execution_time_ms for r in task_results),
                platforms=tuple(
                    (
                        r.platform,
                        PlatformOutcome(
                            status=r.status,
                            score=r.score,
                            execution_time_ms=r.execution_time_ms,
                            summary=r.summary,
                        ),
                    )
                    for r in task_results
                ),
                issues=_unique_issues(task_results),
            )
        )
    return tuple(rollups)


def rollup_platforms(results: Sequence[ExecutionResult]) -> tuple[PlatformRollup, ...]:
    by_platform: dict[str, list[ExecutionResult]] = defaultdict(list)
    for result in results:
        by_platform[result.platform].append(result)

    rollups: list[PlatformRollup] = []
    for platform in sorted(by_platform):
        platform_results = by_platform[platform]
        counts = {status: 0 for status in _STATUS_RANK}
        for r in platform_results:
            counts[r.status] += 1
        total = len(platform_results)
        rollups.append(
            PlatformRollup(
                platform=platform,
                total_tasks=total,
                passed_tasks=counts[ExecutionStatus.PASSED],
                warning_tasks=counts[ExecutionStatus.WARNING],
                failed_tasks=counts[ExecutionStatus.FAILED],
                error_tasks=counts[ExecutionStatus.ERROR],
                pass_rate=round(counts[ExecutionStatus.PASSED] / total, 4),
                mean_score=round(_mean(_scored(platform_results)), 2),
                total_execution_time_ms=sum(r.execution_time_ms for r in platform_results),
            )
        )
    return tuple(rollups)


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


def recommend(
    status: ExecutionStatus,
    mean_score: float,
    tasks: Sequence[TaskRollup],
    platforms: Sequence[PlatformRollup],
    results: Sequence[ExecutionResult],
) -> tuple[Recommendation, ...]:
    """Apply the recommendation rule table to the rollups."""
    recs: list[Recommendation] = []
    has_scores = bool(_scored(results))

    if has_scores and mean_score < STRUCTURAL_BELOW:
        recs.append(
            Recommendation(
                priority=Priority.HIGH,
                scope="system",
                target="all",
                message=(
                    f"Mean score is {mean_score:.1f}/10 across all tasks; review the task "
                    "definitions and platform setup before deploying."
                ),
            )
        )

    for task in tasks:
        outcomes = [outcome for _, outcome in task.platforms]
        errored = sorted(p for p, o in task.platforms if o.status is ExecutionStatus.ERROR)
        if errored:
            recs.append(
                Recommendation(
                    priority=Priority.HIGH,
                    scope="task",
                    target=task.task_name,
                    message=(
                        f"Execution errored on {', '.join(errored)}; "
                        "fix the platform setup before re-running."
                    ),
                )
            )
        if outcomes and all(o.status is ExecutionStatus.FAILED for o in outcomes):
            recs.append(
                Recommendation(
                    priority=Priority.HIGH,
                    scope="task",
                    target=task.task_name,
                    message=(
                        f"Fails on all {len(outcomes)} platform(s) "
                        f"(worst score {task.worst_score:.1f}/10); address its critical issues."
                    ),
                )
            )

    scored_platforms = [p for p in platforms if p.total_tasks > p.error_tasks]
    if len(scored_platforms) >= 2:
        for platform in scored_platforms:
            others = [p.mean_score for p in scored_platforms if p.platform != platform.platform]
            others_mean = _mean(others)
            if others_mean - platform.mean_score >= PLATFORM_GAP:
                recs.append(
                    Recommendation(
                        priority=Priority.MEDIUM,
                        scope="platform",
                        target=platform.platform,
                        message=(
                            f"Mean score {platform.mean_score:.1f}/10 trails other platforms "
                            f"({others_mean:.1f}/10); review platform-specific configuration."
                        ),
                    )
                )

    critical_hits: dict[str, int] = defaultdict(int)
    for result in results:
        if result.status is ExecutionStatus.ERROR:
            continue
        for category in {i.category for i in result.issues if i.type is IssueType.CRITICAL}:
            critical_hits[category] += 1
    for category, hits in critical_hits.items():
        if hits >= 2:
            recs.append(
                Recommendation(
                    priority=Priority.MEDIUM,
                    scope="category",
                    target=category,
                    message=f"Critical issues in '{category}' recur across {hits} executions.",
                )
            )

    if status is ExecutionStatus.PASSED:
        recs.append(
            Recommendation(
                priority=Priority.LOW,
                scope="system",
                target="all",
                message="All validations passed; the build is ready for deployment.",
            )
        )

    recs.sort(key=lambda r: (_PRIORITY_RANK[r.priority], r.scope, r.target, r.message))
    return tuple(recs)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def overall_status(results: Sequence[ExecutionResult], mean_score: float) -> ExecutionStatus:
    if not results:
        return ExecutionStatus.NO_RESULTS
    statuses = {r.status for r in results}
    if ExecutionStatus.ERROR in statuses:
        return ExecutionStatus.ERROR
    if ExecutionStatus.FAILED in statuses:
        return ExecutionStatus.FAILED
    if any(r.critical_count for r in results) or mean_score < WARNING_BELOW:
        return ExecutionStatus.WARNING
    return ExecutionStatus.PASSED


def aggregate(results: Iterable[object], *, rejected: int = 0) -> AggregateReport:
    """Reduce a completed result set into an ``AggregateReport``.

    Args:
        results: Execution results or result records, in any order. Anything
            that is not a well-formed result is excluded and counted in
            ``rejected_results``.
        rejected: Inputs already discarded upstream, such as unreadable job
            reports; added to ``rejected_results``.
    """
    valid: list[ExecutionResult] = []
    for item in results:
        try:
            valid.append(validate_result(item))
        except AggregationInputError as exc:
            rejected += 1
            logger.error("Excluding malformed result: %s", exc)
    valid.sort(key=_sort_key)

    tasks = rollup_tasks(valid)
    platforms = rollup_platforms(valid)
    task_means = [
        t.mean_score
        for t in tasks
        if any(o.status is not ExecutionStatus.ERROR for _, o in t.platforms)
    ]
    mean_score = _mean(task_means)
    status = overall_status(valid, mean_score)

    counts = {s: 0 for s in _STATUS_RANK}
    for r in valid:
        counts[r.status] += 1

    report = AggregateReport(
        overall_status=status,
        overall_score=round_half_up(mean_score),
        total_tasks=len(valid),
        passed_tasks=counts[ExecutionStatus.PASSED],
        warning_tasks=counts[ExecutionStatus.WARNING],
        failed_tasks=counts[ExecutionStatus.FAILED],
        error_tasks=counts[ExecutionStatus.ERROR],
        total_critical_issues=sum(r.critical_count for r in valid),
        total_warnings=sum(r.warning_count for r in valid),
        total_execution_time_ms=sum(r.execution_time_ms for r in valid),
        platform_summary=platforms,
        task_details=tasks,
        recommendations=recommend(status, mean_score, tasks, platforms, valid),
        results=tuple(valid),
        rejected_results=rejected,
        timestamp=max((r.timestamp for r in valid), default=""),
    )
    logger.info(
        "Aggregated %d result(s): %s, score %d",
        report.total_tasks,
        status.value,
        report.overall_score,
    )
    return report
