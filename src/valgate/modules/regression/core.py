"""Regression detector: compare results against bounded baseline histories.

``detect`` is pure: it takes the history as an argument. ``RegressionDetector``
wraps it with the store's per-key critical section so that the read, the
comparison and the append of the new baseline entry happen as one step, in
completion order, and the history is never touched before detection.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from valgate.domain.errors import BaselineConflictError, RegressionBaselineMissing
from valgate.domain.models import (
    BaselineEntry,
    ExecutionResult,
    ExecutionStatus,
    RegressionResult,
    Severity,
)

if TYPE_CHECKING:
    from valgate.domain.ports import BaselineStore

logger = logging.getLogger("valgate.regression")

# Lower bound of each band, checked in order.
SEVERITY_BANDS: tuple[tuple[float, Severity], ...] = (
    (30.0, Severity.CRITICAL),
    (15.0, Severity.MAJOR),
)

# Metrics where an increase is a regression.
RISING_METRICS: tuple[str, ...] = ("frame_time_ms_mean", "total_memory_mb")


@dataclass(frozen=True)
class RegressionConfig:
    threshold_percent: float = 10.0
    window: int = 5
    history_limit: int = 10


def baseline_score(history: Sequence[BaselineEntry], window: int) -> float:
    """Mean overall score of the most recent ``min(window, len(history))`` entries."""
    recent = history[-window:]
    return sum(e.overall_score for e in recent) / len(recent)


def regression_percentage(baseline: float, current: float) -> float:
    """Percentage drop from baseline to current; 0 when the baseline is not positive."""
    if baseline <= 0:
        return 0.0
    return (baseline - current) / baseline * 100.0


def classify_severity(percentage: float, threshold_percent: float) -> Severity:
    if percentage <= threshold_percent:
        return Severity.NONE
    for lower, severity in SEVERITY_BANDS:
        if percentage >= lower:
            return severity
    return Severity.MINOR


def _category_regressions(
    current: ExecutionResult,
    history: Sequence[BaselineEntry],
    config: RegressionConfig,
) -> list[tuple[str, float]]:
    found: list[tuple[str, float]] = []
    for category, score in current.category_scores:
        past = [
            dict(e.category_scores)[category]
            for e in history
            if category in dict(e.category_scores)
        ]
        if not past:
            continue
        recent = past[-config.window :]
        pct = regression_percentage(sum(recent) / len(recent), score)
        if pct > config.threshold_percent:
            found.append((category, pct))
    return found


def _metric_regressions(
    current: ExecutionResult,
    history: Sequence[BaselineEntry],
    config: RegressionConfig,
) -> list[tuple[str, float]]:
    if current.performance is None:
        return []
    now = metrics_for(current)
    found: list[tuple[str, float]] = []
    for metric in RISING_METRICS:
        past = [dict(e.metrics)[metric] for e in history if metric in dict(e.metrics)]
        if not past or metric not in now:
            continue
        recent = past[-config.window :]
        before = sum(recent) / len(recent)
        if before <= 0:
            continue
        increase = (now[metric] - before) / before * 100.0
        if increase > config.threshold_percent:
            found.append((f"metric:{metric.removesuffix('_mean')}", increase))
    return found


def _actions(
    task_name: str,
    platform: str,
    severity: Severity,
    percentage: float,
    affected: Sequence[tuple[str, float]],
    history: Sequence[BaselineEntry],
) -> tuple[str, ...]:
    if severity is Severity.NONE:
        return ()
    last_build = history[-1].build_identity
    headline = {
        Severity.CRITICAL: "Block deployment",
        Severity.MAJOR: "Investigate before release",
        Severity.MINOR: "Monitor",
    }[severity]
    actions = [
        f"{headline}: {task_name} on {platform} is {percentage:.1f}% below its baseline.",
        f"Compare against baseline build {last_build}.",
    ]
    actions += [f"Review {name} (regressed {pct:.1f}%)." for name, pct in affected]
    return tuple(actions)


def _require_history(task_name: str, platform: str, history: Sequence[BaselineEntry]) -> None:
    if not history:
        msg = f"No baseline for {task_name} on {platform}"
        raise RegressionBaselineMissing(msg)


def detect(
    task_name: str,
    platform: str,
    current: ExecutionResult,
    history: Sequence[BaselineEntry],
    config: RegressionConfig | None = None,
) -> RegressionResult:
    """Compare ``current`` against ``history`` (oldest first).

    An empty history is not a failure: the result reports
    ``baseline_established=True`` and no regression.
    """
    config = config or RegressionConfig()
    try:
        _require_history(task_name, platform, history)
    except RegressionBaselineMissing as signal:
        logger.info("%s; this run establishes it", signal)
        return RegressionResult(
            task_name=task_name,
            platform=platform,
            regression_detected=False,
            current_score=current.score,
            baseline_score=None,
            regression_percentage=0.0,
            severity=Severity.NONE,
            baseline_established=True,
        )

    baseline = baseline_score(history, config.window)
    percentage = regression_percentage(baseline, current.score)
    severity = classify_severity(percentage, config.threshold_percent)
    detected = severity is not Severity.NONE
    affected = _category_regressions(current, history, config) + _metric_regressions(
        current, history, config
    )
    if detected:
        logger.warning(
            "Regression on %s/%s: %.1f%% below baseline %.2f (%s)",
            task_name,
            platform,
            percentage,
            baseline,
            severity.value,
        )
    return RegressionResult(
        task_name=task_name,
        platform=platform,
        regression_detected=detected,
        current_score=current.score,
        baseline_score=round(baseline, 4),
        regression_percentage=round(percentage, 2),
        severity=severity,
        affected_categories=tuple(sorted(name for name, _ in affected)),
        recommended_actions=_actions(task_name, platform, severity, percentage, affected, history),
    )


def metrics_for(result: ExecutionResult) -> dict[str, float]:
    perf = result.performance
    if perf is None:
        return {}
    return {
        "fps_mean": perf.fps_mean,
        "frame_time_ms_mean": perf.frame_time_ms_mean,
        "total_memory_mb": perf.total_memory_mb,
    }


def entry_from_result(result: ExecutionResult, build_identity: str) -> BaselineEntry:
    return BaselineEntry(
        timestamp=result.timestamp,
        overall_score=result.score,
        category_scores=result.category_scores,
        build_identity=build_identity,
        metrics=tuple(sorted(metrics_for(result).items())),
    )


class RegressionDetector:
    """Runs detection and baseline promotion against a ``BaselineStore``."""

    def __init__(self, store: BaselineStore, config: RegressionConfig | None = None) -> None:
        self._store = store
        self._config = config or RegressionConfig()

    def analyze(self, result: ExecutionResult, build_identity: str) -> RegressionResult | None:
        """Detect, then append the result as a new baseline entry.

        ERROR results are neither checked nor promoted, and a key whose
        baseline file belongs to another key is left alone; both return None.
        """
        if result.status is ExecutionStatus.ERROR:
            logger.debug(
                "Skipping regression check for errored %s/%s", result.task_name, result.platform
            )
            return None
        key = (result.task_name, result.platform)
        with self._store.lock(key):
            try:
                history = self._store.read(key)
            except BaselineConflictError as exc:
                logger.error("Skipping regression check for %s/%s: %s", *key, exc)
                return None
            regression = detect(result.task_name, result.platform, result, history, self._config)
            self._store.append(key, entry_from_result(result, build_identity))
        return regression

    def analyze_all(
        self,
        results: Iterable[ExecutionResult],
        build_identity: str,
    ) -> tuple[RegressionResult, ...]:
        """Analyze results in completion order; return regressions sorted by key."""
        analyzed = (self.analyze(result, build_identity) for result in results)
        found = [r for r in analyzed if r is not None]
        return tuple(sorted(found, key=lambda r: (r.task_name, r.platform)))
