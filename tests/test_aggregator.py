"""Tests for the result aggregator."""

from __future__ import annotations

import json
import random

import pytest

from valgate.domain.errors import AggregationInputError
from valgate.domain.models import ExecutionStatus, PerformanceSummary, Priority
from valgate.modules.aggregator.core import (
    aggregate,
    result_from_record,
    result_to_record,
    round_half_up,
)


@pytest.fixture()
def mixed_results(make_result, critical_issue):
    return [
        make_result(task_name="input", platform="desktop", score=9.0),
        make_result(task_name="input", platform="mobile", score=8.0),
        make_result(
            task_name="audio",
            platform="desktop",
            status=ExecutionStatus.FAILED,
            score=3.0,
            issues=(critical_issue,),
            timestamp="2026-01-02T00:00:00+00:00",
        ),
        make_result(
            task_name="audio",
            platform="mobile",
            status=ExecutionStatus.ERROR,
            score=0.0,
            execution_time_ms=0,
        ),
    ]


class TestAggregate:
    def test_counts_per_result(self, mixed_results) -> None:
        report = aggregate(mixed_results)

        assert report.total_tasks == 4
        assert report.passed_tasks == 2
        assert report.failed_tasks == 1
        assert report.error_tasks == 1
        assert report.total_critical_issues == 1
        assert report.overall_status is ExecutionStatus.ERROR

    def test_error_results_excluded_from_scores(self, mixed_results) -> None:
        report = aggregate(mixed_results)
        tasks = {t.task_name: t for t in report.task_details}
        platforms = {p.platform: p for p in report.platform_summary}

        assert tasks["audio"].mean_score == 3.0
        assert tasks["audio"].status is ExecutionStatus.ERROR
        assert platforms["mobile"].mean_score == 8.0
        assert platforms["mobile"].pass_rate == 0.5
        # mean of task means (8.5 and 3.0) is 5.75
        assert report.overall_score == 6

    def test_order_independent(self, mixed_results) -> None:
        shuffled = list(mixed_results)
        random.Random(7).shuffle(shuffled)

        assert aggregate(shuffled) == aggregate(mixed_results)

    def test_idempotent(self, mixed_results) -> None:
        report = aggregate(mixed_results)

        assert aggregate(report.results) == report

    def test_timestamp_is_latest(self, mixed_results) -> None:
        assert aggregate(mixed_results).timestamp == "2026-01-02T00:00:00+00:00"

    def test_no_results(self) -> None:
        report = aggregate([])

        assert report.overall_status is ExecutionStatus.NO_RESULTS
        assert report.overall_score == 0
        assert report.recommendations == ()

    def test_malformed_results_rejected(self, make_result) -> None:
        report = aggregate(
            ["not a result", make_result(score=11.0), make_result(task_name=""), make_result()]
        )

        assert report.rejected_results == 3
        assert report.total_tasks == 1
        assert report.overall_status is ExecutionStatus.PASSED

    def test_only_rejected_is_no_results(self, make_result) -> None:
        report = aggregate([make_result(execution_time_ms=-1)])

        assert report.overall_status is ExecutionStatus.NO_RESULTS
        assert report.rejected_results == 1

    def test_low_mean_is_warning(self, make_result) -> None:
        report = aggregate([make_result(status=ExecutionStatus.WARNING, score=6.0)])

        assert report.overall_status is ExecutionStatus.WARNING

    def test_half_up_rounding(self, make_result) -> None:
        report = aggregate([make_result(score=7.5)])

        assert report.overall_score == 8
        assert round_half_up(6.5) == 7
        assert round_half_up(6.49) == 6


class TestRecommendations:
    def test_ready_for_deployment(self, make_result) -> None:
        report = aggregate([make_result()])

        assert [(r.priority, r.scope) for r in report.recommendations] == [
            (Priority.LOW, "system")
        ]

    def test_failures_and_errors_are_high(self, mixed_results) -> None:
        recs = aggregate(mixed_results).recommendations
        high = [r for r in recs if r.priority is Priority.HIGH]

        assert any("errored on mobile" in r.message for r in high)
        assert recs == tuple(sorted(recs, key=lambda r: r.priority != Priority.HIGH))

    def test_task_failing_everywhere(self, make_result) -> None:
        results = [
            make_result(task_name="a", platform=p, status=ExecutionStatus.FAILED, score=3.0)
            for p in ("desktop", "mobile")
        ]
        recs = aggregate(results).recommendations

        assert any(r.target == "a" and "Fails on all 2" in r.message for r in recs)
        assert any(r.scope == "system" and r.priority is Priority.HIGH for r in recs)

    def test_trailing_platform(self, make_result) -> None:
        results = [
            make_result(task_name="a", platform="desktop", score=9.0),
            make_result(
                task_name="a", platform="mobile", status=ExecutionStatus.WARNING, score=6.0
            ),
        ]
        recs = aggregate(results).recommendations

        assert [(r.scope, r.target) for r in recs if r.priority is Priority.MEDIUM] == [
            ("platform", "mobile")
        ]

    def test_recurring_critical_category(self, make_result, critical_issue) -> None:
        results = [
            make_result(
                task_name=name, status=ExecutionStatus.FAILED, score=5.0, issues=(critical_issue,)
            )
            for name in ("a", "b")
        ]
        recs = aggregate(results).recommendations

        assert any(r.scope == "category" and r.target == "performance" for r in recs)


class TestResultRecords:
    def test_record_restores_the_result(self, make_result, critical_issue) -> None:
        result = make_result(
            status=ExecutionStatus.FAILED,
            score=3.5,
            issues=(critical_issue,),
            category_scores=(("performance", 2.0), ("setup", 9.0)),
            performance=PerformanceSummary(
                fps_mean=42.0, frame_time_ms_mean=23.8, total_memory_mb=640.0, sample_count=12
            ),
        )

        record = result_to_record(result)

        assert record["issues"][0]["type"] == "CRITICAL"
        assert record["performance"]["sampleCount"] == 12
        assert result_from_record(json.loads(json.dumps(record))) == result

    def test_records_aggregate_like_results(self, mixed_results) -> None:
        records = [result_to_record(r) for r in mixed_results]

        assert aggregate(records) == aggregate(mixed_results)

    def test_malformed_records_are_counted(self, make_result) -> None:
        bad_status = result_to_record(make_result())
        bad_status["status"] = "SKIPPED"
        records = [
            result_to_record(make_result()),
            {"platform": "desktop", "status": "PASSED", "score": 9.0},
            bad_status,
            {**result_to_record(make_result(platform="mobile")), "score": 12.0},
        ]

        report = aggregate(records, rejected=1)

        assert report.total_tasks == 1
        assert report.rejected_results == 4

    def test_unreadable_record_error(self) -> None:
        with pytest.raises(AggregationInputError, match="KeyError"):
            result_from_record({"platform": "desktop"})
