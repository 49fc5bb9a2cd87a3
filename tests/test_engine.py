"""Tests for the execution engine."""

from __future__ import annotations

import pytest

from valgate.domain.models import (
    ExecutionStatus,
    Issue,
    IssueType,
    PointType,
    Section,
)
from valgate.modules.engine.core import ExecutionEngine, derive_status, error_result
from valgate.modules.sampler.core import PerformanceSampler


def _warning(n: int) -> tuple[Issue, ...]:
    return tuple(Issue(type=IssueType.WARNING, category=f"c{i}", message="m") for i in range(n))


class TestDeriveStatus:
    @pytest.mark.parametrize(
        ("score", "issues", "expected"),
        [
            (9.0, (), ExecutionStatus.PASSED),
            (6.9, (), ExecutionStatus.WARNING),
            (3.9, (), ExecutionStatus.FAILED),
            (9.0, _warning(3), ExecutionStatus.WARNING),
            (9.0, _warning(2), ExecutionStatus.PASSED),
            (9.5, (Issue(IssueType.CRITICAL, "c", "m"),), ExecutionStatus.FAILED),
        ],
    )
    def test_lattice(self, score, issues, expected) -> None:
        assert derive_status(score, issues) is expected


class TestExecute:
    """Scoring a descriptor on a platform context."""

    def test_weighted_points_all_passing(self, make_point, make_descriptor, make_context) -> None:
        points = tuple(
            make_point(category=f"setup {i}", weight=w) for i, w in enumerate((1.0, 2.0, 1.0))
        )
        descriptor = make_descriptor(sections=(Section(number=1, title="S", points=points),))

        result = ExecutionEngine().execute(descriptor, make_context())

        assert result.score == 10.0
        assert result.status is ExecutionStatus.PASSED
        assert result.issues == ()
        assert result.summary.startswith("Validation passed with score 10.0/10")
        assert dict(result.category_scores) == {"configuration": 10.0}

    def test_missing_runtime_is_error(self, make_descriptor, make_context) -> None:
        descriptor = make_descriptor(runtime_required=True)
        context = make_context("ci", headless=True, runtime_available=False)

        result = ExecutionEngine().execute(descriptor, context)

        assert result.status is ExecutionStatus.ERROR
        assert result.score == 0.0
        assert result.issues[0].type is IssueType.CRITICAL
        assert result.issues[0].category == "prevalidation"
        assert "requires a live runtime" in result.summary

    def test_requires_runtime_override(self, make_descriptor, make_context) -> None:
        context = make_context("ci", headless=True)

        result = ExecutionEngine().execute(make_descriptor(), context, requires_runtime=True)

        assert result.status is ExecutionStatus.ERROR

    def test_missing_package_is_error(self, make_descriptor, make_context) -> None:
        descriptor = make_descriptor(packages=("com.vendor.audio",))
        context = make_context(capabilities=("com.vendor.input",))

        result = ExecutionEngine().execute(descriptor, context)

        assert result.status is ExecutionStatus.ERROR
        assert "com.vendor.audio" in result.summary

    def test_unknown_dependency_is_error(self, make_descriptor, make_context) -> None:
        descriptor = make_descriptor(depends_on=("missing-task",))
        engine = ExecutionEngine(known_tasks=["input-system"])

        result = engine.execute(descriptor, make_context())

        assert result.status is ExecutionStatus.ERROR
        assert "missing-task" in result.summary

    def test_critical_point_forces_failed(self, make_point, make_descriptor, make_context) -> None:
        points = tuple(make_point(category=f"c{i}") for i in range(10))
        descriptor = make_descriptor(sections=(Section(number=1, title="S", points=points),))
        context = make_context(outcomes=(("c0", 0.0),))

        result = ExecutionEngine().execute(descriptor, context)

        assert result.score == 9.0
        assert result.status is ExecutionStatus.FAILED

    def test_evaluator_exception_is_contained(
        self, make_descriptor, make_context
    ) -> None:
        def boom(point, descriptor, context, policy):
            raise RuntimeError("evaluator crashed")

        engine = ExecutionEngine(evaluators={PointType.CONFIGURATION: boom})

        result = engine.execute(make_descriptor(), make_context())

        assert result.status is ExecutionStatus.ERROR
        assert "evaluator crashed" in result.summary

    def test_sections_without_points_are_skipped(
        self, make_point, make_descriptor, make_context
    ) -> None:
        sections = (
            Section(number=1, title="Empty"),
            Section(number=2, title="Full", points=(make_point(),)),
        )

        result = ExecutionEngine().execute(make_descriptor(sections=sections), make_context())

        assert result.score == 10.0

    def test_performance_summary_from_sampler(
        self, make_point, make_descriptor, make_context, make_sample
    ) -> None:
        sampler = PerformanceSampler()
        sampler.record(make_sample(timestamp=0.0, fps=58.0, frame_time_ms=17.0))
        sampler.record(make_sample(timestamp=1.0, fps=60.0, frame_time_ms=16.0))
        point = make_point(category="Frame rate", type=PointType.PERFORMANCE)
        descriptor = make_descriptor(sections=(Section(number=1, title="P", points=(point,)),))

        result = ExecutionEngine().execute(descriptor, make_context(sampler=sampler))

        assert result.status is ExecutionStatus.PASSED
        assert result.performance is not None
        assert result.performance.fps_mean == 59.0
        assert result.performance.sample_count == 2

    def test_sampler_threshold_breach_lowers_score(
        self, make_point, make_descriptor, make_context, make_sample
    ) -> None:
        sampler = PerformanceSampler()
        sampler.record(make_sample(fps=20.0, frame_time_ms=50.0))
        point = make_point(category="Frame rate", type=PointType.PERFORMANCE)
        descriptor = make_descriptor(sections=(Section(number=1, title="P", points=(point,)),))

        result = ExecutionEngine().execute(descriptor, make_context(sampler=sampler))

        assert result.status is ExecutionStatus.FAILED
        assert result.score == 0.0


def test_error_result_shape() -> None:
    result = error_result("t", "desktop", "boom", execution_time_ms=12, category="timeout")

    assert result.status is ExecutionStatus.ERROR
    assert result.score == 0.0
    assert result.execution_time_ms == 12
    assert result.issues[0].category == "timeout"
    assert result.summary == "boom"
