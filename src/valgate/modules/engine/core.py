"""Execution engine: run one descriptor against one platform context.

The engine is synchronous and side-effect free: it reads the descriptor and
the platform context, scores every section through the scoring module and
returns an immutable ``ExecutionResult``. Pre-execution checks run first and
short-circuit to an ERROR result. Any exception raised while scoring is
contained and also becomes an ERROR result, so callers always get a result.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Collection, Mapping
from datetime import UTC, datetime

from valgate.domain.errors import PlatformUnavailableError
from valgate.domain.models import (
    ExecutionResult,
    ExecutionStatus,
    Issue,
    IssueType,
    PlatformContext,
    PointType,
    ValidationTaskDescriptor,
)
from valgate.modules.scoring.core import (
    DEFAULT_EVALUATORS,
    PointEvaluator,
    ScoringPolicy,
    SectionScore,
    category_scores,
    score_section,
)

logger = logging.getLogger("valgate.engine")

FAILED_BELOW = 4.0
WARNING_BELOW = 7.0
MAX_WARNINGS = 2


def derive_status(score: float, issues: tuple[Issue, ...]) -> ExecutionStatus:
    """Apply the status lattice to a successfully scored execution.

    A single CRITICAL issue forces FAILED regardless of the numeric score.
    """
    if any(i.type is IssueType.CRITICAL for i in issues) or score < FAILED_BELOW:
        return ExecutionStatus.FAILED
    warnings = sum(1 for i in issues if i.type is IssueType.WARNING)
    if score < WARNING_BELOW or warnings > MAX_WARNINGS:
        return ExecutionStatus.WARNING
    return ExecutionStatus.PASSED


def task_score(section_scores: tuple[SectionScore, ...]) -> float:
    """Arithmetic mean of the sections that have points."""
    scored = [ss.score for ss in section_scores if ss.point_scores]
    if not scored:
        return 0.0
    return min(max(sum(scored) / len(scored), 0.0), 10.0)


def error_result(
    task_name: str,
    platform: str,
    message: str,
    *,
    execution_time_ms: int = 0,
    category: str = "execution",
) -> ExecutionResult:
    """Build the ERROR result used for every contained failure."""
    return ExecutionResult(
        task_name=task_name,
        platform=platform,
        status=ExecutionStatus.ERROR,
        score=0.0,
        issues=(Issue(type=IssueType.CRITICAL, category=category, message=message),),
        execution_time_ms=execution_time_ms,
        timestamp=_now(),
        summary=message,
    )


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _summarize(
    status: ExecutionStatus,
    score: float,
    sections: int,
    issues: tuple[Issue, ...],
) -> str:
    critical = sum(1 for i in issues if i.type is IssueType.CRITICAL)
    warnings = len(issues) - critical
    if status is ExecutionStatus.PASSED:
        return (
            f"Validation passed with score {score:.1f}/10. "
            f"{sections} sections processed successfully."
        )
    if status is ExecutionStatus.WARNING:
        return (
            f"Validation passed with warnings, score {score:.1f}/10. "
            f"{warnings} warnings across {sections} sections."
        )
    return f"Validation failed with score {score:.1f}/10. {critical} critical issues found."


class ExecutionEngine:
    """Scores descriptors against platform contexts.

    Args:
        policy: Scoring tables and thresholds.
        evaluators: Point evaluators keyed by point type.
        known_tasks: Names of every discovered task; used to resolve
            ``depends_on``. ``None`` disables the dependency check.
    """

    def __init__(
        self,
        policy: ScoringPolicy | None = None,
        evaluators: Mapping[PointType, PointEvaluator] | None = None,
        known_tasks: Collection[str] | None = None,
    ) -> None:
        self._policy = policy or ScoringPolicy()
        self._evaluators = evaluators or DEFAULT_EVALUATORS
        self._known_tasks = frozenset(known_tasks) if known_tasks is not None else None

    def prevalidate(
        self,
        descriptor: ValidationTaskDescriptor,
        context: PlatformContext,
        *,
        requires_runtime: bool | None = None,
    ) -> None:
        """Check runtime, packages and dependencies before scoring.

        Raises:
            PlatformUnavailableError: with a message naming the unmet requirement.
        """
        profile = context.profile
        needs_runtime = (
            descriptor.runtime_required if requires_runtime is None else requires_runtime
        )
        if needs_runtime and (profile.headless or not profile.runtime_available):
            msg = f"{descriptor.name} requires a live runtime but {profile.name} has none available"
            raise PlatformUnavailableError(msg)

        missing = [p for p in descriptor.packages if not profile.has_package(p)]
        if missing:
            msg = f"{profile.name} is missing required packages: {', '.join(missing)}"
            raise PlatformUnavailableError(msg)

        if self._known_tasks is not None:
            unresolved = [d for d in descriptor.depends_on if d not in self._known_tasks]
            if unresolved:
                msg = f"{descriptor.name} depends on unknown tasks: {', '.join(unresolved)}"
                raise PlatformUnavailableError(msg)

    def execute(
        self,
        descriptor: ValidationTaskDescriptor,
        context: PlatformContext,
        *,
        requires_runtime: bool | None = None,
    ) -> ExecutionResult:
        """Execute a descriptor on a platform and return its result."""
        start = time.monotonic()
        try:
            self.prevalidate(descriptor, context, requires_runtime=requires_runtime)
        except PlatformUnavailableError as exc:
            logger.warning(
                "Pre-validation failed for %s on %s: %s", descriptor.name, context.name, exc
            )
            return error_result(
                descriptor.name,
                context.name,
                str(exc),
                execution_time_ms=_elapsed_ms(start),
                category="prevalidation",
            )

        try:
            section_scores = tuple(
                score_section(section, descriptor, context, self._policy, self._evaluators)
                for section in descriptor.sections
            )
            performance = context.sampler.summary() if context.sampler is not None else None
        except Exception as exc:
            logger.exception("Execution of %s on %s raised", descriptor.name, context.name)
            return error_result(
                descriptor.name,
                context.name,
                f"Execution raised {type(exc).__name__}: {exc}",
                execution_time_ms=_elapsed_ms(start),
            )

        score = round(task_score(section_scores), 2)
        issues = tuple(issue for ss in section_scores for issue in ss.issues)
        status = derive_status(score, issues)
        result = ExecutionResult(
            task_name=descriptor.name,
            platform=context.name,
            status=status,
            score=score,
            issues=issues,
            execution_time_ms=_elapsed_ms(start),
            timestamp=_now(),
            summary=_summarize(status, score, len(section_scores), issues),
            category_scores=tuple(category_scores(section_scores).items()),
            performance=performance,
        )
        logger.info(
            "%s on %s: %s (score %.2f, %d issues)",
            descriptor.name,
            context.name,
            status.value,
            score,
            len(issues),
        )
        return result


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
