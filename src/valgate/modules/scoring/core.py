"""Scoring model: weighted point scoring shared by the execution engine.

Turns validation points into point scores in ``[0, 3 * weight]``, sections
into scores in ``[0, 10]``, and emits issues for points that fall below the
policy thresholds. Category → type/weight lookups live in an injectable
``ScoringPolicy`` table rather than in code, and per-type evaluators are
registered in a plain dict so new point types can be added without touching
the scoring core.

This module depends only on domain/ types and has zero external imports beyond stdlib.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from valgate.domain.models import (
    Issue,
    IssueType,
    PlatformContext,
    PointType,
    Section,
    ValidationPoint,
    ValidationTaskDescriptor,
)

logger = logging.getLogger("valgate.scoring")

# Keyword → point type, first match wins. Keywords are matched against the
# lower-cased category text.
DEFAULT_TYPE_RULES: tuple[tuple[str, PointType], ...] = (
    ("performance", PointType.PERFORMANCE),
    ("frame", PointType.PERFORMANCE),
    ("fps", PointType.PERFORMANCE),
    ("memory", PointType.PERFORMANCE),
    ("latency", PointType.PERFORMANCE),
    ("optimiz", PointType.PERFORMANCE),
    ("security", PointType.SECURITY),
    ("auth", PointType.SECURITY),
    ("permission", PointType.SECURITY),
    ("encrypt", PointType.SECURITY),
    ("secret", PointType.SECURITY),
    ("integration", PointType.INTEGRATION),
    ("dependenc", PointType.INTEGRATION),
    ("package", PointType.INTEGRATION),
    ("service", PointType.INTEGRATION),
    ("pipeline", PointType.INTEGRATION),
    ("config", PointType.CONFIGURATION),
    ("setting", PointType.CONFIGURATION),
    ("setup", PointType.CONFIGURATION),
    ("functional", PointType.FUNCTIONAL),
    ("behavio", PointType.FUNCTIONAL),
    ("feature", PointType.FUNCTIONAL),
    ("workflow", PointType.FUNCTIONAL),
    ("test", PointType.FUNCTIONAL),
)

DEFAULT_TYPE_WEIGHTS: tuple[tuple[PointType, float], ...] = (
    (PointType.PERFORMANCE, 2.0),
    (PointType.SECURITY, 2.0),
    (PointType.FUNCTIONAL, 1.5),
    (PointType.INTEGRATION, 1.5),
    (PointType.CONFIGURATION, 1.0),
    (PointType.GENERAL, 1.0),
)

# Reverse-DNS package identifiers such as ``com.vendor.inputsystem``.
PACKAGE_PATTERN = re.compile(r"\b(?:com|org|net|io|dev)\.[a-z0-9_-]+(?:\.[a-z0-9_-]+)+\b")

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lower-case ``text`` and collapse non-alphanumerics to single dashes."""
    return _SLUG_RE.sub("-", text.lower()).strip("-")


@dataclass(frozen=True)
class ScoringPolicy:
    """Injectable lookup tables and thresholds for scoring."""

    type_rules: tuple[tuple[str, PointType], ...] = DEFAULT_TYPE_RULES
    type_weights: tuple[tuple[PointType, float], ...] = DEFAULT_TYPE_WEIGHTS
    points_per_weight: float = 3.0
    warning_ratio: float = 0.7
    critical_ratio: float = 0.3
    default_outcome: float = 1.0

    def classify(self, category: str) -> PointType:
        """Map a free-text category to a point type (GENERAL if nothing matches)."""
        lowered = category.lower()
        for keyword, point_type in self.type_rules:
            if keyword in lowered:
                return point_type
        return PointType.GENERAL

    def weight_for(self, point_type: PointType) -> float:
        return dict(self.type_weights).get(point_type, 1.0)

    def max_score(self, point: ValidationPoint) -> float:
        return self.points_per_weight * point.weight


@dataclass(frozen=True)
class Evaluation:
    """Outcome of one evaluator call: a ratio in ``[0, 1]`` plus an optional detail."""

    ratio: float
    detail: str = ""


@dataclass(frozen=True)
class PointScore:
    point: ValidationPoint
    score: float
    max_score: float
    issue: Issue | None = None

    @property
    def ratio(self) -> float:
        return self.score / self.max_score if self.max_score else 0.0


@dataclass(frozen=True)
class SectionScore:
    section: Section
    score: float
    point_scores: tuple[PointScore, ...] = field(default_factory=tuple)

    @property
    def issues(self) -> tuple[Issue, ...]:
        return tuple(ps.issue for ps in self.point_scores if ps.issue is not None)


PointEvaluator = Callable[
    [ValidationPoint, ValidationTaskDescriptor, PlatformContext, ScoringPolicy],
    Evaluation,
]


# ---------------------------------------------------------------------------
# Evaluators (pure, read only the platform context)
# ---------------------------------------------------------------------------


def _outcome_ratio(
    point: ValidationPoint, context: PlatformContext, policy: ScoringPolicy
) -> float:
    outcome = context.profile.outcome(slugify(point.category))
    if outcome is None:
        return policy.default_outcome
    return outcome


def evaluate_generic(
    point: ValidationPoint,
    descriptor: ValidationTaskDescriptor,
    context: PlatformContext,
    policy: ScoringPolicy,
) -> Evaluation:
    """Configuration, functional, security and general checks.

    The target is opaque: the platform reports check outcomes per category
    slug and anything unreported falls back to the policy default.
    """
    return Evaluation(_outcome_ratio(point, context, policy))


def evaluate_integration(
    point: ValidationPoint,
    descriptor: ValidationTaskDescriptor,
    context: PlatformContext,
    policy: ScoringPolicy,
) -> Evaluation:
    """Recorded outcome capped by the share of referenced packages the platform has."""
    ratio = _outcome_ratio(point, context, policy)
    referenced = sorted(set(PACKAGE_PATTERN.findall(point.description)))
    if not referenced:
        return Evaluation(ratio)
    missing = [p for p in referenced if not context.profile.has_package(p)]
    present_ratio = (len(referenced) - len(missing)) / len(referenced)
    detail = f"missing packages: {', '.join(missing)}" if missing else ""
    return Evaluation(min(ratio, present_ratio), detail)


def evaluate_performance(
    point: ValidationPoint,
    descriptor: ValidationTaskDescriptor,
    context: PlatformContext,
    policy: ScoringPolicy,
) -> Evaluation:
    """Recorded outcome capped by what the live sampler reports for the platform."""
    ratio = _outcome_ratio(point, context, policy)
    sampler = context.sampler
    if sampler is None:
        return Evaluation(ratio)

    label = f"{descriptor.name}:{slugify(point.category)}"
    sampler.capture_snapshot(label)
    if sampler.detect_leak(
        acquire_label(context.name), label, context.profile.leak_threshold_mb
    ):
        return Evaluation(0.0, f"memory grew more than {context.profile.leak_threshold_mb}MB")

    issues = sampler.validate_against_thresholds(context.profile)
    if not issues:
        return Evaluation(ratio)
    worst = 0.0 if any(i.type is IssueType.CRITICAL for i in issues) else 0.5
    return Evaluation(min(ratio, worst), "; ".join(i.message for i in issues))


def acquire_label(platform: str) -> str:
    """Snapshot label taken when a platform context is acquired."""
    return f"{platform}:acquire"


DEFAULT_EVALUATORS: Mapping[PointType, PointEvaluator] = {
    PointType.CONFIGURATION: evaluate_generic,
    PointType.FUNCTIONAL: evaluate_generic,
    PointType.SECURITY: evaluate_generic,
    PointType.GENERAL: evaluate_generic,
    PointType.INTEGRATION: evaluate_integration,
    PointType.PERFORMANCE: evaluate_performance,
}


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def evaluate_point(
    point: ValidationPoint,
    descriptor: ValidationTaskDescriptor,
    context: PlatformContext,
    policy: ScoringPolicy,
    evaluators: Mapping[PointType, PointEvaluator] = DEFAULT_EVALUATORS,
) -> PointScore:
    """Score a single point and attach an issue if it falls below the thresholds."""
    evaluator = evaluators.get(point.type, evaluate_generic)
    evaluation = evaluator(point, descriptor, context, policy)
    ratio = min(max(evaluation.ratio, 0.0), 1.0)
    max_score = policy.max_score(point)
    score = max_score * ratio

    issue: Issue | None = None
    if ratio < policy.warning_ratio:
        issue_type = IssueType.CRITICAL if ratio < policy.critical_ratio else IssueType.WARNING
        message = f"{point.description} scored {ratio * 100:.0f}% of maximum"
        if evaluation.detail:
            message = f"{message} ({evaluation.detail})"
        issue = Issue(type=issue_type, category=point.category, message=message)
        logger.debug("%s on %s: %s", point.category, context.name, message)

    return PointScore(point=point, score=score, max_score=max_score, issue=issue)


def score_section(
    section: Section,
    descriptor: ValidationTaskDescriptor,
    context: PlatformContext,
    policy: ScoringPolicy,
    evaluators: Mapping[PointType, PointEvaluator] = DEFAULT_EVALUATORS,
) -> SectionScore:
    """Sum point scores and normalize to ``[0, 10]``.

    A section without points scores 0 and carries no point scores; callers
    skip such sections when averaging.
    """
    point_scores = tuple(
        evaluate_point(p, descriptor, context, policy, evaluators) for p in section.points
    )
    total_max = sum(ps.max_score for ps in point_scores)
    if total_max <= 0:
        return SectionScore(section=section, score=0.0, point_scores=point_scores)
    total = sum(ps.score for ps in point_scores)
    return SectionScore(section=section, score=total / total_max * 10, point_scores=point_scores)


def category_scores(section_scores: tuple[SectionScore, ...]) -> dict[str, float]:
    """Per point type, normalized to ``[0, 10]``."""
    totals: dict[str, list[float]] = {}
    for ss in section_scores:
        for ps in ss.point_scores:
            bucket = totals.setdefault(ps.point.type.value, [0.0, 0.0])
            bucket[0] += ps.score
            bucket[1] += ps.max_score
    return {
        name: round(score / max_score * 10, 2)
        for name, (score, max_score) in sorted(totals.items())
        if max_score > 0
    }
