"""Core data types for valgate.

All types are frozen dataclasses with complete type annotations.
This module has ZERO imports from outside the Python standard library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from valgate.domain.ports import SamplerPort


class PointType(Enum):
    """Classification of a single validation point."""

    CONFIGURATION = "configuration"
    FUNCTIONAL = "functional"
    PERFORMANCE = "performance"
    SECURITY = "security"
    INTEGRATION = "integration"
    GENERAL = "general"


class ExecutionStatus(Enum):
    """Outcome of one task×platform execution.

    ``NO_RESULTS`` only ever appears as an aggregate status.
    """

    PASSED = "PASSED"
    WARNING = "WARNING"
    FAILED = "FAILED"
    ERROR = "ERROR"
    NO_RESULTS = "NO_RESULTS"


class IssueType(Enum):
    """Severity tag for an issue."""

    CRITICAL = "CRITICAL"
    WARNING = "WARNING"


class Severity(Enum):
    """Severity band of a detected regression."""

    NONE = "NONE"
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    CRITICAL = "CRITICAL"


class Priority(Enum):
    """Priority level for a recommendation."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ---------------------------------------------------------------------------
# Descriptor types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationPoint:
    """One bullet-style validation criterion."""

    category: str
    description: str
    weight: float = 1.0
    type: PointType = PointType.GENERAL

    def __post_init__(self) -> None:
        if not self.weight > 0:
            msg = f"Validation point weight must be positive, got {self.weight}"
            raise ValueError(msg)


@dataclass(frozen=True)
class Section:
    """A numbered section of a task document."""

    number: int
    title: str
    points: tuple[ValidationPoint, ...] = ()


@dataclass(frozen=True)
class ValidationTaskDescriptor:
    """Structured representation of a parsed task definition document."""

    name: str
    title: str
    purpose: str
    sections: tuple[Section, ...]
    platforms: tuple[str, ...] = ()
    packages: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    incompatible_platforms: tuple[str, ...] = ()
    runtime_required: bool = False

    @property
    def points(self) -> tuple[ValidationPoint, ...]:
        """All validation points in section order."""
        return tuple(p for s in self.sections for p in s.points)


@dataclass(frozen=True)
class TaskDescriptor:
    """A parsed descriptor plus the execution metadata the registry derives."""

    descriptor: ValidationTaskDescriptor
    source_path: str
    requires_runtime: bool
    target_platforms: tuple[str, ...]
    estimated_cost_ms: int
    priority: int = 5
    complexity: str = "medium"

    @property
    def name(self) -> str:
        return self.descriptor.name


@dataclass(frozen=True)
class DiscoveryFailure:
    """A task document that could not be parsed during discovery."""

    name: str
    source_path: str
    message: str


@dataclass(frozen=True)
class MatrixEntry:
    """One unit of work in the execution matrix."""

    task: TaskDescriptor
    platform: str


# ---------------------------------------------------------------------------
# Platform and performance types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlatformProfile:
    """Configuration struct describing one target platform and its limits."""

    name: str
    family: str = "desktop"
    headless: bool = False
    runtime_available: bool = True
    capabilities: tuple[str, ...] = ()
    outcomes: tuple[tuple[str, float], ...] = ()
    telemetry: str | None = None
    target_fps: float = 60.0
    min_fps: float = 30.0
    max_frame_time_ms: float = 33.33
    max_total_memory_mb: float = 4096.0
    category_caps_mb: tuple[tuple[str, float], ...] = ()
    max_alloc_rate_mb_per_min: float = 64.0
    leak_threshold_mb: float = 50.0

    def outcome(self, category: str) -> float | None:
        """Return the recorded check outcome for a category slug, if any."""
        return dict(self.outcomes).get(category)

    def has_package(self, package: str) -> bool:
        """An empty capability list means the platform does not restrict packages."""
        return not self.capabilities or package in self.capabilities


@dataclass(frozen=True)
class PerformanceSample:
    """One capture of frame timing and memory by category."""

    timestamp: float
    fps: float
    frame_time_ms: float
    memory_by_category: tuple[tuple[str, int], ...] = ()

    @property
    def total_memory_bytes(self) -> int:
        return sum(b for _, b in self.memory_by_category)


@dataclass(frozen=True)
class PlatformContext:
    """A platform acquired for execution: its profile plus an optional live sampler."""

    profile: PlatformProfile
    sampler: SamplerPort | None = None

    @property
    def name(self) -> str:
        return self.profile.name


@dataclass(frozen=True)
class PerformanceSummary:
    """Window summary of sampler data carried on an execution result."""

    fps_mean: float
    frame_time_ms_mean: float
    total_memory_mb: float
    sample_count: int


# ---------------------------------------------------------------------------
# Execution types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Issue:
    """A problem found while validating a point or a platform."""

    type: IssueType
    category: str
    message: str


@dataclass(frozen=True)
class ExecutionResult:
    """Result of executing one descriptor against one platform."""

    task_name: str
    platform: str
    status: ExecutionStatus
    score: float
    issues: tuple[Issue, ...] = ()
    execution_time_ms: int = 0
    timestamp: str = ""
    summary: str = ""
    category_scores: tuple[tuple[str, float], ...] = ()
    performance: PerformanceSummary | None = None

    @property
    def critical_count(self) -> int:
        return sum(1 for i in self.issues if i.type is IssueType.CRITICAL)

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.type is IssueType.WARNING)


# ---------------------------------------------------------------------------
# Aggregate types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlatformOutcome:
    """One platform's line inside a task rollup."""

    status: ExecutionStatus
    score: float
    execution_time_ms: int
    summary: str = ""


@dataclass(frozen=True)
class TaskRollup:
    """Per-task view across all platforms it ran on."""

    task_name: str
    status: ExecutionStatus
    mean_score: float
    best_score: float
    worst_score: float
    total_execution_time_ms: int
    platforms: tuple[tuple[str, PlatformOutcome], ...]
    issues: tuple[Issue, ...]


@dataclass(frozen=True)
class PlatformRollup:
    """Per-platform view across all tasks run on it."""

    platform: str
    total_tasks: int
    passed_tasks: int
    warning_tasks: int
    failed_tasks: int
    error_tasks: int
    pass_rate: float
    mean_score: float
    total_execution_time_ms: int


@dataclass(frozen=True)
class Recommendation:
    """A deterministic follow-up suggestion generated from the rollups."""

    priority: Priority
    scope: str
    target: str
    message: str


@dataclass(frozen=True)
class AggregateReport:
    """Whole-run report, recomputable from the full result set."""

    overall_status: ExecutionStatus
    overall_score: int
    total_tasks: int
    passed_tasks: int
    warning_tasks: int
    failed_tasks: int
    error_tasks: int
    total_critical_issues: int
    total_warnings: int
    total_execution_time_ms: int
    platform_summary: tuple[PlatformRollup, ...] = ()
    task_details: tuple[TaskRollup, ...] = ()
    recommendations: tuple[Recommendation, ...] = ()
    results: tuple[ExecutionResult, ...] = ()
    rejected_results: int = 0
    timestamp: str = ""


# ---------------------------------------------------------------------------
# Regression types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BaselineEntry:
    """One persisted baseline record for a (task, platform) key."""

    timestamp: str
    overall_score: float
    category_scores: tuple[tuple[str, float], ...] = ()
    build_identity: str = "local"
    metrics: tuple[tuple[str, float], ...] = ()


@dataclass(frozen=True)
class RegressionResult:
    """Comparison of a current result against its baseline history."""

    task_name: str
    platform: str
    regression_detected: bool
    current_score: float
    baseline_score: float | None
    regression_percentage: float
    severity: Severity
    affected_categories: tuple[str, ...] = ()
    recommended_actions: tuple[str, ...] = ()
    baseline_established: bool = False


@dataclass(frozen=True)
class Annotation:
    """One CI annotation record."""

    level: str
    task: str
    platform: str
    category: str
    message: str


@dataclass(frozen=True)
class RunOutcome:
    """Everything one pipeline run produced."""

    report: AggregateReport
    regressions: tuple[RegressionResult, ...]
    gate_passed: bool
    written: tuple[str, ...] = field(default_factory=tuple)
