"""Shared pytest fixtures for valgate tests.

Provides factory fixtures for the domain models and in-memory Port
implementations, so module tests never touch the real filesystem unless
they ask for ``tmp_path``.
"""

from __future__ import annotations

import fnmatch
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import pytest

from valgate.domain.models import (
    BaselineEntry,
    ExecutionResult,
    ExecutionStatus,
    Issue,
    IssueType,
    PerformanceSample,
    PlatformContext,
    PlatformProfile,
    PointType,
    Section,
    TaskDescriptor,
    ValidationPoint,
    ValidationTaskDescriptor,
)

MB = 1024 * 1024

# ---------------------------------------------------------------------------
# Descriptor factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_point() -> _Factory:
    """Factory for ValidationPoint with sensible defaults."""

    def _factory(
        *,
        category: str = "Setup",
        description: str = "Project settings are applied",
        weight: float = 1.0,
        type: PointType = PointType.CONFIGURATION,  # noqa: A002
    ) -> ValidationPoint:
        return ValidationPoint(category=category, description=description, weight=weight, type=type)

    return _factory


_Factory = Any  # callable[..., model]


@pytest.fixture()
def make_descriptor(make_point: _Factory) -> _Factory:
    """Factory for ValidationTaskDescriptor: one section with one point by default."""

    def _factory(
        *,
        name: str = "input-system",
        title: str = "Input System Validation",
        sections: tuple[Section, ...] | None = None,
        packages: tuple[str, ...] = (),
        depends_on: tuple[str, ...] = (),
        incompatible_platforms: tuple[str, ...] = (),
        runtime_required: bool = False,
    ) -> ValidationTaskDescriptor:
        if sections is None:
            sections = (Section(number=1, title="Setup", points=(make_point(),)),)
        return ValidationTaskDescriptor(
            name=name,
            title=title,
            purpose="Check the input system.",
            sections=sections,
            packages=packages,
            depends_on=depends_on,
            incompatible_platforms=incompatible_platforms,
            runtime_required=runtime_required,
        )

    return _factory


@pytest.fixture()
def make_task(make_descriptor: _Factory) -> _Factory:
    """Factory for TaskDescriptor wrapping a descriptor."""

    def _factory(
        *,
        name: str = "input-system",
        requires_runtime: bool = False,
        estimated_cost_ms: int = 30_000,
        priority: int = 5,
        **descriptor_fields: Any,
    ) -> TaskDescriptor:
        descriptor = make_descriptor(
            name=name, runtime_required=requires_runtime, **descriptor_fields
        )
        return TaskDescriptor(
            descriptor=descriptor,
            source_path=f"tasks/validate-{name}.md",
            requires_runtime=requires_runtime,
            target_platforms=("cross-platform",),
            estimated_cost_ms=estimated_cost_ms,
            priority=priority,
        )

    return _factory


# ---------------------------------------------------------------------------
# Platform and result factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_profile() -> _Factory:
    """Factory for PlatformProfile."""

    def _factory(name: str = "desktop", **overrides: Any) -> PlatformProfile:
        return PlatformProfile(name=name, **overrides)

    return _factory


@pytest.fixture()
def make_context(make_profile: _Factory) -> _Factory:
    """Factory for PlatformContext without a sampler by default."""

    def _factory(
        name: str = "desktop", *, sampler: Any = None, **overrides: Any
    ) -> PlatformContext:
        return PlatformContext(profile=make_profile(name, **overrides), sampler=sampler)

    return _factory


@pytest.fixture()
def make_sample() -> _Factory:
    """Factory for PerformanceSample; memory is given in MB per category."""

    def _factory(
        *,
        timestamp: float = 0.0,
        fps: float = 60.0,
        frame_time_ms: float = 16.0,
        memory_mb: dict[str, float] | None = None,
    ) -> PerformanceSample:
        memory = memory_mb if memory_mb is not None else {"textures": 100.0}
        return PerformanceSample(
            timestamp=timestamp,
            fps=fps,
            frame_time_ms=frame_time_ms,
            memory_by_category=tuple(sorted((k, int(v * MB)) for k, v in memory.items())),
        )

    return _factory


@pytest.fixture()
def make_result() -> _Factory:
    """Factory for ExecutionResult: PASSED with score 9.0 by default."""

    def _factory(
        *,
        task_name: str = "input-system",
        platform: str = "desktop",
        status: ExecutionStatus = ExecutionStatus.PASSED,
        score: float = 9.0,
        issues: tuple[Issue, ...] = (),
        execution_time_ms: int = 1000,
        timestamp: str = "2026-01-01T00:00:00+00:00",
        category_scores: tuple[tuple[str, float], ...] = (),
        performance: Any = None,
        summary: str | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            task_name=task_name,
            platform=platform,
            status=status,
            score=score,
            issues=issues,
            execution_time_ms=execution_time_ms,
            timestamp=timestamp,
            summary=f"{task_name} on {platform}" if summary is None else summary,
            category_scores=category_scores,
            performance=performance,
        )

    return _factory


@pytest.fixture()
def critical_issue() -> Issue:
    return Issue(type=IssueType.CRITICAL, category="performance", message="frame time too high")


@pytest.fixture()
def make_entry() -> _Factory:
    """Factory for BaselineEntry."""

    def _factory(score: float = 8.0, *, build: str = "abc123", **fields: Any) -> BaselineEntry:
        return BaselineEntry(
            timestamp=fields.pop("timestamp", "2026-01-01T00:00:00+00:00"),
            overall_score=score,
            build_identity=build,
            **fields,
        )

    return _factory


# ---------------------------------------------------------------------------
# In-memory Port implementations
# ---------------------------------------------------------------------------


class InMemoryFileSystem:
    """Dict-backed FileSystemPort for tests."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = dict(files or {})

    def read_file(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    def write_file(self, path: str, content: str) -> None:
        self.files[path] = content

    def list_files(self, root: str, pattern: str = "**/*") -> list[str]:
        prefix = root.rstrip("/") + "/"
        matches = []
        for path in self.files:
            if not path.startswith(prefix):
                continue
            relative = path[len(prefix) :]
            name = relative.rsplit("/", 1)[-1]
            if fnmatch.fnmatch(relative, pattern) or fnmatch.fnmatch(
                name, pattern.rsplit("/", 1)[-1]
            ):
                matches.append(path)
        return sorted(matches)

    def is_directory(self, path: str) -> bool:
        prefix = path.rstrip("/") + "/"
        return any(p.startswith(prefix) for p in self.files)


class InMemoryBaselineStore:
    """List-backed BaselineStore with the same FIFO bound as the JSON store."""

    def __init__(self, history_limit: int = 10) -> None:
        self.history_limit = history_limit
        self.histories: dict[tuple[str, str], list[BaselineEntry]] = {}
        self.lock_calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def read(self, key: tuple[str, str]) -> list[BaselineEntry]:
        return list(self.histories.get(key, []))

    def append(self, key: tuple[str, str], entry: BaselineEntry) -> None:
        history = self.histories.setdefault(key, [])
        history.append(entry)
        del history[: max(len(history) - self.history_limit, 0)]

    @contextmanager
    def lock(self, key: tuple[str, str]) -> Iterator[None]:
        self.lock_calls.append(key)
        with self._lock:
            yield

    def keys(self) -> list[tuple[str, str]]:
        return sorted(self.histories)


class ListMetricsSource:
    """MetricsSource that hands out a fixed list of samples, then None."""

    def __init__(self, samples: list[PerformanceSample]) -> None:
        self._samples = list(samples)

    def read_sample(self) -> PerformanceSample | None:
        return self._samples.pop(0) if self._samples else None


@pytest.fixture()
def memory_fs() -> InMemoryFileSystem:
    return InMemoryFileSystem()


@pytest.fixture()
def baseline_store() -> InMemoryBaselineStore:
    return InMemoryBaselineStore()


@pytest.fixture()
def make_source() -> _Factory:
    """Factory for a MetricsSource over a fixed list of samples."""

    def _factory(samples: list[PerformanceSample]) -> ListMetricsSource:
        return ListMetricsSource(samples)

    return _factory


@pytest.fixture()
def make_baseline_store() -> _Factory:
    """Factory for an in-memory baseline store with a custom bound."""

    def _factory(history_limit: int = 10) -> InMemoryBaselineStore:
        return InMemoryBaselineStore(history_limit)

    return _factory
