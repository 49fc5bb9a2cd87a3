"""Port interfaces for valgate.

All ports are defined as typing.Protocol; structural subtyping means any class
with matching method signatures satisfies the Protocol without inheritance.

This module has ZERO external imports: only stdlib and typing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from valgate.domain.models import (
        BaselineEntry,
        ExecutionResult,
        Issue,
        PerformanceSample,
        PerformanceSummary,
        PlatformContext,
        PlatformProfile,
        ValidationTaskDescriptor,
    )


class FileSystemPort(Protocol):
    """Abstraction over file system operations."""

    def read_file(self, path: str) -> str:
        """Read and return the contents of a file."""
        ...

    def write_file(self, path: str, content: str) -> None:
        """Write content to a file, creating parent directories as needed."""
        ...

    def list_files(self, root: str, pattern: str = "**/*") -> list[str]:
        """List file paths matching the given glob pattern under root."""
        ...

    def is_directory(self, path: str) -> bool:
        """Return True if the path is an existing directory."""
        ...


class BaselineStore(Protocol):
    """Narrow persistence interface for baseline histories.

    Keys are ``(task_name, platform)`` pairs. Histories are returned oldest
    first. ``append`` evicts from the front once the bound is exceeded.
    """

    def read(self, key: tuple[str, str]) -> list[BaselineEntry]:
        """Return the stored history for a key (empty if none)."""
        ...

    def append(self, key: tuple[str, str], entry: BaselineEntry) -> None:
        """Append an entry to the key's history, evicting the oldest beyond the bound."""
        ...

    def lock(self, key: tuple[str, str]) -> AbstractContextManager[None]:
        """Return a context manager holding the key's critical section."""
        ...

    def keys(self) -> list[tuple[str, str]]:
        """Return every stored key, sorted."""
        ...


class MetricsSource(Protocol):
    """Anything that can produce a performance sample on demand."""

    def read_sample(self) -> PerformanceSample | None:
        """Return the next sample, or None if nothing is available."""
        ...


class SamplerPort(Protocol):
    """What the execution engine needs from a performance sampler."""

    def capture_snapshot(self, label: str) -> PerformanceSample | None:
        """Store the latest sample under a label and return it."""
        ...

    def detect_leak(self, label_a: str, label_b: str, threshold_mb: float) -> bool:
        """True if total memory grew by more than ``threshold_mb`` between labels."""
        ...

    def validate_against_thresholds(self, profile: PlatformProfile) -> list[Issue]:
        """Check the buffered samples against a platform profile."""
        ...

    def summary(self) -> PerformanceSummary | None:
        """Summarize the buffered window, or None when empty."""
        ...


class PlatformProvider(Protocol):
    """Acquires and releases platform contexts for execution."""

    async def acquire(self, profile: PlatformProfile) -> PlatformContext:
        """Set up a platform (await point) and return its context.

        Raises PlatformUnavailableError when the platform cannot be set up.
        """
        ...

    def release(self, context: PlatformContext) -> None:
        """Tear down a context returned by ``acquire``."""
        ...


class Executor(Protocol):
    """Anything that can execute one descriptor on one platform context."""

    def execute(
        self,
        descriptor: ValidationTaskDescriptor,
        context: PlatformContext,
        *,
        requires_runtime: bool | None = None,
    ) -> ExecutionResult:
        """Run the descriptor and return its result; never raises."""
        ...
