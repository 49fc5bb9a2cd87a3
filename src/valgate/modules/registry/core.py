"""Task registry: discover task documents and build the execution matrix.

Walks the task source tree through a ``FileSystemPort``, parses every
document whose file name carries the task prefix, and attaches the
execution metadata the runner needs: whether a live runtime is required,
target platforms, an estimated cost, a priority and a complexity label.

Documents that fail to parse are recorded as ``DiscoveryFailure`` entries
instead of aborting the pass.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from valgate.domain.errors import DescriptorParseError, TaskSourceError
from valgate.domain.models import (
    DiscoveryFailure,
    MatrixEntry,
    PlatformProfile,
    TaskDescriptor,
    ValidationTaskDescriptor,
)
from valgate.modules.parser.core import parse_descriptor

if TYPE_CHECKING:
    from valgate.domain.ports import FileSystemPort
    from valgate.modules.scoring.core import ScoringPolicy

logger = logging.getLogger("valgate.registry")

DEFAULT_PLATFORM = "cross-platform"

# Phrases that mean the task cannot run without a live, interactive runtime.
RUNTIME_KEYWORDS: tuple[str, ...] = (
    "interactive editor",
    "editor session",
    "play mode",
    "edit mode",
    "native api",
    "runtime api",
    "requires runtime",
)

# Checked in order; the first level with a matching keyword wins.
COMPLEXITY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("low", ("configuration", "settings", "basic")),
    ("medium", ("integration", "workflow", "pipeline")),
    ("high", ("performance", "optimization", "advanced", "architecture")),
)

BASE_COST_MS = 30_000
COST_PER_LINE_MS = 50
COST_PER_SECTION_MS = 2_000
COST_PER_POINT_MS = 500


@dataclass(frozen=True)
class RegistryConfig:
    """Discovery settings taken from the run configuration."""

    task_glob: str = "**/*.md"
    task_prefix: str = "validate-"
    cost_ceiling_ms: int = 300_000
    priorities: Mapping[str, int] = field(default_factory=dict)
    default_priority: int = 5


def task_name_for(path: str, prefix: str) -> str | None:
    """Derive the task name from a file path, or None if the prefix is missing."""
    stem = PurePosixPath(path).stem
    if not prefix:
        return stem
    if not stem.startswith(prefix):
        return None
    return stem[len(prefix) :] or None


def detect_runtime_requirement(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in RUNTIME_KEYWORDS)


def estimate_cost_ms(text: str, descriptor: ValidationTaskDescriptor, ceiling_ms: int) -> int:
    """Monotonic in line, section and point count, capped at ``ceiling_ms``."""
    cost = (
        BASE_COST_MS
        + len(text.splitlines()) * COST_PER_LINE_MS
        + len(descriptor.sections) * COST_PER_SECTION_MS
        + len(descriptor.points) * COST_PER_POINT_MS
    )
    return min(cost, ceiling_ms)


def assess_complexity(text: str) -> str:
    lowered = text.lower()
    for level, keywords in COMPLEXITY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return level
    return "medium"


def describe_task(
    text: str,
    name: str,
    source_path: str,
    config: RegistryConfig,
    policy: ScoringPolicy | None = None,
) -> TaskDescriptor:
    """Parse one document and attach execution metadata.

    Raises:
        DescriptorParseError: propagated from the parser.
    """
    descriptor = parse_descriptor(text, name, policy)
    requires_runtime = descriptor.runtime_required or detect_runtime_requirement(text)
    targets = tuple(dict.fromkeys((DEFAULT_PLATFORM, *descriptor.platforms)))
    return TaskDescriptor(
        descriptor=descriptor,
        source_path=source_path,
        requires_runtime=requires_runtime,
        target_platforms=targets,
        estimated_cost_ms=estimate_cost_ms(text, descriptor, config.cost_ceiling_ms),
        priority=config.priorities.get(name, config.default_priority),
        complexity=assess_complexity(text),
    )


class TaskRegistry:
    """Discovers task descriptors under a root directory."""

    def __init__(
        self,
        fs: FileSystemPort,
        root: str,
        *,
        config: RegistryConfig | None = None,
        policy: ScoringPolicy | None = None,
    ) -> None:
        self._fs = fs
        self._root = root
        self._config = config or RegistryConfig()
        self._policy = policy
        self._tasks: list[TaskDescriptor] = []
        self._failures: list[DiscoveryFailure] = []

    @property
    def tasks(self) -> list[TaskDescriptor]:
        return list(self._tasks)

    @property
    def failures(self) -> list[DiscoveryFailure]:
        return list(self._failures)

    def discover(self) -> list[TaskDescriptor]:
        """Parse every task document under the root.

        Returns the successfully parsed tasks sorted by name; parse failures
        are kept in ``failures``.

        Raises:
            TaskSourceError: when the root directory cannot be listed.
        """
        if not self._fs.is_directory(self._root):
            msg = f"Task source tree not found: {self._root}"
            raise TaskSourceError(msg)
        try:
            paths = self._fs.list_files(self._root, self._config.task_glob)
        except OSError as exc:
            msg = f"Cannot read task source tree {self._root}: {exc}"
            raise TaskSourceError(msg) from exc

        tasks: dict[str, TaskDescriptor] = {}
        failures: list[DiscoveryFailure] = []
        for path in sorted(paths):
            name = task_name_for(path, self._config.task_prefix)
            if name is None:
                continue
            if name in tasks:
                logger.warning("Duplicate task name %s at %s, keeping the first", name, path)
                continue
            try:
                text = self._fs.read_file(path)
                tasks[name] = describe_task(text, name, path, self._config, self._policy)
            except DescriptorParseError as exc:
                logger.warning("Skipping %s: %s", path, exc)
                failures.append(DiscoveryFailure(name=name, source_path=path, message=str(exc)))
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Cannot read %s: %s", path, exc)
                failures.append(
                    DiscoveryFailure(name=name, source_path=path, message=f"unreadable: {exc}")
                )
            else:
                task = tasks[name]
                logger.info(
                    "Discovered %s (runtime=%s, cost=%dms, priority=%d)",
                    name,
                    task.requires_runtime,
                    task.estimated_cost_ms,
                    task.priority,
                )

        self._tasks = sorted(tasks.values(), key=lambda t: t.name)
        self._failures = failures
        logger.info(
            "Discovered %d task(s), %d failure(s) under %s",
            len(self._tasks),
            len(failures),
            self._root,
        )
        return self.tasks

    def build_matrix(
        self,
        platforms: Sequence[PlatformProfile],
        tasks: Sequence[TaskDescriptor] | None = None,
    ) -> list[MatrixEntry]:
        """Cross product of tasks and platforms minus excluded pairs."""
        return build_matrix(self._tasks if tasks is None else tasks, platforms)


def is_excluded(task: TaskDescriptor, platform: PlatformProfile) -> str | None:
    """Return the reason a pair is excluded, or None if it may run."""
    if task.requires_runtime and platform.headless:
        return "requires an interactive runtime"
    incompatible = set(task.descriptor.incompatible_platforms)
    if platform.name.lower() in incompatible or platform.family.lower() in incompatible:
        return "declared incompatible"
    return None


def build_matrix(
    tasks: Sequence[TaskDescriptor],
    platforms: Sequence[PlatformProfile],
) -> list[MatrixEntry]:
    """Order is by task priority, then task name, then requested platform order."""
    entries: list[MatrixEntry] = []
    for task in sorted(tasks, key=lambda t: (t.priority, t.name)):
        for platform in platforms:
            reason = is_excluded(task, platform)
            if reason:
                logger.info("Excluding %s on %s: %s", task.name, platform.name, reason)
                continue
            entries.append(MatrixEntry(task=task, platform=platform.name))
    return entries


def ci_matrix(tasks: Sequence[TaskDescriptor]) -> dict[str, list[dict[str, object]]]:
    """Job matrix in the ``{"include": [...]}`` shape CI systems consume."""
    return {
        "include": [
            {
                "task": task.name,
                "title": task.descriptor.title,
                "runtime_required": task.requires_runtime,
                "estimated_time": task.estimated_cost_ms,
                "complexity": task.complexity,
                "priority": task.priority,
                "platforms": list(task.target_platforms),
            }
            for task in sorted(tasks, key=lambda t: (t.priority, t.name))
        ]
    }
