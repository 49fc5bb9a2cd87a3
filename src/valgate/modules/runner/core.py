"""Matrix runner: fan the execution matrix out on asyncio and gather results.

Each task×platform pair is independent. Concurrency is bounded by a
semaphore, platform setup is the only await point before scoring, and the
synchronous engine runs in a worker thread so the event loop never blocks.
``asyncio.gather`` is the barrier: ``run`` returns only once every entry has
a result, either from the engine or an ERROR for a timeout or an
unavailable platform.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from valgate.domain.errors import ExecutionTimeoutError, PlatformUnavailableError
from valgate.domain.models import (
    DiscoveryFailure,
    ExecutionResult,
    MatrixEntry,
    PlatformContext,
    PlatformProfile,
    TaskDescriptor,
)
from valgate.modules.engine.core import error_result

if TYPE_CHECKING:
    from valgate.domain.ports import Executor, PlatformProvider

logger = logging.getLogger("valgate.runner")


@dataclass(frozen=True)
class RunnerConfig:
    concurrency: int = os.cpu_count() or 1
    timeout_ceiling_ms: int = 300_000
    timeout_ms: int | None = None


def timeout_for(task: TaskDescriptor, config: RunnerConfig) -> int:
    """Per-task deadline capped by the ceiling.

    An explicit ``timeout_ms`` replaces the estimated cost, in either direction.
    """
    requested = task.estimated_cost_ms if config.timeout_ms is None else config.timeout_ms
    return max(min(requested, config.timeout_ceiling_ms), 1)


def failure_results(
    failures: Sequence[DiscoveryFailure],
    platforms: Sequence[str],
) -> list[ExecutionResult]:
    """One ERROR result per requested platform for each unparseable document."""
    return [
        error_result(
            failure.name,
            platform,
            f"Task definition could not be parsed: {failure.message}",
            category="descriptor",
        )
        for failure in failures
        for platform in platforms
    ]


class MatrixRunner:
    """Executes matrix entries against acquired platform contexts."""

    def __init__(
        self,
        engine: Executor,
        provider: PlatformProvider,
        profiles: Mapping[str, PlatformProfile],
        config: RunnerConfig | None = None,
    ) -> None:
        self._engine = engine
        self._provider = provider
        self._profiles = dict(profiles)
        self._config = config or RunnerConfig()
        self._contexts: dict[str, PlatformContext] = {}
        self._unavailable: dict[str, str] = {}
        self._acquire_lock: asyncio.Lock | None = None

    async def run(
        self,
        entries: Sequence[MatrixEntry],
        failures: Sequence[DiscoveryFailure] = (),
        platforms: Sequence[str] = (),
    ) -> list[ExecutionResult]:
        """Run every entry and return all results once the barrier is reached.

        Args:
            entries: The execution matrix.
            failures: Documents that failed discovery; each becomes an ERROR
                result on every platform in ``platforms``.
            platforms: Requested platform names.
        """
        self._acquire_lock = asyncio.Lock()
        semaphore = asyncio.Semaphore(max(self._config.concurrency, 1))
        results = failure_results(failures, platforms)
        logger.info(
            "Running %d execution(s) with concurrency %d",
            len(entries),
            self._config.concurrency,
        )
        try:
            executed = await asyncio.gather(*(self._run_entry(e, semaphore) for e in entries))
        finally:
            self._release_all()
        results.extend(executed)
        return results

    async def _context_for(self, platform: str) -> PlatformContext:
        assert self._acquire_lock is not None
        async with self._acquire_lock:
            if platform in self._unavailable:
                raise PlatformUnavailableError(self._unavailable[platform])
            if platform not in self._contexts:
                profile = self._profiles.get(platform)
                try:
                    if profile is None:
                        msg = f"Unknown platform '{platform}'"
                        raise PlatformUnavailableError(msg)
                    self._contexts[platform] = await self._provider.acquire(profile)
                except PlatformUnavailableError as exc:
                    self._unavailable[platform] = str(exc)
                    raise
                except Exception as exc:
                    logger.exception("Acquiring platform %s raised", platform)
                    msg = f"Platform {platform} setup failed: {type(exc).__name__}: {exc}"
                    self._unavailable[platform] = msg
                    raise PlatformUnavailableError(msg) from exc
                logger.info("Acquired platform %s", platform)
            return self._contexts[platform]

    async def _run_entry(self, entry: MatrixEntry, semaphore: asyncio.Semaphore) -> ExecutionResult:
        task = entry.task
        async with semaphore:
            try:
                context = await self._context_for(entry.platform)
            except PlatformUnavailableError as exc:
                logger.warning("Platform %s unavailable for %s: %s", entry.platform, task.name, exc)
                return error_result(task.name, entry.platform, str(exc), category="prevalidation")

            timeout_ms = timeout_for(task, self._config)
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(
                        self._engine.execute,
                        task.descriptor,
                        context,
                        requires_runtime=task.requires_runtime,
                    ),
                    timeout=timeout_ms / 1000,
                )
            except TimeoutError:
                # The worker thread cannot be interrupted; its late result is discarded.
                error = ExecutionTimeoutError(task.name, entry.platform, timeout_ms)
                logger.error("%s", error)
                return error_result(
                    task.name,
                    entry.platform,
                    str(error),
                    execution_time_ms=timeout_ms,
                    category="timeout",
                )
            except Exception as exc:
                logger.exception("Execution of %s on %s raised", task.name, entry.platform)
                return error_result(
                    task.name,
                    entry.platform,
                    f"Execution raised {type(exc).__name__}: {exc}",
                )

    def _release_all(self) -> None:
        for name, context in sorted(self._contexts.items()):
            try:
                self._provider.release(context)
            except OSError as exc:
                logger.warning("Releasing platform %s failed: %s", name, exc)
        self._contexts.clear()
        self._unavailable.clear()
