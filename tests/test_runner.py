"""Tests for the async matrix runner."""

from __future__ import annotations

import threading
import time

import pytest

from valgate.domain.errors import PlatformUnavailableError
from valgate.domain.models import (
    DiscoveryFailure,
    ExecutionStatus,
    MatrixEntry,
    PlatformContext,
)
from valgate.modules.engine.core import ExecutionEngine
from valgate.modules.runner.core import MatrixRunner, RunnerConfig, timeout_for


class FakeProvider:
    """PlatformProvider that records acquisitions and can refuse platforms."""

    def __init__(self, unavailable: tuple[str, ...] = ()) -> None:
        self.unavailable = unavailable
        self.acquired: list[str] = []
        self.released: list[str] = []

    async def acquire(self, profile):
        self.acquired.append(profile.name)
        if profile.name in self.unavailable:
            msg = f"{profile.name} is offline"
            raise PlatformUnavailableError(msg)
        return PlatformContext(profile=profile)

    def release(self, context) -> None:
        self.released.append(context.name)


class SlowEngine:
    """Executor that blocks its worker thread and tracks concurrency."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()
        self._engine = ExecutionEngine()

    def execute(self, descriptor, context, *, requires_runtime=None):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            return self._engine.execute(descriptor, context, requires_runtime=requires_runtime)
        finally:
            with self._lock:
                self.active -= 1


class CrashingProvider(FakeProvider):
    """PlatformProvider whose setup fails with an unexpected exception."""

    async def acquire(self, profile):
        self.acquired.append(profile.name)
        msg = "telemetry socket reset"
        raise RuntimeError(msg)


class CrashingEngine:
    def execute(self, descriptor, context, *, requires_runtime=None):
        msg = "invalid start byte"
        raise ValueError(msg)


@pytest.fixture()
def profiles(make_profile):
    return {name: make_profile(name) for name in ("desktop", "mobile")}


class TestRun:
    async def test_every_entry_gets_a_result(self, make_task, profiles) -> None:
        provider = FakeProvider()
        runner = MatrixRunner(ExecutionEngine(), provider, profiles)
        entries = [
            MatrixEntry(task=make_task(name=n), platform=p)
            for n in ("a", "b")
            for p in ("desktop", "mobile")
        ]

        results = await runner.run(entries)

        assert len(results) == 4
        assert {r.status for r in results} == {ExecutionStatus.PASSED}
        assert sorted(provider.acquired) == ["desktop", "mobile"]
        assert sorted(provider.released) == ["desktop", "mobile"]

    async def test_timeout_becomes_error(self, make_task, profiles) -> None:
        runner = MatrixRunner(
            SlowEngine(delay=0.5), FakeProvider(), profiles, RunnerConfig(timeout_ms=50)
        )

        results = await runner.run([MatrixEntry(task=make_task(), platform="desktop")])

        assert results[0].status is ExecutionStatus.ERROR
        assert results[0].issues[0].category == "timeout"
        assert results[0].execution_time_ms == 50
        assert "timed out after 50ms" in results[0].summary

    async def test_unavailable_platform_is_acquired_once(self, make_task, profiles) -> None:
        provider = FakeProvider(unavailable=("mobile",))
        runner = MatrixRunner(ExecutionEngine(), provider, profiles)
        entries = [MatrixEntry(task=make_task(name=n), platform="mobile") for n in ("a", "b")]

        results = await runner.run(entries)

        assert [r.status for r in results] == [ExecutionStatus.ERROR] * 2
        assert all("mobile is offline" in r.summary for r in results)
        assert provider.acquired == ["mobile"]

    async def test_setup_crash_becomes_error(self, make_task, profiles) -> None:
        provider = CrashingProvider()
        runner = MatrixRunner(ExecutionEngine(), provider, profiles)
        entries = [MatrixEntry(task=make_task(name=n), platform="desktop") for n in ("a", "b")]

        results = await runner.run(entries)

        assert [r.status for r in results] == [ExecutionStatus.ERROR] * 2
        assert all("RuntimeError: telemetry socket reset" in r.summary for r in results)
        assert provider.acquired == ["desktop"]

    async def test_executor_crash_becomes_error(self, make_task, profiles) -> None:
        provider = FakeProvider()
        runner = MatrixRunner(CrashingEngine(), provider, profiles)

        results = await runner.run([MatrixEntry(task=make_task(), platform="desktop")])

        assert results[0].status is ExecutionStatus.ERROR
        assert "ValueError: invalid start byte" in results[0].summary
        assert provider.released == ["desktop"]

    async def test_unknown_platform(self, make_task, profiles) -> None:
        runner = MatrixRunner(ExecutionEngine(), FakeProvider(), profiles)

        results = await runner.run([MatrixEntry(task=make_task(), platform="switch")])

        assert results[0].status is ExecutionStatus.ERROR
        assert "Unknown platform 'switch'" in results[0].summary

    async def test_discovery_failures_reported_per_platform(self, profiles) -> None:
        runner = MatrixRunner(ExecutionEngine(), FakeProvider(), profiles)
        failure = DiscoveryFailure(name="broken", source_path="tasks/x.md", message="no title")

        results = await runner.run([], failures=[failure], platforms=["desktop", "mobile"])

        assert [(r.task_name, r.platform, r.status) for r in results] == [
            ("broken", "desktop", ExecutionStatus.ERROR),
            ("broken", "mobile", ExecutionStatus.ERROR),
        ]
        assert results[0].summary.startswith("Task definition could not be parsed")

    async def test_concurrency_is_bounded(self, make_task, profiles) -> None:
        engine = SlowEngine(delay=0.05)
        runner = MatrixRunner(engine, FakeProvider(), profiles, RunnerConfig(concurrency=2))
        entries = [MatrixEntry(task=make_task(name=f"t{i}"), platform="desktop") for i in range(6)]

        results = await runner.run(entries)

        assert len(results) == 6
        assert engine.peak <= 2


class TestTimeoutFor:
    def test_estimate_capped_by_ceiling(self, make_task) -> None:
        task = make_task(estimated_cost_ms=500_000)

        assert timeout_for(task, RunnerConfig(timeout_ceiling_ms=300_000)) == 300_000

    def test_override_shortens_the_estimate(self, make_task) -> None:
        task = make_task(estimated_cost_ms=60_000)

        assert timeout_for(task, RunnerConfig(timeout_ms=1_000)) == 1_000

    def test_override_extends_the_estimate(self, make_task) -> None:
        task = make_task(estimated_cost_ms=32_750)

        assert timeout_for(task, RunnerConfig(timeout_ms=90_000)) == 90_000

    def test_override_still_capped_by_ceiling(self, make_task) -> None:
        task = make_task(estimated_cost_ms=32_750)
        config = RunnerConfig(timeout_ceiling_ms=300_000, timeout_ms=600_000)

        assert timeout_for(task, config) == 300_000
