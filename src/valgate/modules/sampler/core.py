"""Performance sampler: bounded window of frame timing and memory samples.

A background thread polls a ``MetricsSource`` on a fixed interval and appends
samples to a circular buffer. Readers always get copies; the buffer is only
mutated under the lock by ``record``.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import TYPE_CHECKING

from valgate.domain.models import (
    Issue,
    IssueType,
    PerformanceSample,
    PerformanceSummary,
    PlatformProfile,
)

if TYPE_CHECKING:
    from valgate.domain.ports import MetricsSource

logger = logging.getLogger("valgate.sampler")

BYTES_PER_MB = 1024 * 1024
CRITICAL_OVERSHOOT = 1.5


class PerformanceSampler:
    """Collects ``PerformanceSample``s and answers threshold and leak questions.

    Args:
        source: Where samples come from. ``None`` means samples are only
            added through ``record``.
        interval_seconds: Polling cadence of the background thread.
        window: Maximum number of samples kept; older ones are dropped.
    """

    def __init__(
        self,
        source: MetricsSource | None = None,
        *,
        interval_seconds: float = 0.5,
        window: int = 120,
    ) -> None:
        if window < 1:
            msg = f"Sampler window must be at least 1, got {window}"
            raise ValueError(msg)
        self._source = source
        self._interval = interval_seconds
        self._buffer: deque[PerformanceSample] = deque(maxlen=window)
        self._snapshots: dict[str, PerformanceSample] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # -- Collection ---------------------------------------------------------

    def record(self, sample: PerformanceSample) -> None:
        with self._lock:
            self._buffer.append(sample)

    def poll(self) -> PerformanceSample | None:
        """Read one sample from the source (if any) and record it."""
        if self._source is None:
            return None
        sample = self._source.read_sample()
        if sample is not None:
            self.record(sample)
        return sample

    def drain(self) -> int:
        """Poll until the source has nothing more to give; return the count."""
        count = 0
        while self.poll() is not None:
            count += 1
        return count

    def start(self) -> None:
        if self._thread is not None or self._source is None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="valgate-sampler", daemon=True)
        self._thread.start()
        logger.debug("Sampler started (interval %.2fs)", self._interval)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=max(self._interval * 4, 1.0))
        self._thread = None
        logger.debug("Sampler stopped with %d buffered samples", len(self.samples()))

    @property
    def running(self) -> bool:
        return self._thread is not None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.drain()
            except (OSError, ValueError) as exc:
                logger.warning("Sample source failed: %s", exc)
            self._stop.wait(self._interval)

    # -- Reads (always copies) ----------------------------------------------

    def samples(self) -> list[PerformanceSample]:
        with self._lock:
            return list(self._buffer)

    def latest(self) -> PerformanceSample | None:
        with self._lock:
            return self._buffer[-1] if self._buffer else None

    def capture_snapshot(self, label: str) -> PerformanceSample | None:
        """Store the latest sample under ``label`` and return it.

        Returns None (and stores nothing) when no sample has been taken yet.
        """
        sample = self.latest()
        if sample is not None:
            with self._lock:
                self._snapshots[label] = sample
        return sample

    def snapshot(self, label: str) -> PerformanceSample | None:
        with self._lock:
            return self._snapshots.get(label)

    # -- Analysis -----------------------------------------------------------

    def detect_leak(self, label_a: str, label_b: str, threshold_mb: float) -> bool:
        """True if total memory grew by more than ``threshold_mb`` from a to b.

        A missing snapshot means there is nothing to compare, which is not a leak.
        """
        before, after = self.snapshot(label_a), self.snapshot(label_b)
        if before is None or after is None:
            return False
        growth_mb = (after.total_memory_bytes - before.total_memory_bytes) / BYTES_PER_MB
        if growth_mb > threshold_mb:
            logger.info("Memory grew %.1fMB between %s and %s", growth_mb, label_a, label_b)
            return True
        return False

    def compute_trend(self, window: int | None = None) -> float:
        """Least-squares slope of total memory over the most recent samples.

        Returns:
            Bytes per minute; 0.0 with fewer than two samples or no elapsed time.
        """
        samples = self.samples()
        if window is not None:
            samples = samples[-window:] if window > 0 else []
        if len(samples) < 2:
            return 0.0
        xs = [s.timestamp for s in samples]
        ys = [float(s.total_memory_bytes) for s in samples]
        mean_x = sum(xs) / len(xs)
        mean_y = sum(ys) / len(ys)
        variance = sum((x - mean_x) ** 2 for x in xs)
        if variance == 0:
            return 0.0
        covariance = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys, strict=True))
        return covariance / variance * 60.0

    def validate_against_thresholds(self, profile: PlatformProfile) -> list[Issue]:
        """Check the latest sample and the allocation trend against a profile.

        Severity scales with the overshoot: more than 150% of a cap is CRITICAL,
        anything else over the cap is a WARNING. A frame rate between the
        minimum and the target is always a WARNING.
        """
        sample = self.latest()
        if sample is None:
            return []

        issues: list[Issue] = []
        _check(
            issues,
            "performance.frame_time",
            sample.frame_time_ms,
            profile.max_frame_time_ms,
            "ms frame time",
        )
        if sample.fps < profile.min_fps:
            ratio = profile.min_fps / sample.fps if sample.fps > 0 else float("inf")
            message = f"{sample.fps:.1f} fps is below the {profile.min_fps:g} fps minimum"
            issues.append(_issue(ratio, "performance.fps", message))
        elif sample.fps < profile.target_fps:
            message = f"{sample.fps:.1f} fps misses the {profile.target_fps:g} fps target"
            issues.append(Issue(IssueType.WARNING, "performance.fps_target", message))
        total_mb = sample.total_memory_bytes / BYTES_PER_MB
        _check(issues, "memory.total", total_mb, profile.max_total_memory_mb, "MB total memory")
        usage = dict(sample.memory_by_category)
        for category, cap_mb in profile.category_caps_mb:
            if category in usage:
                used_mb = usage[category] / BYTES_PER_MB
                _check(issues, f"memory.{category}", used_mb, cap_mb, f"MB {category}")
        rate_mb = self.compute_trend() / BYTES_PER_MB
        if rate_mb > 0:
            _check(
                issues,
                "memory.allocation_rate",
                rate_mb,
                profile.max_alloc_rate_mb_per_min,
                "MB/min allocation rate",
            )
        return issues

    def summary(self) -> PerformanceSummary | None:
        samples = self.samples()
        if not samples:
            return None
        count = len(samples)
        return PerformanceSummary(
            fps_mean=round(sum(s.fps for s in samples) / count, 2),
            frame_time_ms_mean=round(sum(s.frame_time_ms for s in samples) / count, 2),
            total_memory_mb=round(samples[-1].total_memory_bytes / BYTES_PER_MB, 2),
            sample_count=count,
        )


def _issue(ratio: float, category: str, message: str) -> Issue:
    issue_type = IssueType.CRITICAL if ratio > CRITICAL_OVERSHOOT else IssueType.WARNING
    return Issue(type=issue_type, category=category, message=message)


def _check(issues: list[Issue], category: str, value: float, cap: float, unit: str) -> None:
    if cap <= 0 or value <= cap:
        return
    ratio = value / cap
    message = f"{value:.1f}{unit} exceeds the {cap:g} cap ({ratio * 100:.0f}%)"
    issues.append(_issue(ratio, category, message))
