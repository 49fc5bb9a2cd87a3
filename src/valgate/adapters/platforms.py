"""Platform profiles and the local platform provider.

Profiles are plain configuration: the built-in table below mirrors the
per-platform limits the profiler integration shipped with, and YAML
configuration can override or extend it through ``profile_from_dict``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

from valgate.adapters.telemetry import JsonLinesSource
from valgate.domain.errors import ConfigError, PlatformUnavailableError
from valgate.domain.models import PlatformContext, PlatformProfile
from valgate.modules.sampler.core import BYTES_PER_MB, PerformanceSampler
from valgate.modules.scoring.core import acquire_label

logger = logging.getLogger("valgate.platforms")


def _alloc_rate_mb_per_min(bytes_per_frame: int, fps: float) -> float:
    return round(bytes_per_frame * fps * 60 / BYTES_PER_MB, 2)


BUILTIN_PROFILES: dict[str, PlatformProfile] = {
    "mobile-android": PlatformProfile(
        name="mobile-android",
        family="mobile",
        target_fps=30.0,
        min_fps=30.0,
        max_frame_time_ms=33.33,
        max_total_memory_mb=1024.0,
        category_caps_mb=(("textures", 512.0), ("meshes", 128.0)),
        max_alloc_rate_mb_per_min=_alloc_rate_mb_per_min(1024, 30.0),
        leak_threshold_mb=10.0,
    ),
    "mobile-ios": PlatformProfile(
        name="mobile-ios",
        family="mobile",
        target_fps=60.0,
        min_fps=60.0,
        max_frame_time_ms=16.67,
        max_total_memory_mb=2048.0,
        category_caps_mb=(("textures", 1024.0), ("meshes", 256.0)),
        max_alloc_rate_mb_per_min=_alloc_rate_mb_per_min(512, 60.0),
        leak_threshold_mb=10.0,
    ),
    "desktop": PlatformProfile(
        name="desktop",
        family="desktop",
        target_fps=60.0,
        min_fps=60.0,
        max_frame_time_ms=16.67,
        max_total_memory_mb=4096.0,
        category_caps_mb=(("textures", 2048.0), ("meshes", 512.0)),
        max_alloc_rate_mb_per_min=_alloc_rate_mb_per_min(2048, 60.0),
        leak_threshold_mb=50.0,
    ),
    "console": PlatformProfile(
        name="console",
        family="console",
        target_fps=60.0,
        min_fps=60.0,
        max_frame_time_ms=16.67,
        max_total_memory_mb=6144.0,
        category_caps_mb=(("textures", 3072.0), ("meshes", 1024.0)),
        max_alloc_rate_mb_per_min=_alloc_rate_mb_per_min(1024, 60.0),
        leak_threshold_mb=50.0,
    ),
    "xr": PlatformProfile(
        name="xr",
        family="xr",
        target_fps=90.0,
        min_fps=90.0,
        max_frame_time_ms=11.11,
        max_total_memory_mb=1536.0,
        category_caps_mb=(("textures", 512.0), ("meshes", 128.0)),
        max_alloc_rate_mb_per_min=_alloc_rate_mb_per_min(256, 90.0),
        leak_threshold_mb=10.0,
    ),
    "ci": PlatformProfile(
        name="ci",
        family="headless",
        headless=True,
        runtime_available=False,
    ),
}

_PAIR_FIELDS = frozenset({"outcomes", "category_caps_mb"})
_TUPLE_FIELDS = frozenset({"capabilities"})
_FLOAT_FIELDS = frozenset(
    {
        "target_fps",
        "min_fps",
        "max_frame_time_ms",
        "max_total_memory_mb",
        "max_alloc_rate_mb_per_min",
        "leak_threshold_mb",
    }
)


def profile_from_dict(name: str, data: Mapping[str, Any]) -> PlatformProfile:
    """Build a profile from configuration, starting from the built-in one if any.

    Raises:
        ConfigError: when a field has the wrong shape.
    """
    base = BUILTIN_PROFILES.get(name, PlatformProfile(name=name))
    known = {f.name for f in fields(PlatformProfile)} - {"name"}
    changes: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown platform field %s.%s", name, key)
            continue
        try:
            if key in _PAIR_FIELDS:
                if not isinstance(value, Mapping):
                    msg = "expected a mapping"
                    raise TypeError(msg)
                changes[key] = tuple(sorted((str(k), float(v)) for k, v in value.items()))
            elif key in _TUPLE_FIELDS:
                items = [value] if isinstance(value, str) else list(value)
                changes[key] = tuple(sorted(str(v) for v in items))
            elif key in _FLOAT_FIELDS:
                changes[key] = float(value)
            elif key in {"headless", "runtime_available"}:
                changes[key] = bool(value)
            else:
                changes[key] = None if value is None else str(value)
        except (TypeError, ValueError) as exc:
            msg = f"Invalid value for platform {name}.{key}: {exc}"
            raise ConfigError(msg) from exc
    return replace(base, **changes)


class LocalPlatformProvider:
    """Acquires local platform contexts and runs a sampler per telemetry file.

    Args:
        base_dir: Directory relative telemetry paths resolve against.
        sampler_interval: Polling cadence for samplers.
        sampler_window: Buffer size for samplers.
    """

    def __init__(
        self,
        base_dir: str | Path = ".",
        *,
        sampler_interval: float = 0.5,
        sampler_window: int = 120,
    ) -> None:
        self._base = Path(base_dir)
        self._interval = sampler_interval
        self._window = sampler_window
        self._sources: dict[str, JsonLinesSource] = {}

    async def acquire(self, profile: PlatformProfile) -> PlatformContext:
        if profile.telemetry is None:
            return PlatformContext(profile=profile)

        path = self._base / profile.telemetry
        if not path.is_file():
            msg = f"Telemetry file for {profile.name} not found: {path}"
            raise PlatformUnavailableError(msg)
        source = JsonLinesSource(path)
        sampler = PerformanceSampler(
            source, interval_seconds=self._interval, window=self._window
        )
        try:
            count = await asyncio.to_thread(sampler.drain)
        except (OSError, ValueError) as exc:
            source.close()
            msg = f"Cannot read telemetry for {profile.name}: {exc}"
            raise PlatformUnavailableError(msg) from exc
        sampler.capture_snapshot(acquire_label(profile.name))
        sampler.start()
        self._sources[profile.name] = source
        logger.info("Sampling %s from %s (%d initial samples)", profile.name, path, count)
        return PlatformContext(profile=profile, sampler=sampler)

    def release(self, context: PlatformContext) -> None:
        sampler = context.sampler
        if isinstance(sampler, PerformanceSampler):
            sampler.stop()
        source = self._sources.pop(context.name, None)
        if source is not None:
            source.close()
