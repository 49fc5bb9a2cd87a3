"""JSON-lines telemetry source implementing MetricsSource.

Each line of the file is one sample::

    {"timestamp": 12.5, "fps": 58.2, "frameTimeMs": 17.2,
     "memoryByCategory": {"textures": 268435456, "meshes": 50331648}}

The source tails the file: ``read_sample`` returns the next complete line or
None when it has caught up, so a sampler can keep polling while a profiler
appends to the file.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, BinaryIO

from valgate.domain.models import PerformanceSample

logger = logging.getLogger("valgate.telemetry")


def sample_from_dict(data: dict[str, Any], *, now: float | None = None) -> PerformanceSample:
    """Build a sample from one decoded record.

    Raises:
        ValueError: when the record has neither ``fps`` nor ``frameTimeMs``
            or carries values of the wrong type.
    """
    frame_time = data.get("frameTimeMs", data.get("frame_time_ms"))
    fps = data.get("fps")
    if fps is None and frame_time is None:
        msg = "sample has neither fps nor frameTimeMs"
        raise ValueError(msg)
    if fps is None:
        fps = 1000.0 / float(frame_time) if float(frame_time) > 0 else 0.0
    if frame_time is None:
        frame_time = 1000.0 / float(fps) if float(fps) > 0 else 0.0
    memory = data.get("memoryByCategory", data.get("memory_by_category")) or {}
    if not isinstance(memory, dict):
        msg = "memoryByCategory must be an object"
        raise ValueError(msg)
    timestamp = data.get("timestamp")
    return PerformanceSample(
        timestamp=float(timestamp) if timestamp is not None else (now or time.time()),
        fps=float(fps),
        frame_time_ms=float(frame_time),
        memory_by_category=tuple(sorted((str(k), int(v)) for k, v in memory.items())),
    )


class JsonLinesSource:
    """Reads samples one line at a time from a growing JSON-lines file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._handle: BinaryIO | None = None

    def read_sample(self) -> PerformanceSample | None:
        handle = self._open()
        while True:
            position = handle.tell()
            line = handle.readline()
            if not line:
                return None
            if not line.endswith(b"\n"):
                # Partial write; retry from the same place on the next poll.
                handle.seek(position)
                return None
            if not line.strip():
                continue
            try:
                record = json.loads(line.decode("utf-8"))
                if not isinstance(record, dict):
                    msg = "record is not an object"
                    raise ValueError(msg)
                return sample_from_dict(record)
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping malformed telemetry line in %s: %s", self._path, exc)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def _open(self) -> BinaryIO:
        if self._handle is None:
            # Binary so that a bad byte sequence only costs its own line.
            self._handle = self._path.open("rb")
        return self._handle
