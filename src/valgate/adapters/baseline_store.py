"""JSON file baseline store implementing BaselineStore.

One file per ``(task, platform)`` key::

    {"schemaVersion": 1, "task": "...", "platform": "...",
     "entries": [{"timestamp": ..., "overallScore": ..., "categoryScores": {...},
                  "buildIdentity": ..., "metrics": {...}}]}

File names percent-encode both key parts and join them with ``@``, so
distinct keys never share a file. Unknown fields and entries that fail to
parse are ignored on read but kept when the file is rewritten, so newer
files stay readable and are not truncated. Writes go to a temp file that is
renamed into place. ``lock`` serializes a key both within the process
(``threading.Lock``) and across processes (``fcntl.flock`` on a sidecar
lock file); ``append`` expects the caller to hold it.
"""

from __future__ import annotations

import fcntl
import json
import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from urllib.parse import quote

from valgate.domain.errors import BaselineConflictError
from valgate.domain.models import BaselineEntry

logger = logging.getLogger("valgate.baselines")

SCHEMA_VERSION = 1

# Percent-encoded by ``quote(..., safe="")``, so never present inside a part.
KEY_SEPARATOR = "@"
def entry_to_dict(entry: BaselineEntry) -> dict[str, Any]:
    return {
        "timestamp": entry.timestamp,
        "overallScore": entry.overall_score,
        "categoryScores": dict(entry.category_scores),
        "buildIdentity": entry.build_identity,
        "metrics": {_camel(k): v for k, v in entry.metrics},
    }


def entry_from_dict(data: dict[str, Any]) -> BaselineEntry:
    """Raises KeyError, TypeError or ValueError on a malformed entry."""
    categories = data.get("categoryScores") or {}
    metrics = data.get("metrics") or {}
    return BaselineEntry(
        timestamp=str(data["timestamp"]),
        overall_score=float(data["overallScore"]),
        category_scores=tuple(sorted((str(k), float(v)) for k, v in categories.items())),
        build_identity=str(data.get("buildIdentity", "local")),
        metrics=tuple(sorted((_snake(str(k)), float(v)) for k, v in metrics.items())),
    )


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)([A-Z])", r"_\1", name).lower()


class JsonBaselineStore:
    """Bounded FIFO baseline histories persisted as JSON files.

    Args:
        directory: Where the per-key files live.
        history_limit: Maximum entries kept per key; the oldest are evicted.
    """

    def __init__(self, directory: str | Path, *, history_limit: int = 10) -> None:
        if history_limit < 1:
            msg = f"history_limit must be at least 1, got {history_limit}"
            raise ValueError(msg)
        self._dir = Path(directory)
        self._limit = history_limit
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def history_limit(self) -> int:
        return self._limit

    def path_for(self, key: tuple[str, str]) -> Path:
        task, platform = key
        name = f"{quote(task, safe='')}{KEY_SEPARATOR}{quote(platform, safe='')}"
        return self._dir / f"{name}.json"

    # -- Locking ------------------------------------------------------------

    def _thread_lock(self, key: tuple[str, str]) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def lock(self, key: tuple[str, str]) -> Iterator[None]:
        lock_path = self.path_for(key).with_suffix(".lock")
        with self._thread_lock(key):
            self._dir.mkdir(parents=True, exist_ok=True)
            with lock_path.open("w") as lock_fd:
                fcntl.flock(lock_fd, fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_fd, fcntl.LOCK_UN)

    # -- Reads --------------------------------------------------------------

    def _load(self, key: tuple[str, str]) -> dict[str, Any] | None:
        """Return the file's document, or None when there is no usable file.

        Raises:
            BaselineConflictError: when the file records another key.
        """
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            corrupt = path.with_suffix(".corrupt")
            path.replace(corrupt)
            logger.error("Corrupt baseline file %s moved to %s: %s", path, corrupt, exc)
            return None
        if not isinstance(document, dict):
            corrupt = path.with_suffix(".corrupt")
            path.replace(corrupt)
            logger.error("Baseline file %s is not an object, moved to %s", path, corrupt)
            return None
        recorded = (document.get("task"), document.get("platform"))
        if recorded != key:
            msg = f"Baseline file {path} holds {recorded}, not {key}"
            raise BaselineConflictError(msg)
        return document

    @staticmethod
    def _raw_entries(document: dict[str, Any] | None) -> list[Any]:
        if document is None:
            return []
        entries = document.get("entries", [])
        return list(entries) if isinstance(entries, list) else []

    def read(self, key: tuple[str, str]) -> list[BaselineEntry]:
        """Parsed entries, oldest first; malformed entries are skipped.

        Raises:
            BaselineConflictError: when the key's file records another key.
        """
        entries: list[BaselineEntry] = []
        for raw in self._raw_entries(self._load(key)):
            try:
                entries.append(entry_from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping malformed baseline entry for %s: %s", key, exc)
        return entries

    def keys(self) -> list[tuple[str, str]]:
        if not self._dir.is_dir():
            return []
        found: set[tuple[str, str]] = set()
        for path in self._dir.glob("*.json"):
            try:
                document = json.loads(path.read_text(encoding="utf-8"))
                found.add((str(document["task"]), str(document["platform"])))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable baseline file %s: %s", path, exc)
        return sorted(found)

    # -- Writes -------------------------------------------------------------

    def append(self, key: tuple[str, str], entry: BaselineEntry) -> None:
        """Append one entry and evict from the front beyond the bound.

        Entries this version cannot parse count toward the bound and are
        written back unchanged, as are unknown top-level fields.

        Raises:
            BaselineConflictError: when the key's file records another key.
        """
        document = self._load(key) or {}
        history = self._raw_entries(document)
        history.append(entry_to_dict(entry))
        evicted = max(len(history) - self._limit, 0)
        history = history[evicted:]
        document = {
            **document,
            "schemaVersion": document.get("schemaVersion", SCHEMA_VERSION),
            "task": key[0],
            "platform": key[1],
            "entries": history,
        }
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.rename(path)
        logger.debug("Appended baseline for %s (%d kept, %d evicted)", key, len(history), evicted)
