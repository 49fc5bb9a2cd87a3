"""Path constants and configuration loading.

Settings come from an optional ``valgate.yaml`` at the project root, merged
over the defaults below. Unknown keys are logged and ignored.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from valgate.adapters.platforms import BUILTIN_PROFILES, profile_from_dict
from valgate.domain.errors import ConfigError
from valgate.domain.models import PlatformProfile, PointType
from valgate.modules.regression.core import RegressionConfig
from valgate.modules.scoring.core import ScoringPolicy

logger = logging.getLogger("valgate.config")

CONFIG_FILE = "valgate.yaml"
STATE_DIR = ".valgate"
LOG_FILE = "valgate.log"
TASKS_FILE = ".validation-tasks.json"
MATRIX_FILE = ".validation-matrix.json"


def config_file(project_root: Path) -> Path:
    """Return the default valgate.yaml path."""
    return project_root / CONFIG_FILE


def state_dir(project_root: Path) -> Path:
    """Return the .valgate directory path for a project."""
    return project_root / STATE_DIR


def log_file(project_root: Path) -> Path:
    """Return the log file path."""
    return state_dir(project_root) / LOG_FILE


@dataclass(frozen=True)
class Settings:
    """Resolved run configuration. Relative paths resolve against ``root``."""

    root: Path
    tasks_dir: str = "tasks"
    task_glob: str = "**/*.md"
    task_prefix: str = "validate-"
    output_dir: str = "reports"
    baseline_dir: str = f"{STATE_DIR}/baselines"
    concurrency: int = os.cpu_count() or 1
    timeout_ceiling_ms: int = 300_000
    cost_ceiling_ms: int = 300_000
    regression: RegressionConfig = field(default_factory=RegressionConfig)
    sampler_interval_seconds: float = 0.5
    sampler_window: int = 120
    priorities: Mapping[str, int] = field(default_factory=dict)
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    platforms: Mapping[str, PlatformProfile] = field(default_factory=lambda: dict(BUILTIN_PROFILES))

    def resolve(self, path: str) -> Path:
        return self.root / path


_SCALARS: dict[str, type] = {
    "tasks_dir": str,
    "task_glob": str,
    "task_prefix": str,
    "output_dir": str,
    "baseline_dir": str,
    "concurrency": int,
    "timeout_ceiling_ms": int,
    "cost_ceiling_ms": int,
}
_SECTIONS = frozenset({"regression", "sampler", "priorities", "scoring", "platforms"})


def _mapping(value: object, where: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        msg = f"'{where}' must be a mapping, got {type(value).__name__}"
        raise ConfigError(msg)
    return value


def _convert(value: object, kind: type, where: str) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        msg = f"Invalid value for '{where}': {value!r}"
        raise ConfigError(msg) from exc


def _regression(data: Mapping[str, Any]) -> RegressionConfig:
    config = RegressionConfig()
    changes: dict[str, Any] = {}
    for key, kind in (("threshold_percent", float), ("window", int), ("history_limit", int)):
        if key in data:
            changes[key] = _convert(data[key], kind, f"regression.{key}")
    if changes.get("window", 1) < 1 or changes.get("history_limit", 1) < 1:
        msg = "regression.window and regression.history_limit must be at least 1"
        raise ConfigError(msg)
    return replace(config, **changes)


def _scoring(data: Mapping[str, Any]) -> ScoringPolicy:
    policy = ScoringPolicy()
    changes: dict[str, Any] = {}
    try:
        if "weights" in data:
            weights = dict(policy.type_weights)
            for name, weight in _mapping(data["weights"], "scoring.weights").items():
                weights[PointType(name)] = float(weight)
            changes["type_weights"] = tuple(weights.items())
        if "rules" in data:
            extra = tuple(
                (str(rule["keyword"]).lower(), PointType(rule["type"])) for rule in data["rules"]
            )
            changes["type_rules"] = extra + policy.type_rules
        for key in ("warning_ratio", "critical_ratio", "default_outcome", "points_per_weight"):
            if key in data:
                changes[key] = float(data[key])
    except (KeyError, TypeError, ValueError) as exc:
        msg = f"Invalid scoring configuration: {exc}"
        raise ConfigError(msg) from exc
    return replace(policy, **changes)


def settings_from_dict(root: Path, data: Mapping[str, Any]) -> Settings:
    """Merge a decoded configuration mapping over the defaults.

    Raises:
        ConfigError: on a value of the wrong type or shape.
    """
    changes: dict[str, Any] = {}
    for key, value in data.items():
        if key in _SCALARS:
            changes[key] = _convert(value, _SCALARS[key], key)
        elif key not in _SECTIONS:
            logger.warning("Ignoring unknown configuration key '%s'", key)

    if "regression" in data:
        changes["regression"] = _regression(_mapping(data["regression"], "regression"))
    if "sampler" in data:
        sampler = _mapping(data["sampler"], "sampler")
        if "interval_seconds" in sampler:
            changes["sampler_interval_seconds"] = _convert(
                sampler["interval_seconds"], float, "sampler.interval_seconds"
            )
        if "window" in sampler:
            changes["sampler_window"] = _convert(sampler["window"], int, "sampler.window")
    if "priorities" in data:
        changes["priorities"] = {
            str(name): _convert(value, int, f"priorities.{name}")
            for name, value in _mapping(data["priorities"], "priorities").items()
        }
    if "scoring" in data:
        changes["scoring"] = _scoring(_mapping(data["scoring"], "scoring"))
    if "platforms" in data:
        platforms = dict(BUILTIN_PROFILES)
        for name, spec in _mapping(data["platforms"], "platforms").items():
            fields = _mapping(spec or {}, f"platforms.{name}")
            platforms[str(name)] = profile_from_dict(str(name), fields)
        changes["platforms"] = platforms

    if changes.get("concurrency", 1) < 1:
        msg = "concurrency must be at least 1"
        raise ConfigError(msg)
    return Settings(root=root, **changes)


def load_settings(root: Path, path: Path | None = None) -> Settings:
    """Load settings for a project.

    Args:
        root: Project root; relative paths in the settings resolve against it.
        path: Explicit configuration file. When omitted, ``valgate.yaml`` at
            the root is used if present and defaults otherwise.

    Raises:
        ConfigError: when the file is unreadable, not YAML, or not a mapping.
    """
    explicit = path is not None
    path = path or config_file(root)
    if not path.exists():
        if explicit:
            msg = f"Configuration file not found: {path}"
            raise ConfigError(msg)
        return Settings(root=root)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Cannot read configuration {path}: {exc}"
        raise ConfigError(msg) from exc
    if data is None:
        return Settings(root=root)
    logger.info("Loaded configuration from %s", path)
    return settings_from_dict(root, _mapping(data, str(path)))
