"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from valgate.config import Settings, load_settings, log_file, settings_from_dict
from valgate.domain.errors import ConfigError
from valgate.domain.models import PointType


class TestLoadSettings:
    def test_defaults_without_file(self, tmp_path) -> None:
        settings = load_settings(tmp_path)

        assert settings == Settings(root=tmp_path)
        assert settings.tasks_dir == "tasks"
        assert "ci" in settings.platforms

    def test_explicit_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path, tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path) -> None:
        (tmp_path / "valgate.yaml").write_text("")

        assert load_settings(tmp_path) == Settings(root=tmp_path)

    def test_invalid_yaml(self, tmp_path) -> None:
        (tmp_path / "valgate.yaml").write_text("tasks_dir: [unclosed\n")

        with pytest.raises(ConfigError, match="Cannot read configuration"):
            load_settings(tmp_path)

    def test_not_a_mapping(self, tmp_path) -> None:
        (tmp_path / "valgate.yaml").write_text("- just\n- a list\n")

        with pytest.raises(ConfigError, match="must be a mapping"):
            load_settings(tmp_path)

    def test_full_file(self, tmp_path) -> None:
        (tmp_path / "valgate.yaml").write_text(
            "tasks_dir: validation\n"
            "concurrency: 2\n"
            "regression:\n"
            "  threshold_percent: 5\n"
            "  window: 3\n"
            "sampler:\n"
            "  interval_seconds: 0.25\n"
            "priorities:\n"
            "  input: 1\n"
            "scoring:\n"
            "  weights:\n"
            "    security: 4\n"
            "  rules:\n"
            "    - keyword: shader\n"
            "      type: performance\n"
            "platforms:\n"
            "  desktop:\n"
            "    telemetry: telemetry/desktop.jsonl\n"
            "  switch:\n"
            "    family: console\n"
            "    outcomes:\n"
            "      setup: 0.5\n"
        )

        settings = load_settings(tmp_path)

        assert settings.tasks_dir == "validation"
        assert settings.concurrency == 2
        assert settings.regression.threshold_percent == 5.0
        assert settings.regression.window == 3
        assert settings.sampler_interval_seconds == 0.25
        assert settings.priorities == {"input": 1}
        assert settings.scoring.weight_for(PointType.SECURITY) == 4.0
        assert settings.scoring.classify("Shader compile") is PointType.PERFORMANCE
        assert settings.platforms["desktop"].telemetry == "telemetry/desktop.jsonl"
        assert settings.platforms["desktop"].max_total_memory_mb == 4096.0
        assert settings.platforms["switch"].outcome("setup") == 0.5


class TestSettingsFromDict:
    def test_unknown_keys_ignored(self, tmp_path, caplog) -> None:
        settings = settings_from_dict(tmp_path, {"colour": "blue"})

        assert settings == Settings(root=tmp_path)
        assert "colour" in caplog.text

    @pytest.mark.parametrize(
        "data",
        [
            {"concurrency": 0},
            {"concurrency": "many"},
            {"regression": {"window": 0}},
            {"scoring": {"weights": {"nonsense": 1}}},
            {"platforms": {"desktop": {"min_fps": "fast"}}},
            {"priorities": ["input"]},
        ],
    )
    def test_invalid_values(self, tmp_path, data) -> None:
        with pytest.raises(ConfigError):
            settings_from_dict(tmp_path, data)


def test_paths(tmp_path) -> None:
    settings = Settings(root=tmp_path)

    assert settings.resolve("reports") == tmp_path / "reports"
    assert log_file(Path("/p")) == Path("/p/.valgate/valgate.log")
