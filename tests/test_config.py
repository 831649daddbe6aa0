from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from webinsight.engine.config import EngineConfig, timeout_or_none
from webinsight.engine.yaml_config import find_config, load_yaml_config


def test_defaults() -> None:
    config = EngineConfig()

    assert config.min_selection_size == 5.0
    assert config.max_items_for_summary == 5
    assert config.max_summary_chars == 15000
    assert config.report.check_existing_key_points is True
    assert config.report.report_options() == {
        "includeKeyPoints": True, "includeSources": True, "preset": "standard",
    }


def test_from_env_overrides() -> None:
    env = {
        "WEBINSIGHT_MIN_SELECTION_SIZE": "12",
        "WEBINSIGHT_REQUEST_TIMEOUT": "0",
        "WEBINSIGHT_REPORTS_DIR": "/tmp/reports",
        "WEBINSIGHT_GENERATE_KEY_POINTS": "no",
        "WEBINSIGHT_LEGACY_TITLE_HEURISTIC": "yes",
    }
    with patch.dict(os.environ, env):
        config = EngineConfig.from_env()

    assert config.min_selection_size == 12.0
    assert config.request_timeout_seconds == 0.0
    assert config.reports_dir == "/tmp/reports"
    assert config.report.generate_key_points_if_missing is False
    assert config.report.legacy_title_heuristic is True


def test_timeout_or_none() -> None:
    assert timeout_or_none(0) is None
    assert timeout_or_none(-1) is None
    assert timeout_or_none(2.5) == 2.5


def test_load_yaml_config_layers_over_defaults(tmp_path) -> None:
    path = tmp_path / "webinsight.yaml"
    path.write_text(
        "engine:\n"
        "  min_selection_size: 8\n"
        "  request_timeout_seconds: nope\n"
        "  mystery: 1\n"
        "report:\n"
        "  legacy_title_heuristic: false\n"
        "  preset: compact\n"
        "inference:\n"
        "  model: gemini-1.5-pro\n"
        "extras:\n"
        "  ignored: true\n"
    )

    config = load_yaml_config(path)

    assert config.engine.min_selection_size == 8.0
    assert config.engine.request_timeout_seconds == 30.0
    assert not hasattr(config.engine, "mystery")
    assert config.engine.report.legacy_title_heuristic is False
    assert config.engine.report.preset == "compact"
    assert config.inference.model == "gemini-1.5-pro"
    assert config.inference.api_key_env == "GEMINI_API_KEY"


def test_load_yaml_config_rejects_non_mapping(tmp_path) -> None:
    path = tmp_path / "webinsight.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ValueError, match="must be a mapping"):
        load_yaml_config(path)


def test_empty_yaml_gives_defaults(tmp_path) -> None:
    path = tmp_path / "webinsight.yaml"
    path.write_text("")

    config = load_yaml_config(path)

    assert config.engine.min_selection_size == 5.0
    assert config.inference.model == "gemini-2.0-flash"


def test_find_config_prefers_dot_directory(tmp_path) -> None:
    assert find_config(tmp_path) is None

    (tmp_path / "webinsight.yaml").write_text("{}")
    assert find_config(tmp_path) == tmp_path / "webinsight.yaml"

    hidden = tmp_path / ".webinsight"
    hidden.mkdir()
    (hidden / "webinsight.yaml").write_text("{}")
    assert find_config(tmp_path) == hidden / "webinsight.yaml"
