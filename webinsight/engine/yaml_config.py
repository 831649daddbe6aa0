"""YAML configuration loader.

Loads a single YAML file layered over the dataclass defaults. When no
YAML is provided, env vars work exactly as before.

Example YAML:
    engine:
      min_selection_size: 5
      request_timeout_seconds: 30
      reports_dir: ~/Documents/webinsight

    report:
      generate_key_points_if_missing: true
      legacy_title_heuristic: false
      preset: compact

    inference:
      model: gemini-2.0-flash
      api_key_env: GEMINI_API_KEY
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig, ReportConfig

logger = logging.getLogger(__name__)

DEFAULT_INFERENCE_MODEL = "gemini-2.0-flash"


@dataclass
class InferenceConfig:
    """Where the inference collaborator lives."""
    model: str = DEFAULT_INFERENCE_MODEL
    api_key_env: str = "GEMINI_API_KEY"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_seconds: float = 60.0

    def api_key(self) -> str | None:
        return os.getenv(self.api_key_env) or None


@dataclass
class WebInsightConfig:
    """Complete parsed YAML configuration."""
    engine: EngineConfig
    inference: InferenceConfig


def _apply(target: Any, raw: dict[str, Any], section: str) -> None:
    """Copy known keys from ``raw`` onto a dataclass instance, coercing type."""
    known = {f.name: f for f in fields(target)}
    for key, value in raw.items():
        f = known.get(key)
        if f is None or key == "report":
            logger.warning("Ignoring unknown %s config key: %s", section, key)
            continue
        current = getattr(target, key)
        try:
            if isinstance(current, bool):
                value = bool(value)
            elif isinstance(current, int):
                value = int(value)
            elif isinstance(current, float):
                value = float(value)
            elif isinstance(current, str):
                value = str(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid value for %s.%s: %r (keeping %r)",
                section, key, value, current,
            )
            continue
        setattr(target, key, value)


def load_yaml_config(path: str | Path) -> WebInsightConfig:
    """Parse a webinsight.yaml file. Missing sections keep defaults."""
    config_path = Path(path).expanduser()
    logger.info("Loading YAML config from %s", config_path)
    data = yaml.safe_load(config_path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping: {config_path}")

    engine = EngineConfig()
    _apply(engine, data.get("engine") or {}, "engine")
    engine.reports_dir = str(Path(engine.reports_dir).expanduser())

    report = ReportConfig()
    _apply(report, data.get("report") or {}, "report")
    engine.report = report

    inference = InferenceConfig()
    _apply(inference, data.get("inference") or {}, "inference")

    for section in data:
        if section not in {"engine", "report", "inference"}:
            logger.warning("Ignoring unknown config section: %s", section)

    return WebInsightConfig(engine=engine, inference=inference)


def find_config(cwd: Path | None = None) -> Path | None:
    """Auto-discover .webinsight/webinsight.yaml, then webinsight.yaml."""
    base = cwd or Path.cwd()
    for candidate in (
        base / ".webinsight" / "webinsight.yaml",
        base / "webinsight.yaml",
    ):
        if candidate.exists():
            return candidate
    return None
