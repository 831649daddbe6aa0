"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via WEBINSIGHT_* env vars
or a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


# Optional async callback for observing routed traffic.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set. Observer errors are logged, not raised."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug("Event callback failed for %s", event.get("event"), exc_info=True)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in {"1", "true", "yes"}


DEFAULT_REPORTS_DIR = Path.home() / ".webinsight" / "reports"


@dataclass
class ReportConfig:
    """Flags driving the report pipeline. Each step may be skipped."""

    # Step 1: look for an existing key-points item before generating.
    check_existing_key_points: bool = True
    # Step 2: generate key points when the check finds none.
    generate_key_points_if_missing: bool = True
    # Fall back to matching "key points" in titles when an item carries no
    # analysis_type marker. Can misfire on user-authored titles.
    legacy_title_heuristic: bool = True
    # Step 4: reload the panel cache (current filter) after success.
    refresh_cache_on_success: bool = True
    # Forwarded to the renderer.
    include_key_points: bool = True
    include_sources: bool = True
    preset: str = "standard"

    def report_options(self) -> dict[str, Any]:
        return {
            "includeKeyPoints": self.include_key_points,
            "includeSources": self.include_sources,
            "preset": self.preset,
        }


@dataclass
class EngineConfig:
    """Coordination layer configuration."""

    # Selection
    min_selection_size: float = 5.0
    # Pause between hiding the overlay and sending the capture request, so
    # the overlay is off-screen when the coordinator grabs the viewport.
    capture_delay_seconds: float = 0.05

    # Transport
    queue_size: int = 1000

    # Caller-side bounds for panel triggers. 0 (or negative) disables.
    request_timeout_seconds: float = 30.0
    step_timeout_seconds: float = 120.0
    report_timeout_seconds: float = 300.0

    # Panel
    status_clear_seconds: float = 3.5

    # Key points
    max_items_for_summary: int = 5
    max_summary_chars: int = 15000

    # Screenshots: run the image prompts after each save.
    analyze_screenshots: bool = True

    # Output
    reports_dir: str = str(DEFAULT_REPORTS_DIR)

    # Logging
    log_level: str = "INFO"

    report: ReportConfig = field(default_factory=ReportConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from WEBINSIGHT_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("WEBINSIGHT_")
        }
        if overrides:
            logger.info(
                "EngineConfig.from_env: WEBINSIGHT_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no WEBINSIGHT_* env vars set, using defaults")

        report = ReportConfig(
            generate_key_points_if_missing=_env_flag(
                "WEBINSIGHT_GENERATE_KEY_POINTS",
                ReportConfig.generate_key_points_if_missing,
            ),
            legacy_title_heuristic=_env_flag(
                "WEBINSIGHT_LEGACY_TITLE_HEURISTIC",
                ReportConfig.legacy_title_heuristic,
            ),
        )
        config = cls(
            min_selection_size=float(os.getenv(
                "WEBINSIGHT_MIN_SELECTION_SIZE", str(cls.min_selection_size)
            )),
            capture_delay_seconds=float(os.getenv(
                "WEBINSIGHT_CAPTURE_DELAY", str(cls.capture_delay_seconds)
            )),
            queue_size=int(os.getenv(
                "WEBINSIGHT_QUEUE_SIZE", str(cls.queue_size)
            )),
            request_timeout_seconds=float(os.getenv(
                "WEBINSIGHT_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            step_timeout_seconds=float(os.getenv(
                "WEBINSIGHT_STEP_TIMEOUT", str(cls.step_timeout_seconds)
            )),
            report_timeout_seconds=float(os.getenv(
                "WEBINSIGHT_REPORT_TIMEOUT", str(cls.report_timeout_seconds)
            )),
            analyze_screenshots=_env_flag(
                "WEBINSIGHT_ANALYZE_SCREENSHOTS", cls.analyze_screenshots
            ),
            reports_dir=os.getenv("WEBINSIGHT_REPORTS_DIR", cls.reports_dir),
            log_level=os.getenv("WEBINSIGHT_LOG_LEVEL", cls.log_level),
            report=report,
        )
        logger.info(
            "EngineConfig.from_env: min_selection=%s request_timeout=%s "
            "report_timeout=%s reports_dir=%s",
            config.min_selection_size, config.request_timeout_seconds,
            config.report_timeout_seconds, config.reports_dir,
        )
        return config


def timeout_or_none(seconds: float) -> float | None:
    """Map the 'disabled' convention (<= 0) to None for asyncio.wait_for."""
    return seconds if seconds > 0 else None
