"""User preferences stored in ~/.webinsight/preferences.json.

Global (not per-config) settings for the panel: theme and the tag the
panel last filtered by.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from .durable_write import atomic_write_text

logger = logging.getLogger(__name__)

PREFS_PATH = Path.home() / ".webinsight" / "preferences.json"

THEMES = ("system", "light", "dark")


@dataclass
class UserPreferences:
    """Panel preference settings.

    Attributes:
        theme: "system" (default), "light" or "dark".
        last_filter_tag_id: Tag the panel was filtered by when it closed,
            restored on the next launch. None shows every item.
        report_preset: Layout preset handed to the report renderer.
    """

    theme: str = "system"
    last_filter_tag_id: int | None = None
    report_preset: str = "standard"

    def validate(self) -> None:
        if self.theme not in THEMES:
            self.theme = "system"
        if self.last_filter_tag_id is not None and (
            isinstance(self.last_filter_tag_id, bool)
            or not isinstance(self.last_filter_tag_id, int)
        ):
            self.last_filter_tag_id = None
        if not isinstance(self.report_preset, str) or not self.report_preset:
            self.report_preset = "standard"

    @property
    def dark(self) -> bool | None:
        """True/False for an explicit theme, None to follow the terminal."""
        if self.theme == "system":
            return None
        return self.theme == "dark"

    def save(self, path: Path | None = None) -> None:
        target = path or PREFS_PATH
        try:
            atomic_write_text(target, json.dumps(asdict(self), indent=2))
        except OSError:
            logger.warning("Failed to save preferences to %s", target, exc_info=True)

    @classmethod
    def load(cls, path: Path | None = None) -> UserPreferences:
        """Load preferences from disk, returning defaults if missing/corrupt."""
        target = path or PREFS_PATH
        if not target.exists():
            logger.debug("Preferences file not found at %s; using defaults", target)
            return cls()
        try:
            data = json.loads(target.read_text())
        except (OSError, ValueError):
            logger.warning("Failed to load preferences from %s; using defaults", target)
            return cls()
        if not isinstance(data, dict):
            logger.warning("Preferences at %s are not a mapping; using defaults", target)
            return cls()
        prefs = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        prefs.validate()
        logger.debug("Loaded preferences from %s", target)
        return prefs
