"""Report rendering collaborator.

The renderer turns a tag's items (plus an optional key-points analysis)
into a document under ``reports_dir`` and returns its filename. Layout
presets mirror the print presets offered to users.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from webinsight.shared.services.durable_write import atomic_write_text

from .errors import CollaboratorError
from .models import ContentItem, ItemType, Tag

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayoutPreset:
    landscape: bool = False
    scale: float = 1.0
    paper_width: float | None = 8.5
    paper_height: float | None = 11.0
    margin: float = 0.4


PRESETS: dict[str, LayoutPreset] = {
    "standard": LayoutPreset(),
    "fullPage": LayoutPreset(paper_width=None, paper_height=None, margin=0.0),
    "compact": LayoutPreset(scale=0.8, margin=0.2),
    "landscape": LayoutPreset(landscape=True, paper_width=11.0, paper_height=8.5),
}

_EXCERPT_CHARS = 1200


class ReportRenderer(Protocol):
    async def render(
        self,
        tag: Tag,
        items: list[ContentItem],
        key_points: ContentItem | None,
        options: dict[str, Any],
    ) -> str: ...


def resolve_preset(name: Any) -> tuple[str, LayoutPreset]:
    if isinstance(name, str) and name in PRESETS:
        return name, PRESETS[name]
    if name is not None:
        logger.warning("Unknown report preset %r, using standard", name)
    return "standard", PRESETS["standard"]


def report_filename(tag: Tag, when: datetime | None = None) -> str:
    stamp = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d_%H%M%S")
    safe = re.sub(r"[^A-Za-z0-9_-]+", "_", tag.name).strip("_") or f"tag{tag.id}"
    return f"WebInsight_Report_{safe}_{stamp}.md"


class MarkdownReportRenderer:
    """Writes a Markdown report atomically into ``reports_dir``."""

    def __init__(self, reports_dir: Path) -> None:
        self.reports_dir = Path(reports_dir).expanduser()

    async def render(
        self,
        tag: Tag,
        items: list[ContentItem],
        key_points: ContentItem | None,
        options: dict[str, Any],
    ) -> str:
        preset_name, preset = resolve_preset(options.get("preset"))
        body = self.compose(tag, items, key_points, options, preset_name, preset)
        filename = report_filename(tag)
        path = self.reports_dir / filename
        try:
            atomic_write_text(path, body)
        except OSError as exc:
            raise CollaboratorError(f"Failed to write report {path}: {exc}") from exc
        logger.info("Report for tag %r written to %s (%d items)", tag.name, path, len(items))
        return filename

    def compose(
        self,
        tag: Tag,
        items: list[ContentItem],
        key_points: ContentItem | None,
        options: dict[str, Any],
        preset_name: str,
        preset: LayoutPreset,
    ) -> str:
        lines = [
            "---",
            f"preset: {preset_name}",
            f"landscape: {str(preset.landscape).lower()}",
            f"scale: {preset.scale}",
            f"margin_in: {preset.margin}",
            "---",
            "",
            f"# WebInsight Report: {tag.name}",
            "",
            f"_Generated {datetime.now(timezone.utc):%Y-%m-%d %H:%M UTC} "
            f"from {len(items)} item(s)._",
            "",
        ]

        if options.get("includeKeyPoints", True) and key_points is not None:
            lines += ["## Key Points", "", (key_points.content or "").strip(), ""]

        lines += ["## Items", ""]
        for item in items:
            if item.type == ItemType.GENERATED_ANALYSIS:
                continue
            lines.append(f"### {item.title or 'Untitled'} ({item.type.value})")
            if item.url:
                lines.append(f"<{item.url}>")
            lines.append("")
            if item.is_text and item.content:
                excerpt = item.content.strip()
                if len(excerpt) > _EXCERPT_CHARS:
                    excerpt = excerpt[:_EXCERPT_CHARS].rstrip() + " ..."
                lines += [excerpt, ""]
            elif item.type == ItemType.SCREENSHOT:
                lines += ["_(screenshot)_", ""]

        if options.get("includeSources", True):
            urls = sorted({item.url for item in items if item.url})
            if urls:
                lines += ["## Sources", ""]
                lines += [f"- {url}" for url in urls]
                lines.append("")
        return "\n".join(lines)
