from __future__ import annotations

from datetime import datetime, timezone

import pytest

from webinsight.engine.models import ContentItem, ItemType, Tag
from webinsight.engine.report import PRESETS, MarkdownReportRenderer, report_filename, resolve_preset


def test_resolve_preset_falls_back_to_standard() -> None:
    assert resolve_preset("compact") == ("compact", PRESETS["compact"])
    assert resolve_preset("poster") == ("standard", PRESETS["standard"])
    assert resolve_preset(None) == ("standard", PRESETS["standard"])
    assert PRESETS["landscape"].landscape is True


def test_report_filename_is_filesystem_safe() -> None:
    when = datetime(2024, 5, 1, 9, 30, 0, tzinfo=timezone.utc)

    assert report_filename(Tag(3, "sea life/2024"), when) == (
        "WebInsight_Report_sea_life_2024_2024-05-01_093000.md"
    )
    assert report_filename(Tag(3, "???"), when).startswith("WebInsight_Report_tag3_")


@pytest.mark.asyncio
async def test_render_writes_markdown(tmp_path) -> None:
    renderer = MarkdownReportRenderer(tmp_path)
    items = [
        ContentItem(id=1, type=ItemType.PAGE, title="Tides", content="The moon pulls.",
                    url="https://b.example/"),
        ContentItem(id=2, type=ItemType.SCREENSHOT, title="Shot", url="https://a.example/"),
        ContentItem(id=3, type=ItemType.GENERATED_ANALYSIS, title="Key Points",
                    content="- tides", analysis_type="key_points"),
    ]

    filename = await renderer.render(
        Tag(1, "ocean"), items, items[2], {"preset": "compact"},
    )
    body = (tmp_path / filename).read_text()

    assert "preset: compact" in body
    assert "# WebInsight Report: ocean" in body
    assert "## Key Points\n\n- tides" in body
    assert "### Tides (page)" in body
    assert "_(screenshot)_" in body
    assert "### Key Points" not in body
    assert "## Sources\n\n- https://a.example/\n- https://b.example/" in body


@pytest.mark.asyncio
async def test_render_honours_section_options(tmp_path) -> None:
    renderer = MarkdownReportRenderer(tmp_path)
    item = ContentItem(id=1, type=ItemType.SELECTION, title="Sel", content="x" * 1300,
                       url="https://a.example/")
    key_points = ContentItem(id=2, type=ItemType.GENERATED_ANALYSIS, content="- k")

    filename = await renderer.render(
        Tag(1, "ocean"), [item], key_points,
        {"includeKeyPoints": False, "includeSources": False},
    )
    body = (tmp_path / filename).read_text()

    assert "## Key Points" not in body
    assert "## Sources" not in body
    assert ("x" * 1200 + " ...") in body
