"""Scripted walkthrough of the capture and report pipeline.

Runs headless against a bundled sample page: saves the page and a text
selection, drags out an area capture, tags everything and then drives
the key-points and report buttons exactly as the panel would.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from webinsight.adapters.runtime import WebInsightRuntime
from webinsight.engine.models import TaskStatus
from webinsight.engine.page import PageDocument
from webinsight.engine.selection import drag_events

logger = logging.getLogger(__name__)

SAMPLE_TAB_ID = 1
SAMPLE_TAG = "research"
SAMPLE_URL = "https://example.org/articles/tidal-energy"
SAMPLE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <title>Tidal Energy Primer</title>
  <meta name="description" content="How tidal turbines turn predictable tides into power.">
  <meta name="keywords" content="tidal, renewable, turbines">
</head>
<body>
  <h1>Tidal Energy Primer</h1>
  <p>Tides are driven by the gravitational pull of the moon and the sun,
  which makes them predictable years in advance.</p>
  <p>Tidal stream turbines work like underwater wind turbines, but water is
  roughly eight hundred times denser than air.</p>
  <p>Barrage schemes hold water behind a dam and release it through turbines
  as the tide turns.</p>
  <a href="/articles/wave-energy">Wave energy compared</a>
  <a href="https://en.wikipedia.org/wiki/Tidal_power">Tidal power on Wikipedia</a>
  <a href="#top">Back to top</a>
</body>
</html>
"""
SAMPLE_SELECTION = "water is\n  roughly eight hundred times denser than air"


async def run_demo(
    runtime: WebInsightRuntime,
    out: Callable[[str], None] = print,
) -> dict[str, Any]:
    """Drive one full session and return what it produced."""
    panel = runtime.panel
    document = PageDocument(SAMPLE_URL, SAMPLE_HTML, device_pixel_ratio=2.0)
    agent = runtime.open_tab(SAMPLE_TAB_ID, document)
    out(f"Opened tab {SAMPLE_TAB_ID}: {SAMPLE_URL}")

    saved: list[int] = []
    page = await panel.save_page()
    if page.success:
        saved.append(page.payload["id"])
        out(f"Saved page as item {page.payload['id']}")

    document.select(SAMPLE_SELECTION)
    selection = await panel.save_selection()
    if selection.success:
        saved.append(selection.payload["id"])
        out(f"Saved selection as item {selection.payload['id']}")

    started = await panel.start_area_capture()
    if started.success:
        for event in drag_events((40, 30), (100, 100), steps=3):
            agent.feed(event)
        capture = await agent.wait_for_capture()
        if capture is not None and capture.success:
            saved.append(capture.payload["id"])
            out(f"Saved area screenshot as item {capture.payload['id']}")
            await runtime.coordinator.wait_for_analyses()
            shot = await runtime.coordinator.store.get_item(capture.payload["id"])
            description = (shot.analysis or {}).get("description")
            if description:
                out(f"Screenshot analysis: {description}")
        else:
            out(f"Area capture failed: {capture.error if capture else 'no capture'}")

    for item_id in saved:
        await panel.add_tag(item_id, SAMPLE_TAG)
    await panel.refresh_tags()
    tag = next((t for t in panel.tags if t.name == SAMPLE_TAG), None)
    out(f'Tagged {len(saved)} item(s) with "{SAMPLE_TAG}"')

    await panel.filter_by(tag)
    out(f"Panel shows {len(panel.cache)} item(s) for the tag")

    key_points = await panel.get_key_points()
    if key_points.status == TaskStatus.SUCCEEDED:
        out("Key points:")
        out(str((key_points.result or {}).get("keyPoints", "")))
    else:
        out(f"Key points failed: {key_points.error}")

    report = await panel.generate_report()
    for step in report.steps:
        marker = "skipped" if step.skipped else ("ok" if step.success else "failed")
        out(f"  {step.name}: {marker}{'' if step.success else f' ({step.error})'}")
    filename = (report.result or {}).get("filename")
    if report.status == TaskStatus.SUCCEEDED:
        out(f"Report written: {filename}")
    else:
        out(f"Report failed: {report.error}")

    # Give async notification callbacks a turn before the caller shuts down.
    await asyncio.sleep(0)
    return {
        "saved": saved,
        "tag_id": tag.id if tag else None,
        "key_points": key_points,
        "report": report,
        "filename": filename,
    }
