from __future__ import annotations

import pytest

from webinsight.adapters.runtime import build_runtime
from webinsight.demo import SAMPLE_TAG, run_demo
from webinsight.engine.config import EngineConfig
from webinsight.engine.models import ItemType, TaskStatus
from webinsight.engine.yaml_config import InferenceConfig, WebInsightConfig


@pytest.mark.asyncio
async def test_demo_session_end_to_end(tmp_path) -> None:
    config = WebInsightConfig(
        engine=EngineConfig(reports_dir=str(tmp_path), capture_delay_seconds=0),
        inference=InferenceConfig(),
    )
    runtime = build_runtime(config, offline=True)
    await runtime.start()
    lines: list[str] = []

    result = await run_demo(runtime, out=lines.append)

    assert len(result["saved"]) == 3
    assert result["key_points"].status == TaskStatus.SUCCEEDED
    report = result["report"]
    assert report.status == TaskStatus.SUCCEEDED
    assert report.step("generate_key_points").skipped is True
    assert (tmp_path / result["filename"]).exists()
    assert any(line.startswith("Report written: ") for line in lines)

    store_items = await runtime.coordinator.store.get_all_items()
    types = sorted(item.type.value for item in store_items)
    assert types == sorted([
        ItemType.PAGE.value, ItemType.SELECTION.value,
        ItemType.SCREENSHOT.value, ItemType.GENERATED_ANALYSIS.value,
    ])
    screenshot = next(item for item in store_items if item.type == ItemType.SCREENSHOT)
    assert screenshot.crop_rect == {"x": 80, "y": 60, "width": 120, "height": 140}
    assert screenshot.analysis_completed is True
    assert screenshot.analysis_failed is False
    assert screenshot.analysis["diagramData"] is None
    assert any(line.startswith("Screenshot analysis: Screenshot (image/png") for line in lines)
    tag = await runtime.coordinator.store.get_tag_by_name(SAMPLE_TAG)
    assert tag.id == result["tag_id"]
    assert len(runtime.coordinator.inference.calls) == 1
    assert len(runtime.coordinator.inference.image_calls) == 3

    await runtime.shutdown()
    assert runtime.agents == {}
