from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from webinsight.engine.errors import InferenceError
from webinsight.engine.inference import (
    IMAGE_PROMPTS,
    GeminiClient,
    OfflineInferenceClient,
    extract_text_from_result,
    split_data_url,
    try_parse_json,
)
from webinsight.engine.yaml_config import InferenceConfig


class TestGeminiClient(AioHTTPTestCase):
    async def get_application(self):
        self.received: list[dict] = []

        async def generate(request: web.Request) -> web.Response:
            name = request.match_info["name"]
            self.received.append({
                "name": name,
                "key": request.query.get("key"),
                "body": await request.json(),
            })
            if name.startswith("missing-model"):
                return web.json_response(
                    {"error": {"message": "models/missing-model is not found"}}, status=404,
                )
            if name.startswith("broken"):
                return web.Response(status=500, text="<html>oops</html>")
            return web.json_response(
                {"candidates": [{"content": {"parts": [{"text": "- one\n- two"}]}}]}
            )

        app = web.Application()
        app.router.add_post("/v1beta/models/{name}", generate)
        return app

    def _client(self, model: str = "gemini-2.0-flash") -> GeminiClient:
        config = InferenceConfig(
            model=model,
            api_key_env="WEBINSIGHT_TEST_GEMINI_KEY",
            base_url=str(self.server.make_url("/v1beta")),
            timeout_seconds=5,
        )
        return GeminiClient(config)

    async def test_analyze_text_posts_prompt_and_text(self):
        client = self._client()
        with patch.dict(os.environ, {"WEBINSIGHT_TEST_GEMINI_KEY": "secret"}):
            result = await client.analyze_text("Tides are long waves.", "Summarize:")
        await client.close()

        assert extract_text_from_result(result) == "- one\n- two"
        sent = self.received[0]
        assert sent["name"] == "gemini-2.0-flash:generateContent"
        assert sent["key"] == "secret"
        assert sent["body"] == {
            "contents": [{"parts": [{"text": "Summarize:\n\nTides are long waves."}]}]
        }

    async def test_404_names_the_model(self):
        client = self._client("missing-model")
        with patch.dict(os.environ, {"WEBINSIGHT_TEST_GEMINI_KEY": "secret"}):
            with pytest.raises(InferenceError) as excinfo:
                await client.analyze_text("text")
        await client.close()

        message = str(excinfo.value)
        assert message.startswith("API request failed (404 Not Found): model 'missing-model'")
        assert "models/missing-model is not found" in message

    async def test_non_json_error_body_uses_reason(self):
        client = self._client("broken")
        with patch.dict(os.environ, {"WEBINSIGHT_TEST_GEMINI_KEY": "secret"}):
            with pytest.raises(InferenceError, match="status 500: Internal Server Error"):
                await client.analyze_text("text")
        await client.close()

    async def test_missing_key_and_empty_text_fail_before_sending(self):
        client = self._client()
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("WEBINSIGHT_TEST_GEMINI_KEY", None)
            with pytest.raises(InferenceError, match="API key not set"):
                await client.analyze_text("text")
        with patch.dict(os.environ, {"WEBINSIGHT_TEST_GEMINI_KEY": "secret"}):
            with pytest.raises(InferenceError, match="empty text"):
                await client.analyze_text("   ")
        await client.close()

        assert self.received == []

    async def test_analyze_image_sends_inline_data(self):
        client = self._client()
        with patch.dict(os.environ, {"WEBINSIGHT_TEST_GEMINI_KEY": "secret"}):
            result = await client.analyze_image("data:image/jpeg;base64,QUJD", "Describe:")
            with pytest.raises(InferenceError, match="data:image"):
                await client.analyze_image("https://example.org/a.png", "Describe:")
        await client.close()

        assert extract_text_from_result(result) == "- one\n- two"
        assert len(self.received) == 1
        assert self.received[0]["body"] == {"contents": [{"parts": [
            {"text": "Describe:"},
            {"inline_data": {"mime_type": "image/jpeg", "data": "QUJD"}},
        ]}]}


@pytest.mark.asyncio
async def test_offline_client_summarizes_item_headers_and_lines() -> None:
    client = OfflineInferenceClient(max_points_per_item=2)
    text = (
        "--- Item 1 (Tides) ---\nFirst.\nSecond.\nThird.\n\n"
        "--- Item 2 (Reef) ---\nCoral.\n\n[... CONTENT TRUNCATED ...]"
    )

    result = await client.analyze_text(text, "prompt")

    assert extract_text_from_result(result) == (
        "**Tides**\n- First.\n- Second.\n**Reef**\n- Coral."
    )
    assert client.calls == [text]
    with pytest.raises(InferenceError):
        await client.analyze_text("  ")


def test_extract_text_handles_malformed_results() -> None:
    assert extract_text_from_result({"candidates": []}) is None
    assert extract_text_from_result({"candidates": [{"content": {}}]}) is None
    assert extract_text_from_result(None) is None
    assert extract_text_from_result(
        {"candidates": [{"content": {"parts": [{"text": 5}]}}]}
    ) is None


def test_try_parse_json_variants() -> None:
    assert try_parse_json('```json\n{"a": 1}\n```') == {"a": 1}
    assert try_parse_json("[1, 2]") == [1, 2]
    assert try_parse_json("plain words") == {"text_summary": "plain words"}
    broken = try_parse_json("{not json")
    assert broken["text_summary"] == "{not json"
    assert "parse_error" in broken
    assert try_parse_json("") is None


def test_split_data_url() -> None:
    assert split_data_url("data:image/png;base64,AAAA") == ("image/png", "AAAA")
    with pytest.raises(InferenceError, match="MIME type"):
        split_data_url("data:image/png,AAAA")
    with pytest.raises(InferenceError, match="Invalid image data URL"):
        split_data_url("data:text/plain;base64,AAAA")


@pytest.mark.asyncio
async def test_offline_client_answers_image_prompts() -> None:
    client = OfflineInferenceClient()
    image = "data:image/png;base64,AAAA"

    description = await client.analyze_image(image, IMAGE_PROMPTS["description"])
    diagram = await client.analyze_image(image, IMAGE_PROMPTS["diagram_chart"])
    layout = await client.analyze_image(image, IMAGE_PROMPTS["layout"])

    assert extract_text_from_result(description) == "Screenshot (image/png, 4 base64 characters)."
    assert try_parse_json(extract_text_from_result(diagram)) == {"contains_diagram": False}
    assert try_parse_json(extract_text_from_result(layout)) == {"is_webpage_layout": False}
    assert client.image_calls == list(IMAGE_PROMPTS.values())
    assert client.calls == []
