"""AI inference collaborator.

``GeminiClient`` calls the Gemini ``generateContent`` REST endpoint over
aiohttp. ``OfflineInferenceClient`` answers in the same response shape
without network access, for the demo and for runs without an API key.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Protocol

import aiohttp

from .errors import InferenceError
from .yaml_config import InferenceConfig

logger = logging.getLogger(__name__)

KEY_POINTS_PROMPT = (
    "Based *only* on the following text compiled from saved web content, "
    "please extract the main key points or provide a concise summary. "
    "Present the key points clearly, perhaps using bullet points:"
)

# Run in order against every saved screenshot.
IMAGE_PROMPTS = {
    "description": "Describe this image concisely.",
    "diagram_chart": (
        "Analyze this image. If it contains a chart, graph, or diagram, extract the "
        "key data points, labels, and title into a structured JSON object. If not, "
        "respond with {\"contains_diagram\": false}."
    ),
    "layout": (
        "Analyze the layout of this webpage screenshot. Identify key structural "
        "elements (like header, footer, main content, sidebar, navigation, forms) "
        "and their approximate locations (e.g., top, bottom, left, right, center). "
        "Provide the analysis as a JSON object like {\"header\": \"top\", "
        "\"main_content\": \"center\", ...}. If it's not a webpage screenshot, "
        "respond with {\"is_webpage_layout\": false}."
    ),
}

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```")
_ITEM_HEADER = re.compile(r"^--- Item \d+ \((.*)\) ---$")
_DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)


class InferenceClient(Protocol):
    async def analyze_text(self, text: str, prompt: str) -> dict[str, Any]:
        """Return the raw ``generateContent`` response for ``prompt`` + ``text``."""
        ...

    async def analyze_image(self, image_data_url: str, prompt: str) -> dict[str, Any]:
        """Same, for a ``data:image/...;base64,`` URL and a prompt."""
        ...


def extract_text_from_result(result: Any) -> str | None:
    """Pull ``candidates[0].content.parts[0].text`` out of a response."""
    try:
        text = result["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        logger.warning("Could not extract text from inference result")
        return None
    return text if isinstance(text, str) else None


def try_parse_json(text: str | None, context: str = "data") -> Any:
    """Parse model output as JSON, tolerating a ```json fence.

    Non-JSON text comes back as ``{"text_summary": text}``; malformed JSON
    additionally carries ``parse_error``.
    """
    if not text or not isinstance(text, str):
        logger.warning("[%s] Invalid input for JSON", context)
        return None
    candidate = text.strip()
    match = _JSON_FENCE.search(candidate)
    if match:
        candidate = match.group(1).strip()
    if not candidate.startswith(("{", "[")):
        return {"text_summary": text}
    try:
        return json.loads(candidate)
    except ValueError as exc:
        logger.error("[%s] Failed to parse JSON: %s", context, exc)
        return {"text_summary": text, "parse_error": str(exc)}


def split_data_url(image_data_url: str) -> tuple[str, str]:
    """(mime type, base64 data) of an image data URL."""
    if not isinstance(image_data_url, str) or not image_data_url.startswith("data:image"):
        raise InferenceError("Invalid image data URL provided. Must be a data:image/... URL.")
    match = _DATA_URL.match(image_data_url)
    if not match:
        raise InferenceError("Could not determine image MIME type from the data URL.")
    return match.group(1), match.group(2)


def _candidate(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class GeminiClient:
    """Minimal async client for ``models/{model}:generateContent``."""

    def __init__(
        self,
        config: InferenceConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.config = config or InferenceConfig()
        self._session = session
        self._owns_session = session is None

    @property
    def endpoint(self) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/models/{self.config.model}:generateContent"

    async def analyze_text(
        self,
        text: str,
        prompt: str = "Summarize the following text:",
    ) -> dict[str, Any]:
        api_key = self._require_key()
        if not isinstance(text, str) or not text.strip():
            raise InferenceError("Invalid or empty text content provided for analysis.")

        body = {"contents": [{"parts": [{"text": f"{prompt}\n\n{text}"}]}]}
        logger.info("Sending text analysis request (model=%s, chars=%d)",
                    self.config.model, len(text))
        return await self._generate(api_key, body)

    async def analyze_image(
        self,
        image_data_url: str,
        prompt: str = "Describe this image in detail.",
    ) -> dict[str, Any]:
        api_key = self._require_key()
        mime_type, data = split_data_url(image_data_url)
        body = {"contents": [{"parts": [
            {"text": prompt},
            {"inline_data": {"mime_type": mime_type, "data": data}},
        ]}]}
        logger.info("Sending image analysis request (model=%s, type=%s)",
                    self.config.model, mime_type)
        return await self._generate(api_key, body)

    def _require_key(self) -> str:
        api_key = self.config.api_key()
        if not api_key:
            raise InferenceError(
                f"Gemini API key not set. Export {self.config.api_key_env}."
            )
        return api_key

    async def _generate(self, api_key: str, body: dict[str, Any]) -> dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(
                self.endpoint,
                params={"key": api_key},
                json=body,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            ) as resp:
                if resp.status != 200:
                    raise InferenceError(await self._error_message(resp))
                data = await resp.json()
        except aiohttp.ClientError as exc:
            raise InferenceError(f"API request failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise InferenceError(
                f"API request timed out after {self.config.timeout_seconds}s"
            ) from exc

        if not isinstance(data, dict) or not data.get("candidates"):
            logger.warning("Inference response has no candidates")
        return data

    async def _error_message(self, resp: aiohttp.ClientResponse) -> str:
        raw = await resp.text()
        message = resp.reason or "Unknown error"
        try:
            parsed = json.loads(raw)
            message = parsed.get("error", {}).get("message") or message
        except (ValueError, AttributeError):
            logger.error("Inference error body (raw): %s", raw[:500])
        if resp.status == 404:
            return (
                f"API request failed (404 Not Found): model '{self.config.model}' "
                f"might be incorrect or unavailable. {message}"
            )
        return f"API request failed with status {resp.status}: {message}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None


class OfflineInferenceClient:
    """Produces bullet points from item headers and first lines, no network.

    Image prompts get fixed answers: a one-line description, no diagram and
    no webpage layout.
    """

    def __init__(self, max_points_per_item: int = 3) -> None:
        self.max_points_per_item = max_points_per_item
        self.calls: list[str] = []
        self.image_calls: list[str] = []

    async def analyze_text(self, text: str, prompt: str = "") -> dict[str, Any]:
        self.calls.append(text)
        if not text.strip():
            raise InferenceError("Invalid or empty text content provided for analysis.")
        points: list[str] = []
        taken = 0
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("[..."):
                continue
            header = _ITEM_HEADER.match(line)
            if header:
                points.append(f"**{header.group(1)}**")
                taken = 0
                continue
            if taken < self.max_points_per_item:
                points.append(f"- {line}")
                taken += 1
        return _candidate("\n".join(points))

    async def analyze_image(self, image_data_url: str, prompt: str = "") -> dict[str, Any]:
        mime_type, data = split_data_url(image_data_url)
        self.image_calls.append(prompt)
        if prompt == IMAGE_PROMPTS["diagram_chart"]:
            return _candidate('{"contains_diagram": false}')
        if prompt == IMAGE_PROMPTS["layout"]:
            return _candidate('{"is_webpage_layout": false}')
        return _candidate(f"Screenshot ({mime_type}, {len(data)} base64 characters).")

    async def close(self) -> None:
        return None
