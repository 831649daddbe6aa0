"""Screenshot capture collaborator."""
from __future__ import annotations

import logging
from typing import Protocol

from .models import Rect

logger = logging.getLogger(__name__)

# 1x1 transparent PNG.
BLANK_PNG = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


class ScreenCapturer(Protocol):
    async def capture_visible(self, tab_id: int) -> str:
        """PNG data URL of the tab's visible viewport."""
        ...

    async def crop(self, image: str, rect: Rect) -> str:
        """Crop ``image`` to ``rect``, given in device pixels."""
        ...


class StaticScreenCapturer:
    """Headless capturer: every capture is the same image, crops are recorded."""

    def __init__(self, image: str = BLANK_PNG) -> None:
        self.image = image
        self.captures: list[int] = []
        self.crops: list[Rect] = []

    async def capture_visible(self, tab_id: int) -> str:
        self.captures.append(tab_id)
        return self.image

    async def crop(self, image: str, rect: Rect) -> str:
        self.crops.append(rect)
        logger.debug("Crop requested: %s", rect.to_dict())
        return image
