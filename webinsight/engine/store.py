"""Content store collaborator: items, tags and item/tag links.

Only the coordinator talks to the store. ``InMemoryContentStore`` keeps
everything in dicts; ``JsonContentStore`` additionally snapshots to a
JSON file after every mutation so a CLI session survives restarts.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Protocol

from webinsight.shared.services.durable_write import atomic_write_json

from .errors import CollaboratorError, ItemNotFoundError
from .models import ContentItem, Tag

logger = logging.getLogger(__name__)


class ContentStore(Protocol):
    async def add_item(self, item: ContentItem) -> int: ...

    async def get_item(self, item_id: int) -> ContentItem: ...

    async def get_all_items(self) -> list[ContentItem]: ...

    async def get_items_by_ids(self, item_ids: list[int]) -> list[ContentItem]: ...

    async def update_item(self, item_id: int, **changes: Any) -> ContentItem: ...

    async def delete_item(self, item_id: int) -> bool: ...

    async def add_tag(self, name: str) -> int: ...

    async def get_tag_by_name(self, name: str) -> Tag | None: ...

    async def get_all_tags(self) -> list[Tag]: ...

    async def get_tags_by_ids(self, tag_ids: list[int]) -> list[Tag]: ...

    async def link_tag(self, item_id: int, tag_id: int) -> None: ...

    async def unlink_tag(self, item_id: int, tag_id: int) -> None: ...

    async def get_tag_ids_for_item(self, item_id: int) -> list[int]: ...

    async def get_item_ids_for_tag(self, tag_id: int) -> list[int]: ...


class InMemoryContentStore:
    """Dict-backed store with auto-incrementing ids."""

    def __init__(self) -> None:
        self._items: dict[int, ContentItem] = {}
        self._tags: dict[int, Tag] = {}
        self._links: set[tuple[int, int]] = set()
        self._next_item_id = 1
        self._next_tag_id = 1
        self._lock = asyncio.Lock()

    # ── Items ──

    async def add_item(self, item: ContentItem) -> int:
        async with self._lock:
            item_id = self._next_item_id
            self._next_item_id += 1
            self._items[item_id] = replace(item, id=item_id)
            self._persist()
        logger.debug("Item %d added (type=%s)", item_id, item.type.value)
        return item_id

    async def get_item(self, item_id: int) -> ContentItem:
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    async def get_all_items(self) -> list[ContentItem]:
        return list(self._items.values())

    async def get_items_by_ids(self, item_ids: list[int]) -> list[ContentItem]:
        return [self._items[i] for i in item_ids if i in self._items]

    async def update_item(self, item_id: int, **changes: Any) -> ContentItem:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            changes.pop("id", None)
            updated = replace(item, **changes)
            self._items[item_id] = updated
            self._persist()
        return updated

    async def delete_item(self, item_id: int) -> bool:
        """Delete an item and its tag links. Missing ids are not an error."""
        async with self._lock:
            removed = self._items.pop(item_id, None) is not None
            self._links = {link for link in self._links if link[0] != item_id}
            self._persist()
        logger.debug("Item %d deleted (existed=%s)", item_id, removed)
        return removed

    # ── Tags ──

    async def add_tag(self, name: str) -> int:
        """Return the id of the tag called ``name``, creating it if needed."""
        trimmed = name.strip() if isinstance(name, str) else ""
        if not trimmed:
            raise CollaboratorError(
                "Invalid tag name provided. Tag name must be a non-empty string."
            )
        async with self._lock:
            for tag in self._tags.values():
                if tag.name == trimmed:
                    return tag.id
            tag_id = self._next_tag_id
            self._next_tag_id += 1
            self._tags[tag_id] = Tag(id=tag_id, name=trimmed)
            self._persist()
        logger.debug("Tag %r added with id %d", trimmed, tag_id)
        return tag_id

    async def get_tag_by_name(self, name: str) -> Tag | None:
        trimmed = name.strip()
        for tag in self._tags.values():
            if tag.name == trimmed:
                return tag
        return None

    async def get_all_tags(self) -> list[Tag]:
        return list(self._tags.values())

    async def get_tags_by_ids(self, tag_ids: list[int]) -> list[Tag]:
        return [self._tags[i] for i in tag_ids if i in self._tags]

    # ── Links ──

    async def link_tag(self, item_id: int, tag_id: int) -> None:
        if item_id not in self._items:
            raise ItemNotFoundError(item_id)
        if tag_id not in self._tags:
            raise CollaboratorError(f"Tag not found: {tag_id}")
        async with self._lock:
            self._links.add((item_id, tag_id))
            self._persist()

    async def unlink_tag(self, item_id: int, tag_id: int) -> None:
        async with self._lock:
            self._links.discard((item_id, tag_id))
            self._persist()

    async def get_tag_ids_for_item(self, item_id: int) -> list[int]:
        return sorted(tag for item, tag in self._links if item == item_id)

    async def get_item_ids_for_tag(self, tag_id: int) -> list[int]:
        return sorted(item for item, tag in self._links if tag == tag_id)

    # ── Snapshot ──

    def _persist(self) -> None:
        """Hook called under the lock after every mutation."""

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "items": [item.to_wire() for item in self._items.values()],
            "tags": [tag.to_dict() for tag in self._tags.values()],
            "links": sorted([item, tag] for item, tag in self._links),
            "next_item_id": self._next_item_id,
            "next_tag_id": self._next_tag_id,
        }

    def load_snapshot(self, data: dict[str, Any]) -> None:
        self._items = {
            item.id: item
            for item in (ContentItem.from_wire(raw) for raw in data.get("items", []))
        }
        self._tags = {
            tag.id: tag for tag in (Tag.from_dict(raw) for raw in data.get("tags", []))
        }
        self._links = {(int(i), int(t)) for i, t in data.get("links", [])}
        self._next_item_id = int(
            data.get("next_item_id", max(self._items, default=0) + 1)
        )
        self._next_tag_id = int(
            data.get("next_tag_id", max(self._tags, default=0) + 1)
        )


class JsonContentStore(InMemoryContentStore):
    """In-memory store mirrored to a JSON file."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path
        if path.exists():
            try:
                self.load_snapshot(json.loads(path.read_text()))
                logger.info(
                    "Loaded %d items and %d tags from %s",
                    len(self._items), len(self._tags), path,
                )
            except (OSError, ValueError, KeyError) as exc:
                raise CollaboratorError(f"Cannot read content store {path}: {exc}") from exc

    def _persist(self) -> None:
        atomic_write_json(self.path, self.to_snapshot())
