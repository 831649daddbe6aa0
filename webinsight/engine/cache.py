"""Panel-side mirror of the coordinator's content items.

The cache is written only by reload(), either called directly or through
an invalidate_on() subscription. Each reload replaces the whole mapping.
Reload results are stamped with an issuance sequence number, and a
result older than the newest issued reload is dropped without touching
the cache.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from .message_router import MessageRouter, Subscription, kind_is
from .models import PANEL_ID, COORDINATOR_ID, ContentItem, Message, MessageKind, Tag

logger = logging.getLogger(__name__)

CacheListener = Callable[["ItemCache"], None]


@dataclass
class ItemDetails:
    item: ContentItem
    tags: list[Tag] = field(default_factory=list)
    tags_error: str | None = None


class ItemCache:
    """dict[id, ContentItem] owned by one panel."""

    def __init__(
        self,
        router: MessageRouter,
        owner: str = PANEL_ID,
        timeout: float | None = None,
    ) -> None:
        self.router = router
        self.owner = owner
        self.timeout = timeout
        self.filter_key: int | None = None
        self.last_error: str | None = None
        self._items: dict[int, ContentItem] = {}
        self._issued = 0
        self._applied = 0
        self._listeners: list[CacheListener] = []
        self._subscriptions: dict[MessageKind, Subscription] = {}

    # ── Reads ──

    def items(self) -> list[ContentItem]:
        """Entries newest first."""
        return sorted(
            self._items.values(),
            key=lambda item: (item.created_at, item.id),
            reverse=True,
        )

    def get(self, item_id: int) -> ContentItem | None:
        return self._items.get(item_id)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    @property
    def applied_sequence(self) -> int:
        return self._applied

    # ── Listeners ──

    def add_listener(self, listener: CacheListener) -> None:
        self._listeners.append(listener)

    def _render(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Cache listener failed")

    # ── Writes ──

    async def reload(self, filter_key: int | None = None) -> bool:
        """Fetch items (all, or those tagged ``filter_key``) and replace the cache.

        Returns True when this reload's result was applied. Failed reloads
        clear the cache and record ``last_error``; stale ones change nothing.
        """
        self._issued += 1
        sequence = self._issued
        self.filter_key = filter_key
        if filter_key is None:
            kind, payload = MessageKind.GET_ALL_SAVED_CONTENT, None
        else:
            kind, payload = MessageKind.GET_FILTERED_ITEMS_BY_TAG, {"tagId": filter_key}

        logger.debug("Cache reload #%d (filter=%s)", sequence, filter_key)
        response = await self.router.request(
            self.owner, COORDINATOR_ID, kind, payload, timeout=self.timeout,
        )

        if sequence < self._issued:
            logger.debug(
                "Discarding stale reload #%d (newest issued #%d)", sequence, self._issued
            )
            return False

        self._applied = sequence
        if not response.success or not isinstance(response.payload, list):
            self.last_error = response.error or "Failed to load items."
            logger.error("Cache reload failed: %s", self.last_error)
            self._items = {}
            self._render()
            return False

        fresh: dict[int, ContentItem] = {}
        for raw in response.payload:
            try:
                item = ContentItem.from_wire(raw)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed item in reload: %r", raw)
                continue
            fresh[item.id] = item
        self._items = fresh
        self.last_error = None
        logger.debug("Cache reload #%d applied (%d items)", sequence, len(fresh))
        self._render()
        return True

    def invalidate_on(self, signal_kind: MessageKind) -> Subscription:
        """Reload with the active filter whenever ``signal_kind`` arrives."""
        existing = self._subscriptions.get(signal_kind)
        if existing is not None and existing.active:
            return existing

        async def _on_signal(message: Message) -> None:
            await self.reload(self.filter_key)

        sub = self.router.on_receive(self.owner, kind_is(signal_kind), _on_signal)
        self._subscriptions[signal_kind] = sub
        return sub

    async def details(self, item_id: int) -> ItemDetails | None:
        """Local item lookup plus its tags. The item itself is never re-fetched."""
        item = self._items.get(item_id)
        if item is None:
            return None
        response = await self.router.request(
            self.owner,
            COORDINATOR_ID,
            MessageKind.GET_TAGS_FOR_ITEM,
            {"contentId": item_id},
            timeout=self.timeout,
        )
        if not response.success:
            return ItemDetails(item=item, tags_error=response.error)
        tags = [Tag.from_dict(raw) for raw in response.payload or []]
        return ItemDetails(item=item, tags=tags)

    def close(self) -> None:
        for sub in self._subscriptions.values():
            sub.cancel()
        self._subscriptions.clear()
