from __future__ import annotations

import json

import pytest

from webinsight.engine.errors import CollaboratorError, ItemNotFoundError
from webinsight.engine.models import ContentItem, ItemType
from webinsight.engine.store import InMemoryContentStore, JsonContentStore


def _selection(text: str) -> ContentItem:
    return ContentItem(id=0, type=ItemType.SELECTION, title="Sel", content=text,
                       url="https://example.org/")


@pytest.mark.asyncio
async def test_items_get_sequential_ids() -> None:
    store = InMemoryContentStore()

    first = await store.add_item(_selection("a"))
    second = await store.add_item(_selection("b"))

    assert (first, second) == (1, 2)
    assert (await store.get_item(2)).content == "b"
    assert [i.id for i in await store.get_items_by_ids([2, 9, 1])] == [2, 1]
    with pytest.raises(ItemNotFoundError, match="Content item not found: 9"):
        await store.get_item(9)


@pytest.mark.asyncio
async def test_tag_names_are_trimmed_and_deduplicated() -> None:
    store = InMemoryContentStore()

    first = await store.add_tag("  ocean ")
    again = await store.add_tag("ocean")
    other = await store.add_tag("Ocean")

    assert first == again
    assert other != first
    assert (await store.get_tag_by_name(" ocean")).id == first
    with pytest.raises(CollaboratorError, match="non-empty string"):
        await store.add_tag("   ")


@pytest.mark.asyncio
async def test_links_follow_items_and_tags() -> None:
    store = InMemoryContentStore()
    item = await store.add_item(_selection("a"))
    tag = await store.add_tag("ocean")

    await store.link_tag(item, tag)
    await store.link_tag(item, tag)
    assert await store.get_tag_ids_for_item(item) == [tag]
    assert await store.get_item_ids_for_tag(tag) == [item]

    with pytest.raises(ItemNotFoundError):
        await store.link_tag(99, tag)
    with pytest.raises(CollaboratorError, match="Tag not found"):
        await store.link_tag(item, 99)

    assert await store.delete_item(item) is True
    assert await store.get_item_ids_for_tag(tag) == []
    assert await store.delete_item(item) is False


@pytest.mark.asyncio
async def test_update_item_keeps_id() -> None:
    store = InMemoryContentStore()
    item_id = await store.add_item(_selection("a"))

    updated = await store.update_item(item_id, id=50, title="Renamed")

    assert updated.id == item_id
    assert updated.title == "Renamed"


@pytest.mark.asyncio
async def test_json_store_persists_and_reloads(tmp_path) -> None:
    path = tmp_path / "content.json"
    store = JsonContentStore(path)
    item = await store.add_item(_selection("persist me"))
    tag = await store.add_tag("ocean")
    await store.link_tag(item, tag)

    reloaded = JsonContentStore(path)

    assert (await reloaded.get_item(item)).content == "persist me"
    assert await reloaded.get_tag_ids_for_item(item) == [tag]
    assert await reloaded.add_item(_selection("next")) == item + 1
    assert json.loads(path.read_text())["next_tag_id"] == 2


def test_json_store_rejects_corrupt_file(tmp_path) -> None:
    path = tmp_path / "content.json"
    path.write_text("{broken")

    with pytest.raises(CollaboratorError, match="Cannot read content store"):
        JsonContentStore(path)
