import asyncio

import pytest

from swapmarket.core.memory_store import MemoryDocumentStore
from swapmarket.core.realtime import Change, ChangeFeed
from swapmarket.core.store import matches


@pytest.fixture
def memory_store():
    return MemoryDocumentStore()


def test_matches_supports_operators():
    doc = {"status": "pending", "participants": ["a", "b"], "count": 2}

    assert matches(doc, {"status": "pending"})
    assert matches(doc, {"status": {"neq": "accepted"}})
    assert matches(doc, {"status": {"in": ["pending", "accepted"]}})
    assert matches(doc, {"participants": {"contains": "a"}})
    assert not matches(doc, {"participants": {"contains": "c"}})
    assert not matches(doc, {"status": "pending", "count": 3})


@pytest.mark.asyncio
async def test_insert_assigns_id_and_select_orders(memory_store):
    await memory_store.execute_query("offers", "insert", data={"created_at": "2024-01-01", "title": "old"})
    await memory_store.execute_query("offers", "insert", data={"created_at": "2024-03-01", "title": "new"})

    rows = await memory_store.execute_query("offers", "select", order_by={"created_at": "desc"}, limit=1)

    assert rows[0]["title"] == "new"
    assert rows[0]["id"]


@pytest.mark.asyncio
async def test_insert_if_absent_keeps_existing(memory_store):
    created = await memory_store.execute_query("conversations", "insert_if_absent", data={"id": "a_b", "n": 1})
    again = await memory_store.execute_query("conversations", "insert_if_absent", data={"id": "a_b", "n": 2})

    assert created[0]["n"] == 1
    assert again == []
    assert (await memory_store.get_document("conversations", "a_b"))["n"] == 1


@pytest.mark.asyncio
async def test_writes_require_filters_and_valid_types(memory_store):
    with pytest.raises(ValueError):
        await memory_store.execute_query("items", "update", data={"status": "traded"})
    with pytest.raises(ValueError):
        await memory_store.execute_query("items", "upsert", data={"status": "traded"})
    with pytest.raises(ValueError):
        await memory_store.execute_query("items", "select", filters={"status": {"like": "tr%"}})


@pytest.mark.asyncio
async def test_selected_rows_are_copies(memory_store):
    await memory_store.execute_query("items", "insert", data={"id": "item-1", "images": ["a.jpg"]})

    row = await memory_store.get_document("items", "item-1")
    row["images"].append("b.jpg")

    assert memory_store.tables["items"]["item-1"]["images"] == ["a.jpg"]


@pytest.mark.asyncio
async def test_writes_are_published_on_the_change_feed(memory_store):
    async with memory_store.feed.subscribe("items") as changes:
        await memory_store.execute_query("items", "insert", data={"id": "item-1", "status": "active"})
        await memory_store.execute_query("items", "update", filters={"id": "item-1"}, data={"status": "traded"})
        await memory_store.execute_query("items", "delete", filters={"id": "item-1"})
        await memory_store.execute_query("other", "insert", data={"id": "x"})

        received = [await asyncio.wait_for(changes.__anext__(), timeout=1) for _ in range(3)]

    assert [change.kind for change in received] == ["insert", "update", "delete"]
    assert received[1].old["status"] == "active"
    assert received[1].new["status"] == "traded"
    assert received[2].new is None
    assert memory_store.feed.subscriber_count("items") == 0


@pytest.mark.asyncio
async def test_lagging_subscriber_drops_oldest_changes():
    feed = ChangeFeed(queue_size=3)

    async with feed.subscribe("items") as changes:
        for n in range(5):
            feed.publish(Change("items", "insert", None, {"id": f"item-{n}"}))

        received = [await asyncio.wait_for(changes.__anext__(), timeout=1) for _ in range(3)]

    assert [change.new["id"] for change in received] == ["item-2", "item-3", "item-4"]
