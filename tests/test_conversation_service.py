import asyncio

import pytest

from swapmarket.core.exceptions import PermissionDenied, PreconditionViolation
from swapmarket.schemas.conversation import conversation_key
from swapmarket.services.conversation_service import PHOTO_PLACEHOLDER

from .conftest import ALICE, BOB, CAROL

CONVERSATION_ID = conversation_key(ALICE, BOB)


def stored(store, conversation_id=CONVERSATION_ID):
    return store.tables["conversations"][conversation_id]


def test_conversation_key_ignores_order():
    assert conversation_key(ALICE, BOB) == conversation_key(BOB, ALICE)
    assert conversation_key("b", "a") == "a_b"


@pytest.mark.asyncio
async def test_first_message_creates_conversation(conversations, store, push):
    message = await conversations.send_message(ALICE, BOB, text="Hi Bob, is the guitar still available?")

    conversation = stored(store)
    assert conversation["id"] == CONVERSATION_ID
    assert conversation["unread_count"] == {ALICE: 0, BOB: 1}
    assert conversation["last_message"] == "Hi Bob, is the guitar still available?"
    assert message["conversation_id"] == CONVERSATION_ID
    assert message["is_read"] is False
    assert message["deleted_by"] == []

    # Message alerts are push only
    assert store.tables.get("notifications", {}) == {}
    assert push.shown[0]["user_id"] == BOB
    assert push.shown[0]["title"] == "New message from Alice Smith"
    assert push.shown[0]["data"]["url"] == f"https://swap.test/messages?conversation={CONVERSATION_ID}"


@pytest.mark.asyncio
async def test_unread_count_increments_and_resets(conversations, store):
    await conversations.send_message(ALICE, BOB, text="Hello")
    await conversations.send_message(ALICE, BOB, text="Are you there?")
    await conversations.send_message(BOB, ALICE, text="Yes")

    assert stored(store)["unread_count"] == {ALICE: 1, BOB: 2}
    assert await conversations.total_unread(BOB) == 2

    marked = await conversations.mark_read(CONVERSATION_ID, BOB)

    assert marked == 2
    assert stored(store)["unread_count"] == {ALICE: 1, BOB: 0}
    messages = await conversations.visible_messages(CONVERSATION_ID, BOB)
    assert [m["is_read"] for m in messages if m["to_user_id"] == BOB] == [True, True]
    assert [m["is_read"] for m in messages if m["to_user_id"] == ALICE] == [False]


@pytest.mark.asyncio
async def test_message_needs_exactly_one_kind_of_content(conversations, store):
    with pytest.raises(PreconditionViolation):
        await conversations.send_message(ALICE, BOB, text="Look", image_url="https://img.test/a.jpg")
    with pytest.raises(PreconditionViolation):
        await conversations.send_message(ALICE, BOB, text="   ")

    assert store.tables.get("messages", {}) == {}


@pytest.mark.asyncio
async def test_image_message_uses_photo_placeholder(conversations, store):
    message = await conversations.send_message(ALICE, BOB, image_url="https://img.test/bike.jpg")

    assert message["text"] is None
    assert message["image_url"] == "https://img.test/bike.jpg"
    assert stored(store)["last_message"] == PHOTO_PLACEHOLDER


@pytest.mark.asyncio
async def test_inappropriate_text_is_rejected(conversations, store):
    with pytest.raises(PreconditionViolation):
        await conversations.send_message(ALICE, BOB, text="Ş e r e f s i z")

    assert store.tables.get("conversations", {}) == {}


@pytest.mark.asyncio
async def test_conversation_id_must_match_participants(conversations):
    with pytest.raises(PreconditionViolation):
        await conversations.send_message(
            ALICE, BOB, text="Hello", conversation_id=conversation_key(ALICE, CAROL)
        )

    message = await conversations.send_message(ALICE, BOB, text="Hello", conversation_id=CONVERSATION_ID)
    assert message["conversation_id"] == CONVERSATION_ID


@pytest.mark.asyncio
async def test_delete_hides_conversation_for_one_user_only(conversations, store):
    await conversations.send_message(ALICE, BOB, text="Hello")
    await conversations.send_message(BOB, ALICE, text="Hi there")

    await conversations.delete_for_user(CONVERSATION_ID, ALICE)

    assert stored(store)["unread_count"][ALICE] == -1
    assert await conversations.list_conversations(ALICE) == []
    assert await conversations.visible_messages(CONVERSATION_ID, ALICE) == []
    assert await conversations.total_unread(ALICE) == 0

    bob_view = await conversations.list_conversations(BOB)
    assert [c["id"] for c in bob_view] == [CONVERSATION_ID]
    assert bob_view[0]["other_user_name"] == "Alice Smith"
    assert len(await conversations.visible_messages(CONVERSATION_ID, BOB)) == 2


@pytest.mark.asyncio
async def test_mark_read_clears_deleted_marker(conversations, store):
    await conversations.send_message(BOB, ALICE, text="Hello")
    await conversations.delete_for_user(CONVERSATION_ID, ALICE)

    marked = await conversations.mark_read(CONVERSATION_ID, ALICE)

    assert marked == 0
    assert stored(store)["unread_count"] == {ALICE: 0, BOB: 0}
    assert [c["id"] for c in await conversations.list_conversations(ALICE)] == [CONVERSATION_ID]
    # Messages deleted before stay hidden from Alice
    assert await conversations.visible_messages(CONVERSATION_ID, ALICE) == []


@pytest.mark.asyncio
async def test_new_message_reactivates_for_both_participants(conversations, store):
    await conversations.send_message(ALICE, BOB, text="Hello")
    await conversations.delete_for_user(CONVERSATION_ID, ALICE)

    # Either side sending brings the conversation back for both
    await conversations.send_message(ALICE, BOB, text="Still interested?")

    assert stored(store)["unread_count"] == {ALICE: 0, BOB: 1}
    assert [c["id"] for c in await conversations.list_conversations(ALICE)] == [CONVERSATION_ID]
    # Old messages stay hidden from the user who deleted them
    messages = await conversations.visible_messages(CONVERSATION_ID, ALICE)
    assert [m["text"] for m in messages] == ["Still interested?"]


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(conversations, store):
    first = await conversations.get_or_create(ALICE, BOB, trade_offer_id="offer-1")
    second = await conversations.get_or_create(BOB, ALICE)

    assert first["id"] == second["id"] == CONVERSATION_ID
    assert first["trade_offer_id"] == "offer-1"
    assert second["updated_at"] == first["updated_at"]
    assert len(store.tables["conversations"]) == 1

    with pytest.raises(PreconditionViolation):
        await conversations.get_or_create(ALICE, ALICE)


@pytest.mark.asyncio
async def test_get_or_create_resets_deleted_conversation(conversations, store):
    await conversations.send_message(ALICE, BOB, text="Hello")
    await conversations.delete_for_user(CONVERSATION_ID, BOB)

    conversation = await conversations.get_or_create(ALICE, BOB)

    assert conversation["unread_count"] == {ALICE: 0, BOB: 0}


@pytest.mark.asyncio
async def test_non_participants_are_refused(conversations):
    await conversations.send_message(ALICE, BOB, text="Hello")

    with pytest.raises(PermissionDenied):
        await conversations.mark_read(CONVERSATION_ID, CAROL)
    with pytest.raises(PermissionDenied):
        await conversations.delete_for_user(CONVERSATION_ID, CAROL)
    with pytest.raises(PermissionDenied):
        await conversations.visible_messages(CONVERSATION_ID, CAROL)


@pytest.mark.asyncio
async def test_thread_scrolls_to_latest_message(conversations):
    await conversations.send_message(ALICE, BOB, text="Hello")
    latest = await conversations.send_message(BOB, ALICE, text="Hi")

    thread = await conversations.thread(CONVERSATION_ID, ALICE)

    assert [m["text"] for m in thread["messages"]] == ["Hello", "Hi"]
    assert thread["scroll_to_message_id"] == latest["id"]


@pytest.mark.asyncio
async def test_subscribe_yields_snapshot_then_updates(conversations):
    stream = conversations.subscribe(BOB)
    try:
        assert await stream.__anext__() == []

        await conversations.send_message(ALICE, BOB, text="Hello")

        snapshot = await asyncio.wait_for(stream.__anext__(), timeout=1)
        while not snapshot or snapshot[0]["last_message"] != "Hello":
            snapshot = await asyncio.wait_for(stream.__anext__(), timeout=1)
        assert snapshot[0]["id"] == CONVERSATION_ID
        assert snapshot[0]["unread_count"] == 1
    finally:
        await stream.aclose()


@pytest.mark.asyncio
async def test_subscribe_messages_hides_deleted(conversations):
    await conversations.send_message(ALICE, BOB, text="Hello")
    await conversations.delete_for_user(CONVERSATION_ID, BOB)

    stream = conversations.subscribe_messages(CONVERSATION_ID, BOB)
    try:
        assert await stream.__anext__() == []

        await conversations.send_message(ALICE, BOB, text="Are you there?")

        snapshot = await asyncio.wait_for(stream.__anext__(), timeout=1)
        assert [m["text"] for m in snapshot] == ["Are you there?"]
    finally:
        await stream.aclose()

    with pytest.raises(PermissionDenied):
        await conversations.subscribe_messages(CONVERSATION_ID, CAROL).__anext__()
