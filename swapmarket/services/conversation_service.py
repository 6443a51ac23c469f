import logging
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

from ..core.config import Settings, get_settings
from ..core.exceptions import NotFoundError, PermissionDenied, PreconditionViolation
from ..core.store import DocumentStore
from ..schemas.conversation import (
    ActiveUnread,
    DeletedUnread,
    conversation_key,
    decode_unread_map,
    encode_unread_map,
)
from .content_filter import ensure_clean
from .notification_service import NotificationDispatcher, NotificationEvent, conversation_link
from .user_service import UserDirectory

logger = logging.getLogger(__name__)

PHOTO_PLACEHOLDER = "📷 Photo"
PREVIEW_LENGTH = 140


class ConversationService:
    """
    One conversation per pair of users, keyed by the sorted pair of ids.

    Deleting a conversation only hides it from one participant: their unread
    entry becomes a tombstone and their id is added to each message's
    ``deleted_by``. Any later GetOrCreate or new message clears the tombstone
    for both participants, since both share one conversation document.
    """

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        users: UserDirectory,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.users = users
        self.settings = settings or get_settings()

    async def get_or_create(self, user_a: str, user_b: str, trade_offer_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Return the conversation between two users, creating it if needed.

        Safe to retry. An existing conversation deleted by either participant
        is reactivated for both; an active one is returned without a write.
        """
        if user_a == user_b:
            raise PreconditionViolation("You can't start a conversation with yourself")

        conversation_id = conversation_key(user_a, user_b)
        existing = await self.store.get_document("conversations", conversation_id)
        if existing:
            return await self._reactivate(existing)

        now = datetime.now().isoformat()
        conversation_data = {
            "id": conversation_id,
            "participants": [user_a, user_b],
            "last_message": "",
            "last_message_time": now,
            "unread_count": {user_a: 0, user_b: 0},
            "created_at": now,
            "updated_at": now,
        }
        if trade_offer_id and trade_offer_id.strip():
            conversation_data["trade_offer_id"] = trade_offer_id

        created = await self.store.execute_query(
            table="conversations",
            query_type="insert_if_absent",
            data=conversation_data
        )
        if created:
            logger.info(f"Conversation {conversation_id} created")
            return created[0]

        # Another caller created it first
        existing = await self.store.get_document("conversations", conversation_id)
        if not existing:
            raise NotFoundError("Conversation not found")
        return await self._reactivate(existing)

    async def send_message(
        self,
        from_user_id: str,
        to_user_id: str,
        text: Optional[str] = None,
        image_url: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        text = (text or "").strip() or None
        image_url = (image_url or "").strip() or None
        if bool(text) == bool(image_url):
            raise PreconditionViolation("A message needs either text or an image, not both")

        ensure_clean(text, self.settings.blocked_words)

        if conversation_id and conversation_id != conversation_key(from_user_id, to_user_id):
            raise PreconditionViolation("This conversation does not belong to these users")

        conversation = await self.get_or_create(from_user_id, to_user_id)

        now = datetime.now().isoformat()
        created = await self.store.execute_query(
            table="messages",
            query_type="insert",
            data={
                "conversation_id": conversation["id"],
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "text": text,
                "image_url": image_url,
                "is_read": False,
                "deleted_by": [],
                "created_at": now,
            }
        )
        message = created[0]

        # Re-read so the increment applies to the latest counts
        conversation = await self._get_conversation(conversation["id"])
        states = decode_unread_map(conversation.get("unread_count"), conversation["participants"])
        for user_id, state in states.items():
            if isinstance(state, DeletedUnread):
                states[user_id] = ActiveUnread()
        states[to_user_id] = ActiveUnread(count=states[to_user_id].count + 1)

        await self.store.execute_query(
            table="conversations",
            query_type="update",
            filters={"id": conversation["id"]},
            data={
                "last_message": text or PHOTO_PLACEHOLDER,
                "last_message_time": now,
                "unread_count": encode_unread_map(states),
                "updated_at": now,
            }
        )

        sender_name = await self.users.get_display_name(from_user_id)
        result = await self.dispatcher.dispatch(NotificationEvent(
            user_id=to_user_id,
            type=None,
            title=f"New message from {sender_name}",
            message=(text or PHOTO_PLACEHOLDER)[:PREVIEW_LENGTH],
            link=conversation_link(self.settings, conversation["id"]),
            data={"conversation_id": conversation["id"], "from_user_name": sender_name},
        ))
        return {**message, "warnings": result.warnings}

    async def mark_read(self, conversation_id: str, user_id: str) -> int:
        """
        Reset the caller's unread count and mark their visible messages read.

        The caller's entry is always written back as 0, so opening a
        conversation the caller had deleted makes it visible to them again.

        Returns:
            The number of messages marked as read
        """
        conversation = await self._get_conversation_for(conversation_id, user_id)
        states = decode_unread_map(conversation.get("unread_count"), conversation["participants"])

        if states[user_id] != ActiveUnread():
            states[user_id] = ActiveUnread()
            await self.store.execute_query(
                table="conversations",
                query_type="update",
                filters={"id": conversation_id},
                data={
                    "unread_count": encode_unread_map(states),
                    "updated_at": datetime.now().isoformat(),
                }
            )

        unread = await self.store.execute_query(
            table="messages",
            query_type="select",
            filters={"conversation_id": conversation_id, "to_user_id": user_id, "is_read": False}
        )
        marked = 0
        for message in unread:
            if user_id in (message.get("deleted_by") or []):
                continue
            await self.store.execute_query(
                table="messages",
                query_type="update",
                filters={"id": message["id"]},
                data={"is_read": True}
            )
            marked += 1
        return marked

    async def delete_for_user(self, conversation_id: str, user_id: str) -> None:
        conversation = await self._get_conversation_for(conversation_id, user_id)
        states = decode_unread_map(conversation.get("unread_count"), conversation["participants"])
        states[user_id] = DeletedUnread()

        await self.store.execute_query(
            table="conversations",
            query_type="update",
            filters={"id": conversation_id},
            data={
                "unread_count": encode_unread_map(states),
                "updated_at": datetime.now().isoformat(),
            }
        )

        messages = await self.store.execute_query(
            table="messages",
            query_type="select",
            filters={"conversation_id": conversation_id}
        )
        for message in messages:
            deleted_by = message.get("deleted_by") or []
            if user_id in deleted_by:
                continue
            await self.store.execute_query(
                table="messages",
                query_type="update",
                filters={"id": message["id"]},
                data={"deleted_by": deleted_by + [user_id]}
            )
        logger.info(f"Conversation {conversation_id} deleted for user {user_id}")

    async def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """Conversations visible to a user, most recent first."""
        conversations = await self.store.execute_query(
            table="conversations",
            query_type="select",
            filters={"participants": {"contains": user_id}}
        )

        views = []
        for conversation in conversations:
            states = decode_unread_map(conversation.get("unread_count"), conversation["participants"])
            state = states.get(user_id)
            if isinstance(state, DeletedUnread):
                continue

            other_user_id = next((uid for uid in conversation["participants"] if uid != user_id), None)
            if not other_user_id:
                continue

            views.append({
                **conversation,
                "other_user_id": other_user_id,
                "other_user_name": await self.users.get_display_name(other_user_id),
                "unread_count": state.count,
            })

        views.sort(key=lambda view: view["last_message_time"], reverse=True)
        return views

    async def total_unread(self, user_id: str) -> int:
        conversations = await self.store.execute_query(
            table="conversations",
            query_type="select",
            filters={"participants": {"contains": user_id}}
        )
        total = 0
        for conversation in conversations:
            states = decode_unread_map(conversation.get("unread_count"), conversation["participants"])
            state = states.get(user_id)
            if isinstance(state, ActiveUnread):
                total += state.count
        return total

    async def visible_messages(self, conversation_id: str, user_id: str) -> List[Dict[str, Any]]:
        """Messages the user has not deleted, oldest first."""
        await self._get_conversation_for(conversation_id, user_id)
        return await self._visible_messages(conversation_id, user_id)

    async def thread(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        messages = await self.visible_messages(conversation_id, user_id)
        return {
            "conversation_id": conversation_id,
            "messages": messages,
            "scroll_to_message_id": messages[-1]["id"] if messages else None,
        }

    async def subscribe(self, user_id: str) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Live view of a user's conversations.

        Yields the full current list on start and again after every change
        to one of the user's conversations.
        """
        async with self.store.feed.subscribe("conversations") as changes:
            yield await self.list_conversations(user_id)
            async for change in changes:
                if change.touches(lambda doc: user_id in (doc.get("participants") or [])):
                    yield await self.list_conversations(user_id)

    async def subscribe_messages(self, conversation_id: str, user_id: str) -> AsyncIterator[List[Dict[str, Any]]]:
        """Live view of the messages in one conversation visible to a user."""
        await self._get_conversation_for(conversation_id, user_id)
        async with self.store.feed.subscribe("messages") as changes:
            yield await self._visible_messages(conversation_id, user_id)
            async for change in changes:
                if change.touches(lambda doc: doc.get("conversation_id") == conversation_id):
                    yield await self._visible_messages(conversation_id, user_id)

    async def _visible_messages(self, conversation_id: str, user_id: str) -> List[Dict[str, Any]]:
        messages = await self.store.execute_query(
            table="messages",
            query_type="select",
            filters={"conversation_id": conversation_id}
        )
        visible = [message for message in messages if user_id not in (message.get("deleted_by") or [])]
        visible.sort(key=lambda message: message["created_at"])
        return visible

    async def _reactivate(self, conversation: Dict[str, Any]) -> Dict[str, Any]:
        states = decode_unread_map(conversation.get("unread_count"), conversation["participants"])
        if not any(isinstance(state, DeletedUnread) for state in states.values()):
            return conversation

        updated = await self.store.execute_query(
            table="conversations",
            query_type="update",
            filters={"id": conversation["id"]},
            data={
                "unread_count": {user_id: 0 for user_id in conversation["participants"]},
                "updated_at": datetime.now().isoformat(),
            }
        )
        logger.info(f"Conversation {conversation['id']} reactivated")
        return updated[0] if updated else conversation

    async def _get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        conversation = await self.store.get_document("conversations", conversation_id)
        if not conversation:
            raise NotFoundError("Conversation not found")
        return conversation

    async def _get_conversation_for(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        conversation = await self._get_conversation(conversation_id)
        if user_id not in conversation["participants"]:
            raise PermissionDenied("You are not a participant in this conversation")
        return conversation
