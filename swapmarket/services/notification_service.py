import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..core.config import Settings, get_settings
from ..core.exceptions import NotFoundError, NotificationDeliveryFailure, PermissionDenied
from ..core.presence import PresenceRegistry
from ..core.store import DocumentStore
from ..schemas.notification import NotificationType
from .push_service import DEFAULT, GRANTED, PushCapability

logger = logging.getLogger(__name__)

OFFERS_PATH = "/profile?tab=trade-offers"


def offers_link(settings: Settings) -> str:
    return f"{settings.base_url}{OFFERS_PATH}"


def item_link(settings: Settings, item_id: str) -> str:
    return f"{settings.base_url}/items/{item_id}"


def conversation_link(settings: Settings, conversation_id: str) -> str:
    return f"{settings.base_url}/messages?conversation={conversation_id}"


@dataclass
class NotificationEvent:
    """
    A user-facing alert derived from a domain event.

    ``type`` is None for events that only produce a push alert (new messages).
    """

    user_id: str
    type: Optional[NotificationType]
    title: str
    message: str
    link: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def trade_offer_id(self) -> Optional[str]:
        return self.data.get("trade_offer_id")


@dataclass
class DispatchResult:
    notification_id: Optional[str] = None
    pushed: bool = False
    warnings: List[str] = field(default_factory=list)


class NotificationDispatcher:
    """
    Turns domain events into a stored notification and a push alert.

    Neither step can fail the operation that triggered it: failures are
    logged and reported back as warnings.
    """

    def __init__(
        self,
        store: DocumentStore,
        presence: PresenceRegistry,
        push: Optional[PushCapability] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.presence = presence
        self.push_capability = push
        self.settings = settings or get_settings()
        self._permission_requested: Set[str] = set()

    async def dispatch(self, event: NotificationEvent) -> DispatchResult:
        result = DispatchResult()

        if event.type is not None:
            try:
                result.notification_id = await self.record(event)
            except Exception as e:
                logger.warning(f"Could not save {event.type.value} notification for user {event.user_id}: {e}")
                result.warnings.append(f"Notification for user {event.user_id} could not be saved")

        result.pushed = await self.push(event)
        return result

    async def record(self, event: NotificationEvent) -> str:
        """
        Persist the notification record for an event.

        Events tied to a trade offer are deduplicated on
        (user, type, trade offer), so a retried operation never notifies twice.

        Returns:
            The id of the new or already existing notification
        """
        if event.trade_offer_id:
            existing = await self.store.execute_query(
                table="notifications",
                query_type="select",
                filters={"user_id": event.user_id, "type": event.type.value}
            )
            for notification in existing:
                if (notification.get("data") or {}).get("trade_offer_id") == event.trade_offer_id:
                    logger.info(f"Skipping duplicate {event.type.value} notification for offer {event.trade_offer_id}")
                    return notification["id"]

        created = await self.store.execute_query(
            table="notifications",
            query_type="insert",
            data={
                "user_id": event.user_id,
                "type": event.type.value,
                "title": event.title,
                "message": event.message,
                "data": {**event.data, "url": event.link},
                "is_read": False,
                "created_at": datetime.now().isoformat(),
            }
        )
        if not created:
            raise NotificationDeliveryFailure("Notification insert returned no rows")
        return created[0]["id"]

    async def push(self, event: NotificationEvent) -> bool:
        """Show a push alert unless the capability, permission or visibility rules it out."""
        if self.push_capability is None:
            return False

        user_id = event.user_id
        try:
            permission = await self.push_capability.permission(user_id)
            if permission == DEFAULT and user_id not in self._permission_requested:
                self._permission_requested.add(user_id)
                permission = await self.push_capability.request_permission(user_id)
                if permission != DEFAULT:
                    # The gateway remembers a definite answer
                    self._permission_requested.discard(user_id)

            if permission != GRANTED:
                logger.info(f"Push permission not granted for user {user_id}")
                return False

            if self.presence.is_foreground(user_id):
                logger.info(f"User {user_id} is in the app, push alert suppressed: {event.title}")
                return False

            await self.push_capability.show(
                user_id,
                event.title,
                event.message,
                data={
                    **event.data,
                    "type": event.type.value if event.type else "new_message",
                    "url": event.link,
                },
                timeout_ms=self.settings.push_auto_dismiss_ms,
            )
            return True
        except Exception as e:
            logger.warning(f"Push alert for user {user_id} failed: {e}")
            return False


class NotificationInbox:
    """Read side of the notification records."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def list(self, user_id: str, is_read: Optional[bool] = None, limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        filters: Dict[str, Any] = {"user_id": user_id}
        if is_read is not None:
            filters["is_read"] = is_read

        return await self.store.execute_query(
            table="notifications",
            query_type="select",
            filters=filters,
            order_by={"created_at": "desc"},
            limit=limit
        )

    async def unread_count(self, user_id: str) -> int:
        unread = await self.store.execute_query(
            table="notifications",
            query_type="select",
            filters={"user_id": user_id, "is_read": False}
        )
        return len(unread)

    async def mark(self, notification_id: str, user_id: str, is_read: bool = True) -> Dict[str, Any]:
        notification = await self.store.get_document("notifications", notification_id)
        if not notification:
            raise NotFoundError("Notification not found")

        if notification["user_id"] != user_id:
            raise PermissionDenied("You don't have permission to update this notification")

        updated = await self.store.execute_query(
            table="notifications",
            query_type="update",
            filters={"id": notification_id},
            data={"is_read": is_read}
        )
        return updated[0]

    async def mark_all_read(self, user_id: str) -> List[Dict[str, Any]]:
        unread = await self.list(user_id, is_read=False, limit=None)
        if not unread:
            return []

        return await self.store.execute_query(
            table="notifications",
            query_type="update",
            filters={"user_id": user_id, "is_read": False},
            data={"is_read": True}
        )
