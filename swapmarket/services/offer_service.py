import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.config import Settings, get_settings
from ..core.exceptions import CouplingInconsistency, NotFoundError, PermissionDenied, PreconditionViolation
from ..core.store import DocumentStore
from ..schemas.item import ItemStatus
from ..schemas.notification import NotificationType
from ..schemas.offer import DELETABLE_STATUSES, TradeOfferStatus
from .content_filter import ensure_clean
from .notification_service import NotificationDispatcher, NotificationEvent, item_link, offers_link
from .user_service import UserDirectory

logger = logging.getLogger(__name__)


class OfferService:
    """
    Trade offer lifecycle: pending -> accepted | rejected | cancelled.

    Accepting an offer also moves both items to traded. The store has no
    multi-document transactions, so the offer is written first with
    ``items_settled`` false, then each item, then the flag. An offer left
    unsettled is finished later by ``reconcile_unsettled``.
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

    async def create(
        self,
        from_user_id: str,
        to_user_id: str,
        from_item_id: str,
        to_item_id: str,
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        if from_user_id == to_user_id:
            raise PreconditionViolation("You can't make a trade offer to yourself")

        if from_item_id == to_item_id:
            raise PreconditionViolation("An item can't be traded for itself")

        message = (message or "").strip() or None
        ensure_clean(message, self.settings.blocked_words)

        from_item = await self._get_item(from_item_id)
        if from_item["owner_id"] != from_user_id:
            raise PreconditionViolation("You don't own this item")
        if from_item["status"] != ItemStatus.ACTIVE.value:
            raise PreconditionViolation("Your item is not available for trading")

        to_item = await self._get_item(to_item_id)
        if to_item["owner_id"] != to_user_id:
            raise PreconditionViolation("The recipient does not own this item")
        if to_item["status"] != ItemStatus.ACTIVE.value:
            raise PreconditionViolation("This item is not available for trading")

        now = datetime.now().isoformat()
        created = await self.store.execute_query(
            table="trade_offers",
            query_type="insert",
            data={
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "from_item_id": from_item_id,
                "to_item_id": to_item_id,
                "message": message,
                "status": TradeOfferStatus.PENDING.value,
                "created_at": now,
                "updated_at": now,
            }
        )
        offer = created[0]
        logger.info(f"Trade offer {offer['id']} created by {from_user_id} for item {to_item_id}")

        from_user_name = await self.users.get_display_name(from_user_id)
        result = await self.dispatcher.dispatch(NotificationEvent(
            user_id=to_user_id,
            type=NotificationType.TRADE_OFFER,
            title="New Trade Offer",
            message=f'{from_user_name} sent you a trade offer for "{to_item["title"]}"',
            link=offers_link(self.settings),
            data={
                "trade_offer_id": offer["id"],
                "from_user_name": from_user_name,
                "item_title": to_item["title"],
            },
        ))
        return {**offer, "warnings": result.warnings}

    async def accept(self, trade_offer_id: str, user_id: str) -> Dict[str, Any]:
        offer = await self._get_offer(trade_offer_id)
        self._ensure_pending(offer, TradeOfferStatus.ACCEPTED)
        if offer["to_user_id"] != user_id:
            raise PermissionDenied("Only the recipient can accept a trade offer")

        from_item = await self._get_item(offer["from_item_id"])
        to_item = await self._get_item(offer["to_item_id"])
        for item in (from_item, to_item):
            if item["status"] != ItemStatus.ACTIVE.value:
                raise PreconditionViolation(f'"{item["title"]}" is no longer available for trading')

        offer = await self._update_offer(offer["id"], {
            "status": TradeOfferStatus.ACCEPTED.value,
            "items_settled": False,
        })
        offer = await self.settle_items(offer)

        warnings = await self._notify_accepted(offer, from_item, to_item)
        return {**offer, "warnings": warnings}

    async def reject(self, trade_offer_id: str, user_id: str) -> Dict[str, Any]:
        offer = await self._get_offer(trade_offer_id)
        self._ensure_pending(offer, TradeOfferStatus.REJECTED)
        if offer["to_user_id"] != user_id:
            raise PermissionDenied("Only the recipient can reject a trade offer")

        offer = await self._update_offer(offer["id"], {"status": TradeOfferStatus.REJECTED.value})

        to_item = await self.store.get_document("items", offer["to_item_id"])
        item_title = to_item["title"] if to_item else "your item"
        result = await self.dispatcher.dispatch(NotificationEvent(
            user_id=offer["from_user_id"],
            type=NotificationType.TRADE_REJECTED,
            title="Trade Offer Rejected",
            message=f'Your trade offer for "{item_title}" was rejected',
            link=offers_link(self.settings),
            data={"trade_offer_id": offer["id"], "item_title": item_title},
        ))
        return {**offer, "warnings": result.warnings}

    async def cancel(self, trade_offer_id: str, user_id: str) -> Dict[str, Any]:
        offer = await self._get_offer(trade_offer_id)
        self._ensure_pending(offer, TradeOfferStatus.CANCELLED)
        if offer["from_user_id"] != user_id:
            raise PermissionDenied("Only the sender can cancel a trade offer")

        offer = await self._update_offer(offer["id"], {"status": TradeOfferStatus.CANCELLED.value})
        return {**offer, "warnings": []}

    async def delete(self, trade_offer_id: str, user_id: str) -> None:
        offer = await self._get_offer(trade_offer_id)
        self._ensure_participant(offer, user_id)

        if TradeOfferStatus(offer["status"]) not in DELETABLE_STATUSES:
            raise PreconditionViolation(f"A {offer['status']} trade offer can't be deleted")

        await self.store.execute_query(
            table="trade_offers",
            query_type="delete",
            filters={"id": trade_offer_id}
        )
        logger.info(f"Trade offer {trade_offer_id} deleted by {user_id}")

    async def get(self, trade_offer_id: str, user_id: str) -> Dict[str, Any]:
        offer = await self._get_offer(trade_offer_id)
        self._ensure_participant(offer, user_id)
        return await self._with_details(offer)

    async def list_sent(self, user_id: str, status: Optional[TradeOfferStatus] = None) -> List[Dict[str, Any]]:
        return await self._list({"from_user_id": user_id}, status)

    async def list_received(self, user_id: str, status: Optional[TradeOfferStatus] = None) -> List[Dict[str, Any]]:
        return await self._list({"to_user_id": user_id}, status)

    async def settle_items(self, offer: Dict[str, Any]) -> Dict[str, Any]:
        """
        Move both items of an accepted offer to traded.

        Safe to repeat: an item already traded by this offer is skipped.

        Raises:
            CouplingInconsistency: an item write failed or the item was
                traded through a different offer
        """
        for item_id in (offer["from_item_id"], offer["to_item_id"]):
            try:
                item = await self.store.get_document("items", item_id)
                if item is None:
                    raise NotFoundError(f"Item {item_id} not found")

                if item["status"] == ItemStatus.TRADED.value:
                    if item.get("trade_offer_id") == offer["id"]:
                        continue
                    raise PreconditionViolation(f"Item {item_id} was traded through another offer")

                await self.store.execute_query(
                    table="items",
                    query_type="update",
                    filters={"id": item_id},
                    data={
                        "status": ItemStatus.TRADED.value,
                        "trade_offer_id": offer["id"],
                        "updated_at": datetime.now().isoformat(),
                    }
                )
            except Exception as e:
                logger.error(f"Trade offer {offer['id']} accepted but item {item_id} was not updated: {e}")
                raise CouplingInconsistency(
                    "The trade was accepted but could not be completed. Please check the offer before trying again.",
                    trade_offer_id=offer["id"],
                ) from e

        return await self._update_offer(offer["id"], {"items_settled": True})

    async def reconcile_unsettled(self) -> int:
        """
        Finish accepted offers whose item updates did not all land.

        Returns:
            The number of offers settled in this pass
        """
        unsettled = await self.store.execute_query(
            table="trade_offers",
            query_type="select",
            filters={"status": TradeOfferStatus.ACCEPTED.value, "items_settled": False}
        )

        settled = 0
        for offer in unsettled:
            try:
                offer = await self.settle_items(offer)
            except CouplingInconsistency:
                continue

            from_item = await self.store.get_document("items", offer["from_item_id"])
            to_item = await self.store.get_document("items", offer["to_item_id"])
            if from_item and to_item:
                await self._notify_accepted(offer, from_item, to_item)
            settled += 1

        if unsettled:
            logger.info(f"Settled {settled} of {len(unsettled)} unsettled trade offers")
        return settled

    async def _notify_accepted(self, offer: Dict[str, Any], from_item: Dict[str, Any], to_item: Dict[str, Any]) -> List[str]:
        events = [
            NotificationEvent(
                user_id=offer["from_user_id"],
                type=NotificationType.TRADE_ACCEPTED,
                title="Trade Offer Accepted",
                message=f'Your trade offer for "{to_item["title"]}" was accepted',
                link=offers_link(self.settings),
                data={"trade_offer_id": offer["id"], "item_title": to_item["title"]},
            ),
        ]
        # Each side is told what they gave and what they received
        for user_id, given, received in (
            (offer["from_user_id"], from_item, to_item),
            (offer["to_user_id"], to_item, from_item),
        ):
            events.append(NotificationEvent(
                user_id=user_id,
                type=NotificationType.TRADE_COMPLETED,
                title="Trade Completed",
                message=f'Your trade of "{given["title"]}" for "{received["title"]}" is complete',
                link=item_link(self.settings, received["id"]),
                data={
                    "trade_offer_id": offer["id"],
                    "given_item_title": given["title"],
                    "received_item_title": received["title"],
                },
            ))

        warnings: List[str] = []
        for event in events:
            result = await self.dispatcher.dispatch(event)
            warnings.extend(result.warnings)
        return warnings

    async def _list(self, filters: Dict[str, Any], status: Optional[TradeOfferStatus]) -> List[Dict[str, Any]]:
        if status:
            filters["status"] = status.value

        offers = await self.store.execute_query(
            table="trade_offers",
            query_type="select",
            filters=filters,
            order_by={"created_at": "desc"}
        )
        return [await self._with_details(offer) for offer in offers]

    async def _with_details(self, offer: Dict[str, Any]) -> Dict[str, Any]:
        # Missing items or users are shown without details rather than failing the list
        names = await self.users.get_display_names(offer["from_user_id"], offer["to_user_id"])
        return {
            **offer,
            "from_item": await self.store.get_document("items", offer["from_item_id"]),
            "to_item": await self.store.get_document("items", offer["to_item_id"]),
            "from_user_name": names[offer["from_user_id"]],
            "to_user_name": names[offer["to_user_id"]],
        }

    async def _get_offer(self, trade_offer_id: str) -> Dict[str, Any]:
        offer = await self.store.get_document("trade_offers", trade_offer_id)
        if not offer:
            raise NotFoundError("Trade offer not found")
        return offer

    async def _get_item(self, item_id: str) -> Dict[str, Any]:
        item = await self.store.get_document("items", item_id)
        if not item:
            raise NotFoundError("Item not found")
        return item

    async def _update_offer(self, trade_offer_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        updated = await self.store.execute_query(
            table="trade_offers",
            query_type="update",
            filters={"id": trade_offer_id},
            data={**data, "updated_at": datetime.now().isoformat()}
        )
        if not updated:
            raise NotFoundError("Trade offer not found")
        return updated[0]

    @staticmethod
    def _ensure_pending(offer: Dict[str, Any], new_status: TradeOfferStatus) -> None:
        if offer["status"] != TradeOfferStatus.PENDING.value:
            raise PreconditionViolation(
                f"Cannot change status from {offer['status']} to {new_status.value}"
            )

    @staticmethod
    def _ensure_participant(offer: Dict[str, Any], user_id: str) -> None:
        if user_id not in (offer["from_user_id"], offer["to_user_id"]):
            raise PermissionDenied("You don't have permission to view this trade offer")
