from fastapi import APIRouter, status, Depends, Path, Query
from typing import List, Optional
from ....core.dependencies import get_offer_service
from ....core.security import get_current_user
from ....schemas.offer import TradeOfferCreate, TradeOfferDetailResponse, TradeOfferResponse, TradeOfferStatus
from ....services.offer_service import OfferService

router = APIRouter(tags=["offers"])

@router.post("/", response_model=TradeOfferResponse, status_code=status.HTTP_201_CREATED)
async def create_trade_offer(
    offer: TradeOfferCreate,
    current_user: dict = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service)
):
    """
    Create a new trade offer.

    The caller must own from_item_id, to_user_id must own to_item_id and
    both items must be active. The recipient is notified.
    """
    return await offers.create(
        from_user_id=current_user["id"],
        to_user_id=offer.to_user_id,
        from_item_id=offer.from_item_id,
        to_item_id=offer.to_item_id,
        message=offer.message
    )

@router.get("/", response_model=List[TradeOfferDetailResponse])
async def get_trade_offers(
    role: str = Query("received", pattern="^(sent|received)$"),
    status: Optional[TradeOfferStatus] = None,
    current_user: dict = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service)
):
    """
    Get the trade offers the current user sent or received, newest first.
    """
    if role == "sent":
        return await offers.list_sent(current_user["id"], status)
    return await offers.list_received(current_user["id"], status)

@router.get("/{trade_offer_id}", response_model=TradeOfferDetailResponse)
async def get_trade_offer(
    trade_offer_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service)
):
    return await offers.get(trade_offer_id, current_user["id"])

@router.post("/{trade_offer_id}/accept", response_model=TradeOfferResponse)
async def accept_trade_offer(
    trade_offer_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service)
):
    """
    Accept a pending trade offer. Both items are marked as traded.
    """
    return await offers.accept(trade_offer_id, current_user["id"])

@router.post("/{trade_offer_id}/reject", response_model=TradeOfferResponse)
async def reject_trade_offer(
    trade_offer_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service)
):
    return await offers.reject(trade_offer_id, current_user["id"])

@router.post("/{trade_offer_id}/cancel", response_model=TradeOfferResponse)
async def cancel_trade_offer(
    trade_offer_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service)
):
    return await offers.cancel(trade_offer_id, current_user["id"])

@router.delete("/{trade_offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_trade_offer(
    trade_offer_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    offers: OfferService = Depends(get_offer_service)
):
    """
    Delete a rejected or cancelled trade offer.
    """
    await offers.delete(trade_offer_id, current_user["id"])
    return None
