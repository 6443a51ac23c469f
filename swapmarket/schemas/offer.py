from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum
from .item import ItemSummary

class TradeOfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

# Only these terminal states may be removed; accepted offers are the trade record
DELETABLE_STATUSES = {TradeOfferStatus.REJECTED, TradeOfferStatus.CANCELLED}

class TradeOfferCreate(BaseModel):
    to_user_id: str
    from_item_id: str
    to_item_id: str
    message: Optional[str] = Field(None, max_length=500)

class TradeOfferResponse(BaseModel):
    id: str
    from_user_id: str
    to_user_id: str
    from_item_id: str
    to_item_id: str
    message: Optional[str] = None
    status: TradeOfferStatus
    items_settled: Optional[bool] = None
    created_at: datetime
    updated_at: datetime
    warnings: List[str] = []

class TradeOfferDetailResponse(TradeOfferResponse):
    from_item: Optional[ItemSummary] = None
    to_item: Optional[ItemSummary] = None
    from_user_name: Optional[str] = None
    to_user_name: Optional[str] = None
