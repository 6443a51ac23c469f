from pydantic import BaseModel
from typing import Any, Dict
from datetime import datetime
from enum import Enum

class NotificationType(str, Enum):
    TRADE_OFFER = "trade_offer"
    TRADE_ACCEPTED = "trade_accepted"
    TRADE_REJECTED = "trade_rejected"
    TRADE_COMPLETED = "trade_completed"
    ADMIN_MESSAGE = "admin_message"
    NEW_RATING = "new_rating"

class NotificationUpdate(BaseModel):
    is_read: bool = True

class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = {}
    is_read: bool = False
    created_at: datetime

class UnreadCountResponse(BaseModel):
    unread_count: int
