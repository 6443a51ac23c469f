from pydantic import BaseModel
from typing import List, Optional
from enum import Enum

class ItemStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    TRADED = "traded"
    INACTIVE = "inactive"
    REJECTED = "rejected"
    EXPIRED = "expired"

class ItemSummary(BaseModel):
    id: str
    title: str
    images: List[str] = []
    status: ItemStatus
    category: Optional[str] = None
    condition: Optional[str] = None
