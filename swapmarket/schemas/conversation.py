from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional, Union
from datetime import datetime

# Stored value marking a conversation as deleted for one participant
DELETED_SENTINEL = -1

class ActiveUnread(BaseModel):
    kind: Literal["active"] = "active"
    count: int = Field(0, ge=0)

class DeletedUnread(BaseModel):
    kind: Literal["deleted"] = "deleted"

UnreadState = Union[ActiveUnread, DeletedUnread]

def decode_unread(value: Optional[int]) -> UnreadState:
    """
    Read one participant's entry of a stored ``unread_count`` map.

    A missing entry counts as zero unread messages.
    """
    if value == DELETED_SENTINEL:
        return DeletedUnread()
    return ActiveUnread(count=max(int(value or 0), 0))

def encode_unread(state: UnreadState) -> int:
    if isinstance(state, DeletedUnread):
        return DELETED_SENTINEL
    return state.count

def decode_unread_map(raw: Optional[Dict[str, int]], participants: List[str]) -> Dict[str, UnreadState]:
    raw = raw or {}
    return {user_id: decode_unread(raw.get(user_id)) for user_id in participants}

def encode_unread_map(states: Dict[str, UnreadState]) -> Dict[str, int]:
    return {user_id: encode_unread(state) for user_id, state in states.items()}

def conversation_key(user_a: str, user_b: str) -> str:
    """Deterministic conversation id for an unordered pair of users."""
    return "_".join(sorted([user_a, user_b]))

class ConversationCreate(BaseModel):
    other_user_id: str
    trade_offer_id: Optional[str] = None

class ConversationResponse(BaseModel):
    id: str
    participants: List[str]
    other_user_id: str
    other_user_name: str
    last_message: str = ""
    last_message_time: datetime
    unread_count: int = 0
    trade_offer_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
