from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

class MessageCreate(BaseModel):
    to_user_id: str
    conversation_id: Optional[str] = None
    text: Optional[str] = Field(None, max_length=2000)
    image_url: Optional[str] = None

class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    from_user_id: str
    to_user_id: str
    text: Optional[str] = None
    image_url: Optional[str] = None
    is_read: bool = False
    created_at: datetime

class SentMessageResponse(MessageResponse):
    warnings: List[str] = []

class ThreadResponse(BaseModel):
    conversation_id: str
    messages: List[MessageResponse]
    # Newest visible message; clients open the thread scrolled to it
    scroll_to_message_id: Optional[str] = None
