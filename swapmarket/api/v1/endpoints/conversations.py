import asyncio
import json
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, Path, WebSocket, WebSocketDisconnect, status
from typing import AsyncIterator, Callable, List
from ....core.dependencies import get_conversation_service, get_presence
from ....core.presence import PresenceRegistry
from ....core.security import decode_token, get_current_user
from ....schemas.conversation import ConversationCreate, ConversationResponse
from ....schemas.message import MessageCreate, MessageResponse, SentMessageResponse, ThreadResponse
from ....schemas.notification import UnreadCountResponse
from ....services.conversation_service import ConversationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conversations"])

@router.post("/", response_model=ConversationResponse)
async def start_conversation(
    request: ConversationCreate,
    current_user: dict = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    """
    Get or create the conversation with another user.

    Reactivates the conversation if either participant had deleted it.
    """
    user_id = current_user["id"]
    conversation = await conversations.get_or_create(user_id, request.other_user_id, request.trade_offer_id)
    return _view(conversation, user_id, await conversations.users.get_display_name(request.other_user_id))

@router.get("/", response_model=List[ConversationResponse])
async def get_conversations(
    current_user: dict = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    """
    Get the current user's conversations, most recent first.
    """
    return await conversations.list_conversations(current_user["id"])

@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: dict = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    return {"unread_count": await conversations.total_unread(current_user["id"])}

@router.post("/messages", response_model=SentMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    message: MessageCreate,
    current_user: dict = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    """
    Send a text or image message. The conversation is created on first use.
    """
    return await conversations.send_message(
        from_user_id=current_user["id"],
        to_user_id=message.to_user_id,
        text=message.text,
        image_url=message.image_url,
        conversation_id=message.conversation_id
    )

@router.get("/{conversation_id}/messages", response_model=ThreadResponse)
async def get_conversation_messages(
    conversation_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    return await conversations.thread(conversation_id, current_user["id"])

@router.post("/{conversation_id}/read")
async def mark_conversation_read(
    conversation_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    marked = await conversations.mark_read(conversation_id, current_user["id"])
    return {"marked": marked}

@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service)
):
    """
    Hide a conversation from the current user. Nothing is removed.
    """
    await conversations.delete_for_user(conversation_id, current_user["id"])
    return None

@router.websocket("/ws")
async def conversations_websocket(
    websocket: WebSocket,
    conversations: ConversationService = Depends(get_conversation_service),
    presence: PresenceRegistry = Depends(get_presence)
):
    user_id = await _authenticate(websocket)
    if user_id is None:
        return

    def render(views):
        return [ConversationResponse(**view).model_dump(mode="json") for view in views]

    await _stream(websocket, user_id, presence, "conversations", conversations.subscribe(user_id), render)

@router.websocket("/{conversation_id}/ws")
async def messages_websocket(
    websocket: WebSocket,
    conversation_id: str,
    conversations: ConversationService = Depends(get_conversation_service),
    presence: PresenceRegistry = Depends(get_presence)
):
    user_id = await _authenticate(websocket)
    if user_id is None:
        return

    def render(messages):
        return [MessageResponse(**message).model_dump(mode="json") for message in messages]

    stream = conversations.subscribe_messages(conversation_id, user_id)
    await _stream(websocket, user_id, presence, "messages", stream, render)

def _view(conversation: dict, user_id: str, other_user_name: str) -> dict:
    other_user_id = next(uid for uid in conversation["participants"] if uid != user_id)
    unread = (conversation.get("unread_count") or {}).get(user_id, 0)
    return {
        **conversation,
        "other_user_id": other_user_id,
        "other_user_name": other_user_name,
        "unread_count": max(unread, 0),
    }

async def _authenticate(websocket: WebSocket):
    try:
        return decode_token(websocket.query_params.get("token"))["id"]
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

async def _stream(
    websocket: WebSocket,
    user_id: str,
    presence: PresenceRegistry,
    kind: str,
    snapshots: AsyncIterator,
    render: Callable
):
    """
    Push every snapshot to the client while reading its visibility reports.

    Clients send {"type": "visibility", "state": "visible" | "hidden"}.
    """
    await websocket.accept()
    connection_id = str(uuid.uuid4())
    presence.report(user_id, connection_id, "visible")

    async def forward():
        async for snapshot in snapshots:
            await websocket.send_text(json.dumps({"type": kind, "data": render(snapshot)}))

    sender = asyncio.create_task(forward())
    try:
        while True:
            receiver = asyncio.create_task(websocket.receive_text())
            done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if sender in done:
                receiver.cancel()
                # Surfaces errors from the subscription, e.g. not a participant
                sender.result()
                break

            try:
                report = json.loads(receiver.result())
            except json.JSONDecodeError:
                logger.warning(f"Ignoring malformed websocket message from user {user_id}")
                continue
            if report.get("type") == "visibility" and report.get("state") in ("visible", "hidden"):
                presence.report(user_id, connection_id, report["state"])
    except WebSocketDisconnect:
        logger.info(f"User {user_id} disconnected from {kind} stream")
    except Exception as e:
        logger.warning(f"Closing {kind} stream for user {user_id}: {e}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        sender.cancel()
        presence.disconnect(user_id, connection_id)
