from fastapi import APIRouter, Depends, Path, Query
from typing import List, Optional
from ....core.dependencies import get_notification_inbox
from ....core.security import get_current_user
from ....schemas.notification import NotificationResponse, NotificationUpdate, UnreadCountResponse
from ....services.notification_service import NotificationInbox

router = APIRouter(tags=["notifications"])

@router.get("/", response_model=List[NotificationResponse])
async def get_notifications(
    is_read: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    inbox: NotificationInbox = Depends(get_notification_inbox)
):
    """
    Get the current user's notifications, newest first.
    """
    notifications = await inbox.list(current_user["id"], is_read=is_read, limit=skip + limit)
    return notifications[skip:skip + limit]

@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: dict = Depends(get_current_user),
    inbox: NotificationInbox = Depends(get_notification_inbox)
):
    return {"unread_count": await inbox.unread_count(current_user["id"])}

@router.patch("/{notification_id}", response_model=NotificationResponse)
async def mark_notification(
    notification_update: NotificationUpdate,
    notification_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    inbox: NotificationInbox = Depends(get_notification_inbox)
):
    """
    Mark a notification as read or unread.
    """
    return await inbox.mark(notification_id, current_user["id"], notification_update.is_read)

@router.patch("/", response_model=List[NotificationResponse])
async def mark_all_notifications_read(
    current_user: dict = Depends(get_current_user),
    inbox: NotificationInbox = Depends(get_notification_inbox)
):
    """
    Mark all of the current user's notifications as read.
    """
    return await inbox.mark_all_read(current_user["id"])
