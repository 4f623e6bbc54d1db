from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import get_current_user
from app.database.database import get_db
from app.models.models import User
from app.schemas.notification_schema import MarkNotificationsRead, NotificationList
from app.schemas.user_schema import MessageSchema
from app.services import notification_service

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("", status_code=status.HTTP_200_OK)
async def get_notifications(
    unread_only: bool = False,
    limit: int = 50,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> NotificationList:
    return await notification_service.get_notifications(
        db=db, current_user=current_user, unread_only=unread_only, limit=limit
    )


@router.post("/mark-read", status_code=status.HTTP_200_OK)
async def mark_notifications_read(
    data: MarkNotificationsRead,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageSchema:
    """Mark the given notifications as read, or all of them when `ids` is empty."""
    count = await notification_service.mark_as_read(
        db=db, current_user=current_user, ids=data.ids
    )
    return MessageSchema(message=f"{count} notification(s) marked as read")
