from uuid import UUID

import logfire
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Notification, Role, User
from app.schemas.notification_schema import (
    NotificationList,
    NotificationResponse,
    NotificationType,
)
from app.schemas.user_schema import RoleName


def add_notification(
    db: AsyncSession,
    user_id: UUID,
    type: NotificationType,
    title: str,
    message: str,
    link: str | None = None,
) -> Notification:
    """Stage a notification on the session; the caller's commit persists it."""
    notification = Notification(
        user_id=user_id, type=type, title=title, message=message, link=link
    )
    db.add(notification)
    return notification


async def notify_roles(
    db: AsyncSession,
    roles: list[RoleName],
    type: NotificationType,
    title: str,
    message: str,
    link: str | None = None,
) -> int:
    """Notify every enabled user holding any of ``roles``."""
    result = await db.execute(
        select(User.id)
        .join(User.roles)
        .where(Role.name.in_(roles), User.disabled.is_(False))
        .distinct()
    )
    user_ids = result.scalars().all()
    for user_id in user_ids:
        add_notification(db, user_id, type, title, message, link)
    logfire.info(
        "queued {count} {type} notifications", count=len(user_ids), type=type.value
    )
    return len(user_ids)


async def get_notifications(
    db: AsyncSession, current_user: User, unread_only: bool = False, limit: int = 50
) -> NotificationList:
    stmt = select(Notification).where(Notification.user_id == current_user.id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    result = await db.execute(stmt.order_by(Notification.created_at.desc()).limit(limit))

    unread = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id, Notification.read.is_(False)
        )
    )
    return NotificationList(
        unread_count=unread.scalar_one(),
        notifications=[NotificationResponse.model_validate(n) for n in result.scalars().all()],
    )


async def mark_as_read(db: AsyncSession, current_user: User, ids: list[int]) -> int:
    stmt = update(Notification).where(
        Notification.user_id == current_user.id, Notification.read.is_(False)
    )
    if ids:
        stmt = stmt.where(Notification.id.in_(ids))
    result = await db.execute(stmt.values(read=True))
    await db.commit()
    return result.rowcount
