from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class NotificationType(str, Enum):
    LOW_STOCK = "low_stock"
    DELIVERY_STATUS = "delivery_status"
    PAYROLL = "payroll"
    GENERAL = "general"


class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: str
    link: str | None = None
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationList(BaseModel):
    unread_count: int
    notifications: list[NotificationResponse]


class MarkNotificationsRead(BaseModel):
    """Leave ids empty to mark every notification as read."""

    ids: list[int] = []
