from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class DeliveryStatus(str, Enum):
    CREATED = "created"
    PICKED = "picked"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


class DeliveryCreate(BaseModel):
    tracking_number: str | None = None
    order_reference: str | None = None
    customer_name: str = Field(min_length=1)
    customer_address: str = Field(min_length=1)
    customer_phone: str | None = None
    customer_email: EmailStr | None = None
    notes: str | None = None
    assigned_to_user_id: UUID | None = None


class DeliveryUpdate(BaseModel):
    order_reference: str | None = None
    customer_name: str | None = Field(default=None, min_length=1)
    customer_address: str | None = Field(default=None, min_length=1)
    customer_phone: str | None = None
    customer_email: EmailStr | None = None
    notes: str | None = None
    assigned_to_user_id: UUID | None = None


class DeliveryStatusChange(BaseModel):
    status: DeliveryStatus
    note: str | None = None
    location: str | None = None


class DeliveryStatusUpdateResponse(BaseModel):
    id: int
    status: DeliveryStatus
    note: str | None = None
    location: str | None = None
    updated_by_id: UUID | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryResponse(BaseModel):
    id: UUID
    tracking_number: str
    order_reference: str | None = None
    customer_name: str | None = None
    customer_address: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    status: DeliveryStatus
    notes: str | None = None
    assigned_to_user_id: UUID | None = None
    created_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    next_status: DeliveryStatus | None = None
    status_history: list[DeliveryStatusUpdateResponse] = []

    model_config = ConfigDict(from_attributes=True)


class DeliveryStaffResponse(BaseModel):
    id: UUID
    name: str
    email: str
