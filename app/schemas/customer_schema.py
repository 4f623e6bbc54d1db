from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1)
    address: str = Field(min_length=1)
    phone: str | None = None
    email: EmailStr | None = None
    notes: str | None = None


class CustomerUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    address: str | None = Field(default=None, min_length=1)
    phone: str | None = None
    email: EmailStr | None = None
    notes: str | None = None


class CustomerResponse(BaseModel):
    id: UUID
    name: str
    address: str
    phone: str | None = None
    email: str | None = None
    notes: str | None = None
    created_by_id: UUID | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
