from enum import Enum
from uuid import UUID
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from datetime import datetime


class RoleName(str, Enum):
    ADMIN = "admin"
    INVENTORY_MANAGER = "inventory_manager"
    PAYROLL_MANAGER = "payroll_manager"
    DELIVERY_STAFF = "delivery_staff"
    POS_CASHIER = "pos_cashier"
    VIEWER = "viewer"


class AuditAction(str, Enum):
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_ROLES_CHANGED = "user.roles_changed"
    USER_DISABLED = "user.disabled"
    USER_ENABLED = "user.enabled"
    PROFILE_UPDATED = "user.profile_updated"
    PASSWORD_CHANGED = "user.password_changed"


def _check_password(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long")
    return value


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class RoleResponse(BaseModel):
    id: int
    name: RoleName

    model_config = ConfigDict(from_attributes=True)


class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str
    role_ids: list[int] = []
    department_id: int | None = None

    @field_validator("password")
    def validate_password(cls, value):
        return _check_password(value)


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    password: str | None = None
    role_ids: list[int] | None = None
    department_id: int | None = None
    disabled: bool | None = None

    @field_validator("password")
    def validate_password(cls, value):
        if value is None:
            return value
        return _check_password(value)


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None


class ChangePassword(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    def validate_new_password(cls, value):
        return _check_password(value)


class UserResponse(BaseModel):
    id: UUID
    name: str
    email: EmailStr
    disabled: bool
    department_id: int | None = None
    roles: list[RoleResponse] = []
    permissions: list[str] = []
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AuditLogResponse(BaseModel):
    id: int
    actor_id: UUID | None = None
    target_user_id: UUID | None = None
    action: str
    details: dict | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageSchema(BaseModel):
    message: str
