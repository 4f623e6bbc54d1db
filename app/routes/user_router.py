from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import get_current_user, require_permission
from app.auth.permissions import Permission
from app.database.database import get_db
from app.models.models import User
from app.schemas.user_schema import (
    AuditAction,
    AuditLogResponse,
    ChangePassword,
    MessageSchema,
    ProfileUpdate,
    RoleName,
    RoleResponse,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from app.services import auth_service

router = APIRouter(prefix="/api/users", tags=["Users"])
roles_router = APIRouter(prefix="/api/roles", tags=["Users"])


@router.get("/me", status_code=status.HTTP_200_OK)
async def get_me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return auth_service.user_response(current_user)


@router.patch("/me", status_code=status.HTTP_200_OK)
async def update_me(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    return await auth_service.update_profile(db=db, profile=data, current_user=current_user)


@router.post("/me/change-password", status_code=status.HTTP_200_OK)
async def change_password(
    data: ChangePassword,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageSchema:
    await auth_service.change_password(db=db, data=data, current_user=current_user)
    return MessageSchema(message="Password changed")


@router.get("/audit", status_code=status.HTTP_200_OK)
async def list_audit_logs(
    target_user_id: UUID | None = None,
    action: AuditAction | None = None,
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.USERS_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[AuditLogResponse]:
    """Newest first."""
    return await auth_service.list_audit_logs(
        db=db, target_user_id=target_user_id, action=action, skip=skip, limit=limit
    )


@router.get("", status_code=status.HTTP_200_OK)
async def list_users(
    search: str | None = None,
    role: RoleName | None = None,
    disabled: bool | None = None,
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.USERS_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[UserResponse]:
    return await auth_service.list_users(
        db=db, search=search, role=role, disabled=disabled, skip=skip, limit=limit
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreate,
    current_user: User = Depends(require_permission(Permission.USERS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    return await auth_service.create_user(db=db, user_data=data, current_user=current_user)


@router.get("/{user_id}", status_code=status.HTTP_200_OK)
async def get_user(
    user_id: UUID,
    current_user: User = Depends(require_permission(Permission.USERS_READ)),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    return auth_service.user_response(await auth_service.get_user(db=db, user_id=user_id))


@router.patch("/{user_id}", status_code=status.HTTP_200_OK)
async def update_user(
    user_id: UUID,
    data: UserUpdate,
    current_user: User = Depends(require_permission(Permission.USERS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """
    Update a user's details, roles or disabled flag.

    Every change is written to the audit log. Users cannot disable themselves.
    """
    return await auth_service.update_user(
        db=db, user_id=user_id, user_data=data, current_user=current_user
    )


@roles_router.get("", status_code=status.HTTP_200_OK)
async def list_roles(
    current_user: User = Depends(require_permission(Permission.USERS_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[RoleResponse]:
    return await auth_service.list_roles(db)
