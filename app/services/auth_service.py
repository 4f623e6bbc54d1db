from uuid import UUID

import logfire
from fastapi import HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from passlib.context import CryptContext
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import revoke_refresh_token
from app.auth.permissions import ROLE_PERMISSIONS, permissions_for
from app.config.config import settings
from app.models.models import AuditLog, Department, Role, User, utcnow
from app.schemas.user_schema import (
    AuditAction,
    ChangePassword,
    ProfileUpdate,
    RoleName,
    UserCreate,
    UserResponse,
    UserUpdate,
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def user_response(user: User) -> UserResponse:
    response = UserResponse.model_validate(user)
    response.permissions = sorted(p.value for p in permissions_for(user))
    return response


def record_audit(
    db: AsyncSession,
    action: AuditAction,
    actor: User | None,
    target_user_id: UUID | None,
    details: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_id=actor.id if actor else None,
            target_user_id=target_user_id,
            action=action.value,
            details=details,
        )
    )


async def seed_roles(db: AsyncSession) -> int:
    """Insert any role rows missing from the static role map."""
    result = await db.execute(select(Role.name))
    existing = set(result.scalars().all())
    missing = [name for name in ROLE_PERMISSIONS if name not in existing]
    for name in missing:
        db.add(Role(name=name))
    if missing:
        await db.commit()
        logfire.info("seeded {count} roles", count=len(missing))
    return len(missing)


async def ensure_first_admin(db: AsyncSession) -> User | None:
    if not (settings.FIRST_ADMIN_EMAIL and settings.FIRST_ADMIN_PASSWORD):
        return None
    existing = await db.execute(
        select(User).where(User.email == settings.FIRST_ADMIN_EMAIL.lower())
    )
    if existing.scalar_one_or_none():
        return None

    admin_role = (
        await db.execute(select(Role).where(Role.name == RoleName.ADMIN))
    ).scalar_one()
    admin = User(
        name="Administrator",
        email=settings.FIRST_ADMIN_EMAIL.lower(),
        password=hash_password(settings.FIRST_ADMIN_PASSWORD),
        roles=[admin_role],
    )
    db.add(admin)
    await db.commit()
    logfire.info("bootstrap admin {email} created", email=admin.email)
    return admin


async def login_user(db: AsyncSession, login_data: OAuth2PasswordRequestForm) -> User:
    """
    Args:
            db: Database session
            login_data: Login credentials

    Returns:
            Authenticated user
    """
    result = await db.execute(
        select(User).where(User.email == login_data.username.lower())
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.password):
        logfire.warn("failed login for {email}", email=login_data.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if user.disabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled"
        )

    return user


async def logout_user(db: AsyncSession, refresh_token: str) -> bool:
    """
    Logout user by revoking their refresh token
    Args:
        db: Database session
        refresh_token: The refresh token to revoke
    Returns:
        True if token was revoked successfully
    """
    return await revoke_refresh_token(refresh_token, db)


async def _roles_by_id(db: AsyncSession, role_ids: list[int]) -> list[Role]:
    if not role_ids:
        return []
    result = await db.execute(select(Role).where(Role.id.in_(role_ids)))
    roles = result.scalars().all()
    if len(roles) != len(set(role_ids)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role id"
        )
    return list(roles)


async def _ensure_email_free(db: AsyncSession, email: str, exclude_id: UUID | None = None):
    stmt = select(User.id).where(User.email == email)
    if exclude_id:
        stmt = stmt.where(User.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Email already registered"
        )


async def _check_department(db: AsyncSession, department_id: int | None) -> None:
    if department_id is not None and not await db.get(Department, department_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Department not found"
        )


async def create_user(
    db: AsyncSession, user_data: UserCreate, current_user: User
) -> UserResponse:
    """
    Create a back-office user with the given roles.

    Args:
        db: Database session
        user_data: User data from request
        current_user: Acting administrator, recorded in the audit log

    Returns:
        The newly created user
    """
    email = user_data.email.lower()
    await _ensure_email_free(db, email)
    await _check_department(db, user_data.department_id)

    user = User(
        name=user_data.name,
        email=email,
        password=hash_password(user_data.password),
        department_id=user_data.department_id,
        roles=await _roles_by_id(db, user_data.role_ids),
    )
    db.add(user)
    await db.flush()
    record_audit(
        db,
        AuditAction.USER_CREATED,
        current_user,
        user.id,
        {"email": email, "roles": [r.name.value for r in user.roles]},
    )
    await db.commit()
    await db.refresh(user, ["department"])
    return user_response(user)


async def get_user(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def list_users(
    db: AsyncSession,
    search: str | None = None,
    role: RoleName | None = None,
    disabled: bool | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[UserResponse]:
    stmt = select(User)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    if role:
        stmt = stmt.where(User.roles.any(Role.name == role))
    if disabled is not None:
        stmt = stmt.where(User.disabled.is_(disabled))
    result = await db.execute(stmt.order_by(User.name).offset(skip).limit(limit))
    return [user_response(u) for u in result.scalars().all()]


async def update_user(
    db: AsyncSession, user_id: UUID, user_data: UserUpdate, current_user: User
) -> UserResponse:
    """
    Args:
            db: Database session
            user_id: ID of the user to update
            user_data: Updated user data
            current_user: Acting administrator

    Returns:
            Updated user
    """
    user = await get_user(db, user_id)
    changes = user_data.model_dump(exclude_unset=True)
    changed_fields = []

    if "email" in changes and changes["email"] and changes["email"].lower() != user.email:
        await _ensure_email_free(db, changes["email"].lower(), exclude_id=user.id)
        user.email = changes["email"].lower()
        changed_fields.append("email")
    if changes.get("name"):
        user.name = changes["name"]
        changed_fields.append("name")
    if changes.get("password"):
        user.password = hash_password(changes["password"])
        changed_fields.append("password")
    if "department_id" in changes:
        await _check_department(db, changes["department_id"])
        user.department_id = changes["department_id"]
        changed_fields.append("department_id")
    if changed_fields:
        record_audit(
            db, AuditAction.USER_UPDATED, current_user, user.id, {"fields": changed_fields}
        )

    if changes.get("role_ids") is not None:
        before = sorted(r.name.value for r in user.roles)
        user.roles = await _roles_by_id(db, changes["role_ids"])
        after = sorted(r.name.value for r in user.roles)
        if before != after:
            record_audit(
                db,
                AuditAction.USER_ROLES_CHANGED,
                current_user,
                user.id,
                {"from": before, "to": after},
            )

    if changes.get("disabled") is not None and changes["disabled"] != user.disabled:
        if user.id == current_user.id and changes["disabled"]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You cannot disable your own account",
            )
        user.disabled = changes["disabled"]
        record_audit(
            db,
            AuditAction.USER_DISABLED if user.disabled else AuditAction.USER_ENABLED,
            current_user,
            user.id,
        )

    user.updated_at = utcnow()
    await db.commit()
    await db.refresh(user, ["department"])
    return user_response(user)


async def update_profile(
    db: AsyncSession, profile: ProfileUpdate, current_user: User
) -> UserResponse:
    changes = profile.model_dump(exclude_unset=True)
    if changes.get("email") and changes["email"].lower() != current_user.email:
        await _ensure_email_free(db, changes["email"].lower(), exclude_id=current_user.id)
        current_user.email = changes["email"].lower()
    if changes.get("name"):
        current_user.name = changes["name"]
    current_user.updated_at = utcnow()
    record_audit(
        db,
        AuditAction.PROFILE_UPDATED,
        current_user,
        current_user.id,
        {"fields": sorted(changes)},
    )
    await db.commit()
    return user_response(current_user)


async def change_password(
    db: AsyncSession, data: ChangePassword, current_user: User
) -> None:
    if not verify_password(data.current_password, current_user.password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )
    current_user.password = hash_password(data.new_password)
    current_user.updated_at = utcnow()
    record_audit(db, AuditAction.PASSWORD_CHANGED, current_user, current_user.id)
    await db.commit()


async def list_audit_logs(
    db: AsyncSession,
    target_user_id: UUID | None = None,
    action: AuditAction | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[AuditLog]:
    stmt = select(AuditLog)
    if target_user_id:
        stmt = stmt.where(AuditLog.target_user_id == target_user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action.value)
    result = await db.execute(
        stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


async def list_roles(db: AsyncSession) -> list[Role]:
    result = await db.execute(select(Role).order_by(Role.id))
    return result.scalars().all()
