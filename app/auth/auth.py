from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
import uuid

from app.auth.permissions import Permission, can
from app.models.models import User, RefreshToken
from app.schemas.user_schema import TokenResponse
from app.database.database import get_db
from app.config.config import settings
from app.utils.utils import as_utc

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
    )
    return encoded_jwt


async def create_refresh_token(user_id: uuid.UUID, db: AsyncSession) -> str:
    token = str(uuid.uuid4())
    expires_at = datetime.now(timezone.utc) + timedelta(
        days=settings.REFRESH_TOKEN_EXPIRE_DAYS
    )

    refresh_token = RefreshToken(token=token, user_id=user_id, expires_at=expires_at)

    db.add(refresh_token)
    await db.commit()

    return token


async def create_tokens(user_id: uuid.UUID, db: AsyncSession) -> TokenResponse:
    access_token = create_access_token({"sub": str(user_id)})
    refresh_token = await create_refresh_token(user_id, db)

    return TokenResponse(
        access_token=access_token, refresh_token=refresh_token, token_type="bearer"
    )


async def verify_refresh_token(token: str, db: AsyncSession) -> uuid.UUID | None:
    result = await db.execute(select(RefreshToken).where(RefreshToken.token == token))
    row = result.scalar_one_or_none()

    if not row:
        return None

    if row.is_revoked or as_utc(row.expires_at) < datetime.now(timezone.utc):
        return None

    return row.user_id


async def refresh_access_token(token: str, db: AsyncSession) -> TokenResponse:
    user_id = await verify_refresh_token(token, db)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )
    await revoke_refresh_token(token, db)
    return await create_tokens(user_id, db)


async def get_current_user(
    token: str = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
        user_uuid = uuid.UUID(user_id)
    except (JWTError, ValueError):
        raise credentials_exception

    user = await db.get(User, user_uuid)
    if user is None or user.disabled:
        raise credentials_exception

    return user


def require_permission(permission: Permission):
    """Dependency factory: the current user, provided one of their roles grants ``permission``."""

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if not can(current_user, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return current_user

    return checker


async def revoke_refresh_token(token: str, db: AsyncSession) -> bool:
    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.token == token, RefreshToken.is_revoked.is_(False))
        .values(is_revoked=True)
    )
    await db.commit()

    return result.rowcount > 0
