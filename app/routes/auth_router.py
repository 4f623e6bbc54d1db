from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import create_tokens, refresh_access_token
from app.database.database import get_db
from app.schemas.user_schema import MessageSchema, RefreshTokenRequest, TokenResponse
from app.services import auth_service

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/login", status_code=status.HTTP_200_OK)
async def login_user(
    user_credentials: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    user = await auth_service.login_user(login_data=user_credentials, db=db)
    return await create_tokens(user_id=user.id, db=db)


@router.post("/refresh", status_code=status.HTTP_200_OK)
async def refresh_token(
    data: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Exchange a refresh token for a new token pair. The old refresh token is revoked."""
    return await refresh_access_token(data.refresh_token, db)


@router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    data: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
) -> MessageSchema:
    """Logout user by revoking their refresh token"""
    success = await auth_service.logout_user(db=db, refresh_token=data.refresh_token)
    if not success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid token"
        )
    return MessageSchema(message="Successfully logged out")
