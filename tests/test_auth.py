import httpx
import pytest
from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import AuditLog, Role, User
from app.schemas.user_schema import AuditAction, RoleName

PASSWORD = "password123"


async def login(client: httpx.AsyncClient, email: str, password: str = PASSWORD):
    return await client.post(
        "/api/auth/login", data={"username": email, "password": password}
    )


@pytest.mark.asyncio
async def test_login_user(client: httpx.AsyncClient, admin: User):
    """
    Test the login endpoint with valid credentials.
    """
    response = await login(client, "ADMIN@example.com")
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["token_type"] == "bearer"
    assert "access_token" in body
    assert "refresh_token" in body


@pytest.mark.asyncio
async def test_login_user_invalid_credentials(client: httpx.AsyncClient, admin: User):
    response = await login(client, admin.email, "wrong_password")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = await login(client, "nobody@example.com")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_disabled_user_cannot_login(
    client: httpx.AsyncClient, test_db: AsyncSession, make_user, headers_for
):
    user = await make_user("cashier@example.com", RoleName.POS_CASHIER)
    headers = headers_for(user)
    user.disabled = True
    await test_db.commit()

    response = await login(client, "cashier@example.com")
    assert response.status_code == status.HTTP_403_FORBIDDEN

    # Existing access tokens stop working too
    response = await client.get("/api/users/me", headers=headers)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_refresh_rotates_token(client: httpx.AsyncClient, admin: User):
    tokens = (await login(client, admin.email)).json()

    response = await client.post(
        "/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["refresh_token"] != tokens["refresh_token"]

    # The old refresh token was revoked
    response = await client.post(
        "/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_logout(client: httpx.AsyncClient, admin: User):
    tokens = (await login(client, admin.email)).json()

    response = await client.post(
        "/api/auth/logout", json={"refresh_token": tokens["refresh_token"]}
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Successfully logged out"

    response = await client.post(
        "/api/auth/logout", json={"refresh_token": tokens["refresh_token"]}
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_me_lists_roles_and_permissions(client: httpx.AsyncClient, make_user):
    user = await make_user("driver@example.com", RoleName.DELIVERY_STAFF)
    tokens = (await login(client, user.email)).json()

    response = await client.get(
        "/api/users/me", headers={"Authorization": f"Bearer {tokens['access_token']}"}
    )
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert [r["name"] for r in body["roles"]] == ["delivery_staff"]
    assert body["permissions"] == ["deliveries:read", "deliveries:update_status"]


@pytest.mark.asyncio
async def test_missing_or_bad_token(client: httpx.AsyncClient):
    response = await client.get("/api/users/me")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = await client.get(
        "/api/users/me", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_change_password(client: httpx.AsyncClient, admin: User, admin_headers):
    response = await client.post(
        "/api/users/me/change-password",
        json={"current_password": "wrong-password", "new_password": "new-password-1"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = await client.post(
        "/api/users/me/change-password",
        json={"current_password": PASSWORD, "new_password": "new-password-1"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_200_OK

    assert (await login(client, admin.email, "new-password-1")).status_code == 200


@pytest.mark.asyncio
async def test_create_user_and_audit_trail(
    client: httpx.AsyncClient, test_db: AsyncSession, admin: User, admin_headers
):
    result = await test_db.execute(select(Role.id).where(Role.name == RoleName.VIEWER))
    viewer_role_id = result.scalar_one()

    response = await client.post(
        "/api/users",
        json={
            "name": "Pedro Reyes",
            "email": "Pedro@Example.com",
            "password": "password123",
            "role_ids": [viewer_role_id],
        },
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    user_id = response.json()["id"]
    assert response.json()["email"] == "pedro@example.com"

    response = await client.post(
        "/api/users",
        json={"name": "Dup", "email": "pedro@example.com", "password": "password123"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_409_CONFLICT

    response = await client.patch(
        f"/api/users/{user_id}", json={"disabled": True}, headers=admin_headers
    )
    assert response.json()["disabled"] is True

    response = await client.get(
        "/api/users/audit", params={"target_user_id": user_id}, headers=admin_headers
    )
    actions = [entry["action"] for entry in response.json()]
    assert actions == [AuditAction.USER_DISABLED.value, AuditAction.USER_CREATED.value]

    result = await test_db.execute(
        select(AuditLog.actor_id).where(AuditLog.action == AuditAction.USER_CREATED.value)
    )
    assert result.scalar_one() == admin.id


@pytest.mark.asyncio
async def test_admin_cannot_disable_self(
    client: httpx.AsyncClient, admin: User, admin_headers
):
    response = await client.patch(
        f"/api/users/{admin.id}", json={"disabled": True}, headers=admin_headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_short_password_is_rejected(client: httpx.AsyncClient, admin_headers):
    response = await client.post(
        "/api/users",
        json={"name": "Short", "email": "short@example.com", "password": "abc"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
