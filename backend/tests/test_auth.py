"""
Tests for authentication endpoints: registration, password login, one-time codes.
"""

import pytest
from httpx import AsyncClient


def _issued_code(fake_redis, email: str) -> str:
    value, _ = fake_redis.data[f"otp:login:{email}"]
    return value


@pytest.mark.asyncio
async def test_register_user(client: AsyncClient):
    """Successful registration returns user data."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "New@Example.com",
        "name": "New User",
        "password": "securepassword123",
    })
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "new@example.com"
    assert data["role"] == "user"
    assert "hashed_password" not in data  # Never expose password hash


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, test_user):
    """Duplicate email returns 409."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "test@example.com",
        "name": "Someone Else",
        "password": "securepassword123",
    })
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_register_weak_password(client: AsyncClient):
    """Password under 8 chars returns 422."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "weak@example.com",
        "name": "Weak",
        "password": "short",
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, test_user):
    """Valid credentials return JWT token."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "test@example.com",
        "password": "testpassword123",
    })
    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"

    me = await client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {data['access_token']}"},
    )
    assert me.status_code == 200
    assert me.json()["id"] == test_user.id


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, test_user):
    """Wrong password returns 401."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "test@example.com",
        "password": "wrongpassword",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_nonexistent_email(client: AsyncClient):
    """Non-existent email returns 401."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "nobody@example.com",
        "password": "anypassword123",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_blocked_user_cannot_use_token(client: AsyncClient, db_session, test_user, auth_headers):
    test_user.is_blocked = True
    await db_session.commit()

    response = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_missing_or_garbage_token(client: AsyncClient):
    assert (await client.get("/api/v1/auth/me")).status_code == 401
    response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_non_admin_is_denied_admin_routes(client: AsyncClient, auth_headers):
    response = await client.get("/api/v1/admin/bookings", headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_otp_login_code_is_single_use(client: AsyncClient, fake_redis, test_user):
    response = await client.post("/api/v1/auth/otp/request", json={"email": "test@example.com"})
    assert response.status_code == 200
    assert response.json()["expires_in"] == 300

    code = _issued_code(fake_redis, "test@example.com")
    assert len(code) == 6

    first = await client.post("/api/v1/auth/otp/verify", json={"email": "test@example.com", "code": code})
    assert first.status_code == 200
    assert "access_token" in first.json()

    second = await client.post("/api/v1/auth/otp/verify", json={"email": "test@example.com", "code": code})
    assert second.status_code == 401


@pytest.mark.asyncio
async def test_otp_expires(client: AsyncClient, fake_redis, test_user):
    await client.post("/api/v1/auth/otp/request", json={"email": "test@example.com"})
    code = _issued_code(fake_redis, "test@example.com")

    fake_redis.advance(301)

    response = await client.post("/api/v1/auth/otp/verify", json={"email": "test@example.com", "code": code})
    assert response.status_code == 401
    assert fake_redis.data == {}


@pytest.mark.asyncio
async def test_otp_wrong_code_keeps_the_issued_one(client: AsyncClient, fake_redis, test_user):
    await client.post("/api/v1/auth/otp/request", json={"email": "test@example.com"})
    code = _issued_code(fake_redis, "test@example.com")
    wrong = "000000" if code != "000000" else "111111"

    response = await client.post("/api/v1/auth/otp/verify", json={"email": "test@example.com", "code": wrong})
    assert response.status_code == 401

    response = await client.post("/api/v1/auth/otp/verify", json={"email": "test@example.com", "code": code})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_otp_request_for_unknown_email_looks_the_same(client: AsyncClient, fake_redis):
    response = await client.post("/api/v1/auth/otp/request", json={"email": "nobody@example.com"})
    assert response.status_code == 200
    assert fake_redis.data == {}


@pytest.mark.asyncio
async def test_admin_blocks_and_unblocks_user(client: AsyncClient, admin_headers, auth_headers, test_user):
    url = f"/api/v1/admin/users/{test_user.id}/toggle-block"

    response = await client.put(url, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["is_blocked"] is True

    assert (await client.get("/api/v1/auth/me", headers=auth_headers)).status_code == 403
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "test@example.com", "password": "testpassword123"},
    )
    assert response.status_code == 403

    response = await client.put(url, headers=admin_headers)
    assert response.json()["is_blocked"] is False
    assert (await client.get("/api/v1/auth/me", headers=auth_headers)).status_code == 200


@pytest.mark.asyncio
async def test_admin_cannot_block_self(client: AsyncClient, admin_headers, admin_user):
    response = await client.put(f"/api/v1/admin/users/{admin_user.id}/toggle-block", headers=admin_headers)
    assert response.status_code == 409
    assert (await client.get("/api/v1/auth/me", headers=admin_headers)).status_code == 200


@pytest.mark.asyncio
async def test_admin_changes_user_role(client: AsyncClient, admin_headers, auth_headers, test_user):
    assert (await client.get("/api/v1/admin/bookings", headers=auth_headers)).status_code == 403

    response = await client.put(
        f"/api/v1/admin/users/{test_user.id}/role",
        json={"role": "admin"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["role"] == "admin"

    # The role is read per request, so the existing token gains admin access
    assert (await client.get("/api/v1/admin/bookings", headers=auth_headers)).status_code == 200

    response = await client.put(
        f"/api/v1/admin/users/{test_user.id}/role",
        json={"role": "superuser"},
        headers=admin_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_admin_lists_users(client: AsyncClient, admin_headers, auth_headers, test_user, admin_user):
    assert (await client.get("/api/v1/admin/users", headers=auth_headers)).status_code == 403

    response = await client.get("/api/v1/admin/users", headers=admin_headers)
    assert response.status_code == 200
    emails = {u["email"] for u in response.json()}
    assert {test_user.email, admin_user.email} <= emails
