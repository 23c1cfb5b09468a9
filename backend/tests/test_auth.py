"""Tests for authentication endpoints."""

import pytest

from tests.conftest import TEST_PASSWORD

NEW_PASSWORD = "Zr8$wN4@tBq6"


async def _login(client, email="teacher@example.com", password=TEST_PASSWORD, ip=None):
    headers = {"X-Real-IP": ip} if ip else {}
    return await client.post(
        "/auth/login", json={"email": email, "password": password}, headers=headers
    )


@pytest.mark.asyncio
async def test_csrf_token_sets_matching_cookie(async_client):
    """Test the CSRF endpoint returns the value it sets as a cookie."""
    response = await async_client.get("/auth/csrf-token")

    assert response.status_code == 200
    token = response.json()["csrfToken"]
    assert response.cookies["csrfToken"] == token
    cookie_header = response.headers["set-cookie"].lower()
    assert "samesite=strict" in cookie_header
    assert "httponly" not in cookie_header


@pytest.mark.asyncio
async def test_login_success(async_client, teacher_user, audit_entries):
    """Test login returns a token pair and records the login."""
    response = await _login(async_client)

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 15 * 60
    assert data["access_token"] and data["refresh_token"]
    assert await audit_entries("auth.login_failed") == []


@pytest.mark.asyncio
async def test_login_email_is_case_insensitive(async_client, teacher_user):
    response = await _login(async_client, email="Teacher@Example.COM")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(async_client, teacher_user, db_session, audit_entries):
    """Test a wrong password is refused and counted."""
    response = await _login(async_client, password="Wrong-pass-1!")

    assert response.status_code == 401
    assert response.json() == {"message": "Invalid credentials"}
    await db_session.refresh(teacher_user)
    assert teacher_user.failed_login_attempts == 1
    [entry] = await audit_entries("auth.login_failed")
    assert entry.details["known_account"] is True


@pytest.mark.asyncio
async def test_login_unknown_email_indistinguishable(async_client, teacher_user):
    """Test unknown accounts and wrong passwords look the same."""
    unknown = await _login(async_client, email="nobody@example.com")
    wrong = await _login(async_client, password="Wrong-pass-1!")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()


@pytest.mark.asyncio
async def test_login_deactivated_account(async_client, user_factory, db_session):
    """Test a deactivated account is refused without counting a failure."""
    user = await user_factory(email="left@example.com", is_active=False)

    response = await _login(async_client, email="left@example.com")

    assert response.status_code == 401
    assert response.json() == {"message": "User account is deactivated"}
    await db_session.refresh(user)
    assert user.failed_login_attempts == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"email": "not-an-email", "password": "x"},
        {"email": "a@example.com", "password": ""},
        {"email": "a@example.com", "password": "x" * 129},
        {"password": "x"},
    ],
)
async def test_login_validation(async_client, body):
    """Test malformed login bodies get a 422."""
    response = await async_client.post("/auth/login", json=body)

    assert response.status_code == 422
    assert response.json()["message"] == "Invalid request"
    assert response.json()["errors"]


@pytest.mark.asyncio
async def test_login_of_locked_account(async_client, user_factory, clock):
    """Test a locked account is refused with 423 even with the right password."""
    from datetime import timedelta

    await user_factory(
        email="locked@example.com",
        failed_login_attempts=3,
        lockout_until=clock() + timedelta(minutes=5),
    )

    response = await _login(async_client, email="locked@example.com")

    assert response.status_code == 423
    data = response.json()
    assert data["remainingMinutes"] == 5
    assert data["message"].startswith("Account is locked")


@pytest.mark.asyncio
async def test_successful_login_resets_failures(async_client, teacher_user, db_session):
    await _login(async_client, password="Wrong-pass-1!")
    await _login(async_client, password="Wrong-pass-1!")

    response = await _login(async_client)

    assert response.status_code == 200
    await db_session.refresh(teacher_user)
    assert teacher_user.failed_login_attempts == 0
    assert teacher_user.last_login_at is not None


@pytest.mark.asyncio
async def test_me(async_client, teacher_user, auth_headers):
    """Test /auth/me returns the identity and its permissions."""
    response = await async_client.get("/auth/me", headers=auth_headers(teacher_user))

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "teacher@example.com"
    assert data["role"] == "teacher"
    assert "attendance.create" in data["permissions"]
    assert "password_hash" not in data


@pytest.mark.asyncio
async def test_me_requires_token(async_client):
    response = await async_client.get("/auth/me")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_rotates_tokens(async_client, teacher_user):
    """Test a refresh token works once and returns a fresh pair."""
    tokens = (await _login(async_client)).json()

    response = await async_client.post(
        "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )

    assert response.status_code == 200
    rotated = response.json()
    assert rotated["refresh_token"] != tokens["refresh_token"]
    me = await async_client.get(
        "/auth/me", headers={"Authorization": f"Bearer {rotated['access_token']}"}
    )
    assert me.status_code == 200


@pytest.mark.asyncio
async def test_refresh_token_reuse_rejected(async_client, teacher_user, audit_entries):
    """Test a rotated refresh token cannot be replayed."""
    tokens = (await _login(async_client)).json()
    body = {"refresh_token": tokens["refresh_token"]}
    await async_client.post("/auth/refresh", json=body)

    response = await async_client.post("/auth/refresh", json=body)

    assert response.status_code == 401
    assert response.json() == {"message": "Token has been revoked", "error": "TOKEN_REVOKED"}
    assert len(await audit_entries("token.revoked_use")) == 1


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(async_client, teacher_user, token_for):
    response = await async_client.post(
        "/auth/refresh", json={"refresh_token": token_for(teacher_user)}
    )
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid refresh token"


@pytest.mark.asyncio
async def test_refresh_for_deleted_user(async_client, teacher_user, db_session):
    tokens = (await _login(async_client)).json()
    await db_session.delete(teacher_user)
    await db_session.commit()

    response = await async_client.post(
        "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )

    assert response.status_code == 401
    assert response.json()["message"] == "User not found"


@pytest.mark.asyncio
async def test_logout_revokes_both_tokens(async_client, teacher_user, csrf_headers):
    """Test logout revokes the access token and the supplied refresh token."""
    tokens = (await _login(async_client)).json()
    bearer = {"Authorization": f"Bearer {tokens['access_token']}"}

    response = await async_client.post(
        "/auth/logout",
        json={"refresh_token": tokens["refresh_token"]},
        headers={**bearer, **csrf_headers()},
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully"}

    me = await async_client.get("/auth/me", headers=bearer)
    assert me.status_code == 401
    assert me.json()["error"] == "TOKEN_REVOKED"

    refresh = await async_client.post(
        "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert refresh.status_code == 401


@pytest.mark.asyncio
async def test_logout_ignores_another_users_refresh_token(
    async_client, teacher_user, admin_user, auth_headers, csrf_headers, security_policy
):
    """Test logout never revokes a refresh token the caller does not own."""
    from schoolgate.services.auth import create_refresh_token

    other_refresh = create_refresh_token(admin_user, security_policy.tokens)

    response = await async_client.post(
        "/auth/logout",
        json={"refresh_token": other_refresh},
        headers={**auth_headers(teacher_user), **csrf_headers()},
    )

    assert response.status_code == 200
    refresh = await async_client.post("/auth/refresh", json={"refresh_token": other_refresh})
    assert refresh.status_code == 200


@pytest.mark.asyncio
async def test_logout_requires_csrf(async_client, teacher_user, auth_headers):
    response = await async_client.post("/auth/logout", headers=auth_headers(teacher_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_change_password(async_client, teacher_user, auth_headers, csrf_headers, audit_entries):
    """Test a password change invalidates existing tokens."""
    headers = {**auth_headers(teacher_user), **csrf_headers()}

    response = await async_client.post(
        "/auth/change-password",
        json={"current_password": TEST_PASSWORD, "new_password": NEW_PASSWORD},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Password changed successfully. Please log in again."
    assert (await async_client.get("/auth/me", headers=headers)).status_code == 401
    assert (await _login(async_client, password=NEW_PASSWORD)).status_code == 200
    assert len(await audit_entries("password.change")) == 1


@pytest.mark.asyncio
async def test_change_password_weak(async_client, teacher_user, auth_headers, csrf_headers, audit_entries):
    """Test a weak new password is refused with every violation listed."""
    response = await async_client.post(
        "/auth/change-password",
        json={"current_password": TEST_PASSWORD, "new_password": "abcd1234"},
        headers={**auth_headers(teacher_user), **csrf_headers()},
    )

    assert response.status_code == 400
    data = response.json()
    assert data["message"] == "New password does not meet security requirements"
    assert "Password must contain at least one uppercase letter" in data["errors"]
    [entry] = await audit_entries("password.validation_failed")
    assert "sequential_chars" in entry.details["rules"]


@pytest.mark.asyncio
async def test_change_password_wrong_current(async_client, teacher_user, auth_headers, csrf_headers):
    response = await async_client.post(
        "/auth/change-password",
        json={"current_password": "Not-the-1-pass!", "new_password": NEW_PASSWORD},
        headers={**auth_headers(teacher_user), **csrf_headers()},
    )

    assert response.status_code == 400
    assert response.json() == {"message": "Current password is incorrect"}


@pytest.mark.asyncio
async def test_change_password_to_same(async_client, teacher_user, auth_headers, csrf_headers):
    response = await async_client.post(
        "/auth/change-password",
        json={"current_password": TEST_PASSWORD, "new_password": TEST_PASSWORD},
        headers={**auth_headers(teacher_user), **csrf_headers()},
    )

    assert response.status_code == 400
    assert response.json() == {"message": "New password must be different from current password"}
