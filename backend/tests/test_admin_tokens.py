"""Tests for revoked-token administration endpoints."""

from datetime import timedelta
from uuid import uuid4

import jwt
import pytest

from schoolgate.services.token_revocation import TokenRevocationStore


@pytest.fixture
def revoke(db_session, mock_audit, clock):
    """Revoke a token directly through the store."""

    async def _revoke(token, user, reason="logout"):
        store = TokenRevocationStore(db_session, mock_audit, clock)
        return await store.revoke(token, user.id, reason)

    return _revoke


@pytest.mark.asyncio
async def test_revoke_token_manually(
    async_client, admin_user, teacher_user, admin_headers, token_for, audit_entries
):
    """Test an admin revocation blocks the token immediately."""
    token = token_for(teacher_user)

    response = await async_client.post(
        "/api/admin/tokens/blacklist",
        json={"token": token, "reason": "suspicious_activity"},
        headers=admin_headers,
    )

    assert response.status_code == 201
    assert response.json()["message"] == "Token revoked successfully"

    me = await async_client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 401

    [entry] = await audit_entries("token.revoke")
    assert entry.actor_id == admin_user.id
    assert entry.details["owner_id"] == str(teacher_user.id)
    assert token not in str(entry.details)


@pytest.mark.asyncio
async def test_revoke_twice_conflicts(async_client, teacher_user, admin_headers, token_for):
    body = {"token": token_for(teacher_user)}
    await async_client.post("/api/admin/tokens/blacklist", json=body, headers=admin_headers)

    response = await async_client.post("/api/admin/tokens/blacklist", json=body, headers=admin_headers)

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_revoke_unparseable_token(async_client, teacher_user, admin_headers):
    response = await async_client.post(
        "/api/admin/tokens/blacklist",
        json={"token": "garbage", "user_id": str(teacher_user.id)},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json() == {"message": "Invalid token format"}


@pytest.mark.asyncio
async def test_revoke_token_without_owner(async_client, admin_headers):
    token = jwt.encode({"exp": 4102444800}, "k", algorithm="HS256")

    response = await async_client.post(
        "/api/admin/tokens/blacklist", json={"token": token}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.json() == {"message": "Token owner could not be determined"}


@pytest.mark.asyncio
async def test_revoke_token_of_unknown_owner(async_client, admin_headers):
    token = jwt.encode({"sub": str(uuid4()), "exp": 4102444800}, "k", algorithm="HS256")

    response = await async_client.post(
        "/api/admin/tokens/blacklist", json={"token": token}, headers=admin_headers
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_revoked_tokens(async_client, admin_user, teacher_user, auth_headers, token_for, revoke):
    """Test listing is paginated and never exposes full tokens."""
    tokens = [token_for(teacher_user) for _ in range(3)]
    for token in tokens:
        await revoke(token, teacher_user)
    await revoke(token_for(admin_user), admin_user, reason="manual")

    response = await async_client.get(
        "/api/admin/tokens/blacklist", params={"limit": 2}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 200
    data = response.json()
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}
    assert len(data["tokens"]) == 2
    for item in data["tokens"]:
        assert item["token_preview"].endswith("...")
        assert "token" not in item
        assert item["token_preview"][:-3] not in tokens

    filtered = await async_client.get(
        "/api/admin/tokens/blacklist",
        params={"user_id": str(teacher_user.id), "reason": "logout"},
        headers=auth_headers(admin_user),
    )
    assert filtered.json()["pagination"]["total"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [{"page": 0}, {"limit": 101}, {"reason": "bored"}])
async def test_list_rejects_bad_query(async_client, admin_user, auth_headers, params):
    response = await async_client.get(
        "/api/admin/tokens/blacklist", params=params, headers=auth_headers(admin_user)
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_remove_revocation(async_client, teacher_user, admin_headers, token_for, revoke):
    token = token_for(teacher_user)
    record_id = await revoke(token, teacher_user)

    response = await async_client.delete(
        f"/api/admin/tokens/blacklist/{record_id}", headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json()["deleted_count"] == 1
    me = await async_client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200


@pytest.mark.asyncio
async def test_remove_unknown_revocation(async_client, admin_headers):
    response = await async_client.delete(
        f"/api/admin/tokens/blacklist/{uuid4()}", headers=admin_headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stats(async_client, admin_user, teacher_user, auth_headers, token_for, revoke):
    await revoke(token_for(teacher_user), teacher_user)
    await revoke(token_for(teacher_user), teacher_user, reason="manual")

    response = await async_client.get("/api/admin/tokens/stats", headers=auth_headers(admin_user))

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["active"] == 2
    assert data["by_reason"] == {"logout": 1, "manual": 1}


@pytest.mark.asyncio
async def test_cleanup_sweeps_expired(
    async_client, admin_user, teacher_user, admin_headers, clock, revoke, audit_entries
):
    expired = jwt.encode(
        {"sub": str(teacher_user.id), "exp": int((clock() - timedelta(minutes=1)).timestamp())},
        "k",
        algorithm="HS256",
    )
    await revoke(expired, teacher_user)

    response = await async_client.post("/api/admin/tokens/cleanup", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"message": "Cleanup completed successfully", "deleted_count": 1}
    [entry] = await audit_entries("token.cleanup")
    assert entry.actor_id == admin_user.id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [
        ("GET", "/api/admin/tokens/blacklist"),
        ("GET", "/api/admin/tokens/stats"),
        ("POST", "/api/admin/tokens/cleanup"),
    ],
)
async def test_teachers_are_refused(
    async_client, teacher_user, auth_headers, csrf_headers, method, path
):
    response = await async_client.request(
        method, path, headers={**auth_headers(teacher_user), **csrf_headers()}
    )
    assert response.status_code == 403
