"""Tests for registration, login and API key management."""
from sqlalchemy import select

from app.auth.api_key import create_api_key, is_valid_api_key_format
from app.models.api_key import APIKey
from app.models.audit_log import AuditLog
from app.models.user import User
from app.services.usage import UsageLedger
from conftest import TEST_PASSWORD

REGISTRATION = {
    "email": "founder@example.com",
    "password": "Sup3rSecret!",
    "name": "Alex Founder",
    "organization_name": "Founder Films",
}


class TestRegister:
    """Test cases for organization signup."""

    async def test_register_creates_org_owner_and_key(self, client, session_factory):
        response = await client.post("/api/auth/register", json=REGISTRATION)

        assert response.status_code == 201
        body = response.json()
        assert body["organization"]["plan"] == "free"
        assert body["organization"]["status"] == "active"
        assert body["user"]["role"] == "owner"
        assert body["token"]
        assert is_valid_api_key_format(body["api_key"])

        async with session_factory() as session:
            keys = (await session.execute(select(APIKey))).scalars().all()
            user = (await session.execute(select(User))).scalar_one()
            actions = (await session.execute(select(AuditLog.action))).scalars().all()
        assert len(keys) == 1
        assert keys[0].key_prefix == body["api_key"][:16]
        assert user.hashed_password != REGISTRATION["password"]
        assert "organization.created" in actions

    async def test_duplicate_email(self, client):
        await client.post("/api/auth/register", json=REGISTRATION)

        response = await client.post("/api/auth/register", json=REGISTRATION)

        assert response.status_code == 400
        assert response.json()["detail"] == "Email already registered"

    async def test_short_password(self, client):
        response = await client.post("/api/auth/register", json={**REGISTRATION, "password": "short"})

        assert response.status_code == 422

    async def test_registered_key_works(self, client):
        body = (await client.post("/api/auth/register", json=REGISTRATION)).json()

        response = await client.get(
            "/api/usage/stats",
            headers={"Authorization": f"Bearer {body['api_key']}"},
        )

        assert response.status_code == 200
        assert response.json()["plan"] == "free"


class TestLogin:
    """Test cases for password login."""

    async def test_login(self, client, owner, session_factory):
        response = await client.post("/api/auth/login", json={"email": owner.email, "password": TEST_PASSWORD})

        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["email"] == owner.email

        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.json()["organization"]["id"] == str(owner.organization_id)

    async def test_wrong_password(self, client, owner):
        response = await client.post("/api/auth/login", json={"email": owner.email, "password": "nope-nope"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid credentials"

    async def test_unknown_email(self, client):
        response = await client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "whatever"})

        assert response.status_code == 401

    async def test_suspended_organization(self, client, db, owner, organization):
        organization.status = "suspended"
        await db.commit()

        response = await client.post("/api/auth/login", json={"email": owner.email, "password": TEST_PASSWORD})

        assert response.status_code == 403


class TestBearerAuthentication:
    """Test cases for resolving bearer tokens."""

    async def test_garbage_token(self, client):
        response = await client.get("/api/videos", headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401

    async def test_me_rejects_api_key(self, client, api_key, headers_for):
        raw_key, _ = api_key

        response = await client.get("/api/auth/me", headers=headers_for(raw_key))

        assert response.status_code == 401
        assert response.json()["detail"] == "User authentication required"

    async def test_unknown_api_key(self, client, organization):
        response = await client.get(
            "/api/videos",
            headers={"Authorization": "Bearer vp_live_" + "0" * 64},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    async def test_revoked_api_key(self, client, db, api_key, headers_for):
        raw_key, model = api_key
        model.is_active = False
        await db.commit()

        response = await client.get("/api/videos", headers=headers_for(raw_key))

        assert response.status_code == 401
        assert response.json()["detail"] == "API key is expired or inactive"

    async def test_suspended_organization_key(self, client, db, api_key, organization, headers_for):
        raw_key, _ = api_key
        organization.status = "suspended"
        await db.commit()

        response = await client.get("/api/videos", headers=headers_for(raw_key))

        assert response.status_code == 403

    async def test_api_call_quota(self, client, session_factory, api_key, organization, headers_for):
        """Test API key requests stop once the monthly call quota is spent."""
        raw_key, _ = api_key
        async with session_factory() as session:
            record = await UsageLedger(session).get_or_create_monthly_record(organization.id)
            record.api_calls = 1000
            await session.commit()

        response = await client.get("/api/videos", headers=headers_for(raw_key))

        assert response.status_code == 429
        assert "API call limit" in response.json()["detail"]

    async def test_inactive_user(self, client, make_user, organization, headers_for):
        user = await make_user(organization, role="member", is_active=False)

        response = await client.get("/api/videos", headers=headers_for(user))

        assert response.status_code == 403


class TestAPIKeyManagement:
    """Test cases for the /api-keys endpoints."""

    async def test_create_list_revoke_delete(self, client, auth_headers, headers_for):
        created = await client.post("/api/api-keys", json={"name": "Deploy", "environment": "test"}, headers=auth_headers)

        assert created.status_code == 201
        raw_key = created.json()["key"]
        key_id = created.json()["api_key"]["id"]
        assert raw_key.startswith("vp_test_")

        listed = await client.get("/api/api-keys", headers=auth_headers)
        assert [k["id"] for k in listed.json()["api_keys"]] == [key_id]
        assert "key" not in listed.json()["api_keys"][0]

        assert (await client.get("/api/videos", headers=headers_for(raw_key))).status_code == 200

        revoked = await client.post(f"/api/api-keys/{key_id}/revoke", headers=auth_headers)
        assert revoked.json()["is_active"] is False
        assert (await client.get("/api/videos", headers=headers_for(raw_key))).status_code == 401

        reactivated = await client.post(f"/api/api-keys/{key_id}/reactivate", headers=auth_headers)
        assert reactivated.json()["is_active"] is True

        deleted = await client.delete(f"/api/api-keys/{key_id}", headers=auth_headers)
        assert deleted.status_code == 200
        assert (await client.get("/api/api-keys", headers=auth_headers)).json()["api_keys"] == []

    async def test_api_key_cannot_manage_keys(self, client, api_key, headers_for):
        raw_key, _ = api_key

        response = await client.post("/api/api-keys", json={"name": "Escalate"}, headers=headers_for(raw_key))

        assert response.status_code == 401

    async def test_other_organization_key(self, client, db, make_organization, auth_headers):
        other = await make_organization()
        _, foreign = await create_api_key(db, other.id, "Theirs")

        response = await client.post(f"/api/api-keys/{foreign.id}/revoke", headers=auth_headers)

        assert response.status_code == 404

    async def test_viewer_cannot_create(self, client, make_user, organization, headers_for):
        viewer = await make_user(organization, role="viewer")

        response = await client.post("/api/api-keys", json={"name": "Nope"}, headers=headers_for(viewer))

        assert response.status_code == 403

