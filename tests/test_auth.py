"""Tests for API key and JWT helpers."""
from datetime import datetime, timedelta

import pytest
from jose import jwt

from app.auth.api_key import (
    KEY_PREFIX_LENGTH,
    create_api_key,
    generate_api_key,
    generate_test_api_key,
    get_api_key_from_db,
    get_key_prefix,
    is_valid_api_key_format,
    verify_api_key,
)
from app.auth.jwt import create_access_token, create_user_token, decode_access_token


class TestAPIKeyFormat:
    """Test cases for key generation and format checks."""

    def test_generate_live_key(self):
        raw_key, key_hash = generate_api_key()

        assert raw_key.startswith("vp_live_")
        assert len(raw_key) == len("vp_live_") + 64
        assert is_valid_api_key_format(raw_key)
        assert key_hash != raw_key

    def test_generate_test_key(self):
        raw_key, _ = generate_test_api_key()

        assert raw_key.startswith("vp_test_")
        assert is_valid_api_key_format(raw_key)

    def test_unknown_environment(self):
        with pytest.raises(ValueError):
            generate_api_key("staging")

    @pytest.mark.parametrize("candidate", [
        "",
        None,
        "vp_live_",
        "vp_live_short",
        "vp_prod_" + "a" * 64,
        "vp_live_" + "A" * 64,
        "vp_live_" + "a" * 63,
        "sk_live_" + "a" * 64,
    ])
    def test_rejects_malformed(self, candidate):
        """Test malformed keys fail the syntactic check."""
        assert not is_valid_api_key_format(candidate)

    def test_prefix(self):
        raw_key, _ = generate_api_key()

        assert get_key_prefix(raw_key) == raw_key[:KEY_PREFIX_LENGTH]
        assert len(get_key_prefix(raw_key)) == 16

    def test_verify(self):
        raw_key, key_hash = generate_api_key()
        other_key, _ = generate_api_key()

        assert verify_api_key(raw_key, key_hash)
        assert not verify_api_key(other_key, key_hash)


class TestAPIKeyLookup:
    """Test cases for resolving stored keys."""

    async def test_lookup_bumps_usage(self, db, organization):
        raw_key, api_key = await create_api_key(db, organization.id, "CI")

        found = await get_api_key_from_db(db, raw_key)

        assert found.id == api_key.id
        assert found.total_requests == 1
        assert found.last_used_at is not None

    async def test_unknown_key(self, db, organization):
        await create_api_key(db, organization.id, "CI")
        raw_key, _ = generate_api_key()

        assert await get_api_key_from_db(db, raw_key) is None

    async def test_inactive_key_is_returned_untouched(self, db, organization):
        """Test revoked keys resolve but are not counted."""
        raw_key, api_key = await create_api_key(db, organization.id, "CI")
        api_key.is_active = False
        await db.commit()

        found = await get_api_key_from_db(db, raw_key)

        assert found is not None
        assert not found.is_valid
        assert found.total_requests == 0

    async def test_expired_key_is_invalid(self, db, organization):
        _, api_key = await create_api_key(
            db,
            organization.id,
            "Old",
            expires_at=datetime.utcnow() - timedelta(days=1),
        )

        assert api_key.is_expired
        assert not api_key.is_valid


class TestJWT:
    """Test cases for access tokens."""

    async def test_user_token_claims(self, owner):
        payload = decode_access_token(create_user_token(owner))

        assert payload["user_id"] == str(owner.id)
        assert payload["organization_id"] == str(owner.organization_id)
        assert payload["role"] == "owner"

    def test_expired_token(self):
        token = create_access_token({"user_id": "x"}, expires_delta=timedelta(seconds=-1))

        assert decode_access_token(token) is None

    def test_foreign_signature(self):
        token = jwt.encode({"user_id": "x"}, "some-other-secret-of-sufficient-length", algorithm="HS256")

        assert decode_access_token(token) is None
