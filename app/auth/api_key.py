"""API key generation, verification and management."""
import re
import secrets
from datetime import datetime
from typing import Optional, Tuple
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.models.api_key import APIKey

# Password context for hashing API keys
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

API_KEY_PATTERN = re.compile(r"^vp_(live|test)_[a-f0-9]{64}$")

# "vp_live_" plus the first 8 hex characters
KEY_PREFIX_LENGTH = 16


def is_valid_api_key_format(raw_key: Optional[str]) -> bool:
    """Cheap syntactic check, done before touching the database."""
    return bool(raw_key) and API_KEY_PATTERN.match(raw_key) is not None


def generate_api_key(environment: str = "live") -> Tuple[str, str]:
    """
    Generate a new API key.

    Args:
        environment: "live" or "test"

    Returns:
        Tuple of (raw_key, key_hash)
    """
    if environment not in ("live", "test"):
        raise ValueError(f"Unknown API key environment: {environment}")

    raw_key = f"vp_{environment}_{secrets.token_hex(32)}"
    key_hash = pwd_context.hash(raw_key)

    return raw_key, key_hash


def generate_test_api_key() -> Tuple[str, str]:
    return generate_api_key("test")


def get_key_prefix(raw_key: str) -> str:
    return raw_key[:KEY_PREFIX_LENGTH]


def verify_api_key(raw_key: str, key_hash: str) -> bool:
    """
    Verify an API key against its hash.

    Args:
        raw_key: Raw API key
        key_hash: Hashed API key

    Returns:
        True if valid, False otherwise
    """
    return pwd_context.verify(raw_key, key_hash)


async def get_api_key_from_db(
    db: AsyncSession,
    raw_key: str
) -> Optional[APIKey]:
    """
    Find the stored key matching a raw key.

    Inactive keys are returned too so the caller can tell "revoked" apart
    from "unknown". Usage counters are only bumped for active keys.

    Args:
        db: Database session
        raw_key: Raw API key from request

    Returns:
        APIKey object or None
    """
    if not is_valid_api_key_format(raw_key):
        return None

    # Prefix narrows the candidates before the bcrypt comparison
    result = await db.execute(
        select(APIKey).where(APIKey.key_prefix == get_key_prefix(raw_key))
    )
    api_keys = result.scalars().all()

    for api_key in api_keys:
        if verify_api_key(raw_key, api_key.key_hash):
            if api_key.is_valid:
                api_key.last_used_at = datetime.utcnow()
                api_key.total_requests += 1
                await db.commit()
            return api_key

    return None


async def create_api_key(
    db: AsyncSession,
    organization_id,
    name: str,
    environment: str = "live",
    expires_at: Optional[datetime] = None
) -> Tuple[str, APIKey]:
    """
    Create a new API key.

    Args:
        db: Database session
        organization_id: Organization ID
        name: Human-readable name
        environment: "live" or "test"
        expires_at: Optional expiry

    Returns:
        Tuple of (raw_key, api_key_model). The raw key is never stored.
    """
    raw_key, key_hash = generate_api_key(environment)

    api_key = APIKey(
        organization_id=organization_id,
        name=name,
        key_hash=key_hash,
        key_prefix=get_key_prefix(raw_key),
        is_active=True,
        expires_at=expires_at
    )

    db.add(api_key)
    await db.commit()
    await db.refresh(api_key)

    return raw_key, api_key
