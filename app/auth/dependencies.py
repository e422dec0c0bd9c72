"""Authentication dependencies for protected routes.

Every request authenticates with ``Authorization: Bearer <token>``. Tokens
shaped like an API key (``vp_live_...``/``vp_test_...``) are checked against
stored keys; anything else is decoded as a user JWT. Either way the route
receives a ``TenantContext`` naming the organization it acts for.
"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.database import get_db
from app.models.api_key import APIKey
from app.models.organization import Organization
from app.models.user import ROLE_HIERARCHY, User
from app.auth.api_key import get_api_key_from_db, is_valid_api_key_format
from app.auth.jwt import decode_access_token
from app.services.usage import UsageLedger


security = HTTPBearer(auto_error=False)

# Machine clients act with member rights
API_KEY_ROLE = "member"


@dataclass
class TenantContext:
    """The authenticated caller and the organization it acts for."""

    organization: Organization
    user: Optional[User] = None
    api_key: Optional[APIKey] = None

    @property
    def organization_id(self) -> UUID:
        return self.organization.id

    @property
    def user_id(self) -> Optional[UUID]:
        return self.user.id if self.user else None

    @property
    def role(self) -> str:
        return self.user.role if self.user else API_KEY_ROLE

    def has_role(self, required_role: str) -> bool:
        return ROLE_HIERARCHY.get(self.role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _load_active_organization(db: AsyncSession, organization_id) -> Organization:
    organization = await db.get(Organization, organization_id)

    if not organization:
        raise _unauthorized("Organization not found")

    if not organization.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organization is suspended"
        )

    return organization


async def _authenticate_api_key(raw_key: str, db: AsyncSession) -> TenantContext:
    api_key = await get_api_key_from_db(db, raw_key)

    if not api_key:
        raise _unauthorized("Invalid API key")

    if not api_key.is_valid:
        raise _unauthorized("API key is expired or inactive")

    organization = await _load_active_organization(db, api_key.organization_id)

    # Monthly API call quota
    ledger = UsageLedger(db)
    decision = await ledger.can_make_api_call(organization.id)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=decision.reason
        )
    await ledger.record_api_call(organization.id)

    return TenantContext(organization=organization, api_key=api_key)


async def _authenticate_jwt(token: str, db: AsyncSession) -> TenantContext:
    # Decode token
    payload = decode_access_token(token)
    if not payload:
        raise _unauthorized("Invalid authentication credentials")

    # Extract user ID
    user_id_str: str = payload.get("user_id")
    if not user_id_str:
        raise _unauthorized("Invalid token payload")

    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise _unauthorized("Invalid user ID in token")

    result = await db.execute(
        select(User).where(User.id == user_id)
    )
    user = result.scalar_one_or_none()

    if not user:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )

    organization = await _load_active_organization(db, user.organization_id)
    return TenantContext(organization=organization, user=user)


async def get_tenant_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> TenantContext:
    """Authenticate with either an API key or a user JWT."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")

    token = credentials.credentials
    if is_valid_api_key_format(token):
        return await _authenticate_api_key(token, db)
    return await _authenticate_jwt(token, db)


async def get_user_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> TenantContext:
    """Authenticate with a user JWT only (dashboard endpoints)."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")

    token = credentials.credentials
    if is_valid_api_key_format(token):
        raise _unauthorized("User authentication required")
    return await _authenticate_jwt(token, db)


def require_role(required_role: str, allow_api_key: bool = True):
    """
    Build a dependency that enforces a minimum role.

    Args:
        required_role: Lowest acceptable role (owner > admin > member > viewer)
        allow_api_key: Accept API key callers (who act as members)
    """
    base = get_tenant_context if allow_api_key else get_user_context

    async def dependency(context: TenantContext = Depends(base)) -> TenantContext:
        if not context.has_role(required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires {required_role} role or higher"
            )
        return context

    return dependency
