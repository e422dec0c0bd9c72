"""API key management endpoints."""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.database import get_db
from app.models.api_key import APIKey
from app.schemas.api_key import (
    APIKeyCreate,
    APIKeyCreatedResponse,
    APIKeyListResponse,
    APIKeyResponse,
)
from app.schemas.video import MessageResponse
from app.auth.api_key import create_api_key
from app.auth.dependencies import TenantContext, get_user_context, require_role
from app.services.audit import record_event
from app.utils.error_handling import NotFoundError
from app.utils.helpers import to_uuid

router = APIRouter(prefix="/api-keys", tags=["API Keys"])


async def _get_org_key(db: AsyncSession, context: TenantContext, key_id: str) -> APIKey:
    try:
        parsed = to_uuid(key_id)
    except ValueError:
        raise NotFoundError("API key not found", resource="api_key")

    result = await db.execute(
        select(APIKey)
        .where(APIKey.id == parsed)
        .where(APIKey.organization_id == context.organization_id)
    )
    api_key = result.scalar_one_or_none()
    if not api_key:
        raise NotFoundError("API key not found", resource="api_key")
    return api_key


@router.get("", response_model=APIKeyListResponse)
async def list_api_keys(
    context: TenantContext = Depends(get_user_context),
    db: AsyncSession = Depends(get_db)
):
    """List the organization's API keys (metadata only)."""
    result = await db.execute(
        select(APIKey)
        .where(APIKey.organization_id == context.organization_id)
        .order_by(APIKey.created_at.desc())
    )
    return APIKeyListResponse(
        api_keys=[APIKeyResponse.model_validate(k) for k in result.scalars().all()]
    )


@router.post("", response_model=APIKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_key(
    payload: APIKeyCreate,
    request: Request,
    context: TenantContext = Depends(require_role("member", allow_api_key=False)),
    db: AsyncSession = Depends(get_db)
):
    """
    Create an API key.

    The raw key is only included in this response.
    """
    raw_key, api_key = await create_api_key(
        db,
        context.organization_id,
        payload.name,
        environment=payload.environment,
        expires_at=payload.expires_at,
    )

    await record_event(
        db,
        context.organization_id,
        "api_key.created",
        user_id=context.user_id,
        resource_type="api_key",
        resource_id=api_key.id,
        details={"name": api_key.name, "prefix": api_key.key_prefix},
        request=request,
    )

    return APIKeyCreatedResponse(key=raw_key, api_key=APIKeyResponse.model_validate(api_key))


async def _set_active(
    key_id: str,
    active: bool,
    request: Request,
    context: TenantContext,
    db: AsyncSession,
) -> APIKeyResponse:
    api_key = await _get_org_key(db, context, key_id)
    api_key.is_active = active
    await db.commit()
    await db.refresh(api_key)

    await record_event(
        db,
        context.organization_id,
        "api_key.reactivated" if active else "api_key.revoked",
        user_id=context.user_id,
        resource_type="api_key",
        resource_id=api_key.id,
        request=request,
    )
    return APIKeyResponse.model_validate(api_key)


@router.post("/{key_id}/revoke", response_model=APIKeyResponse)
async def revoke_key(
    key_id: str,
    request: Request,
    context: TenantContext = Depends(require_role("member", allow_api_key=False)),
    db: AsyncSession = Depends(get_db)
):
    """Deactivate an API key. Requests using it are rejected with 401."""
    return await _set_active(key_id, False, request, context, db)


@router.post("/{key_id}/reactivate", response_model=APIKeyResponse)
async def reactivate_key(
    key_id: str,
    request: Request,
    context: TenantContext = Depends(require_role("member", allow_api_key=False)),
    db: AsyncSession = Depends(get_db)
):
    """Re-enable a revoked API key."""
    return await _set_active(key_id, True, request, context, db)


@router.delete("/{key_id}", response_model=MessageResponse)
async def delete_key(
    key_id: str,
    request: Request,
    context: TenantContext = Depends(require_role("member", allow_api_key=False)),
    db: AsyncSession = Depends(get_db)
):
    """Permanently delete an API key."""
    api_key = await _get_org_key(db, context, key_id)
    deleted_id = api_key.id
    await db.delete(api_key)
    await db.commit()

    await record_event(
        db,
        context.organization_id,
        "api_key.deleted",
        user_id=context.user_id,
        resource_type="api_key",
        resource_id=deleted_id,
        request=request,
    )
    return MessageResponse(message="API key deleted successfully")
