"""Audit trail recording."""
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def _client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def record_event(
    db: AsyncSession,
    organization_id,
    action: str,
    user_id=None,
    resource_type: Optional[str] = None,
    resource_id: Optional[Any] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> Optional[AuditLog]:
    """
    Append an audit entry.

    Failures are logged and swallowed so the action being audited is never
    blocked by the audit trail.
    """
    try:
        entry = AuditLog(
            organization_id=organization_id,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent") if request is not None else None,
            details=details or {},
        )
        db.add(entry)
        await db.commit()
        return entry
    except Exception as e:
        logger.error(f"Failed to write audit log '{action}': {e}", exc_info=True)
        try:
            await db.rollback()
        except Exception:
            logger.exception("Rollback after audit failure also failed")
        return None
