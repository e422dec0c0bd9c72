"""Usage tracking endpoints."""
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.auth.dependencies import TenantContext, get_tenant_context
from app.schemas.usage import CurrentUsage, PlanLimitsResponse, UsageResponse
from app.services.usage import BYTES_PER_GB, UsageLedger, UsageSnapshot

router = APIRouter(prefix="/usage", tags=["Usage"])


def build_usage_response(snapshot: UsageSnapshot) -> UsageResponse:
    """Shape a ledger snapshot for the API."""
    return UsageResponse(
        organization_id=snapshot.organization_id,
        month=snapshot.month,
        plan=snapshot.plan,
        current=CurrentUsage(
            videos_uploaded=snapshot.videos_uploaded,
            minutes_processed=round(snapshot.minutes_processed, 2),
            storage_used=snapshot.storage_used,
            storage_used_gb=round(snapshot.storage_used / BYTES_PER_GB, 3),
            api_calls=snapshot.api_calls,
        ),
        limits=PlanLimitsResponse(**asdict(snapshot.limits)) if snapshot.limits else None,
        percentages=snapshot.percentages,
    )


@router.get("/stats", response_model=UsageResponse)
async def get_usage_stats(
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db)
):
    """
    Get usage statistics for your organization.

    Returns information about:
    - Current month's uploads, processed minutes, storage and API calls
    - The plan's limits (-1 means unlimited)
    - Percentage of each limit used
    """
    snapshot = await UsageLedger(db).get_usage_snapshot(context.organization_id)
    return build_usage_response(snapshot)
