"""Usage tracking schemas."""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class CurrentUsage(BaseModel):
    """Counters for the current month."""

    videos_uploaded: int = Field(..., ge=0, description="Videos uploaded this month")
    minutes_processed: float = Field(..., ge=0.0, description="Minutes of video processed")
    storage_used: int = Field(..., ge=0, description="Stored bytes")
    storage_used_gb: float = Field(..., ge=0.0, description="Stored gigabytes")
    api_calls: int = Field(..., ge=0, description="API-key requests this month")


class PlanLimitsResponse(BaseModel):
    """Plan limits (-1 means unlimited)."""

    videos_per_month: int
    minutes_per_month: int
    storage_gb: int
    api_calls_per_month: int
    max_team_members: int
    max_resolutions: List[str] = []
    support_level: str


class UsageResponse(BaseModel):
    """Usage response."""

    organization_id: str
    month: str = Field(..., description="Billing month (YYYY-MM)")
    plan: str
    current: CurrentUsage
    limits: Optional[PlanLimitsResponse] = None
    percentages: Dict[str, Optional[float]] = {}
