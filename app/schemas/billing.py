"""Billing schemas."""
from typing import List, Optional
from pydantic import BaseModel, Field

from app.schemas.usage import PlanLimitsResponse


class PlanResponse(BaseModel):
    """A subscription plan."""
    id: str
    name: str
    price: int = Field(..., description="Monthly price in USD")
    limits: PlanLimitsResponse
    features: List[str] = []


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]


class CurrentPlanResponse(BaseModel):
    current_plan: str
    status: str
    plan: Optional[PlanResponse] = None


class ChangePlanRequest(BaseModel):
    new_plan: Optional[str] = Field(None, description="Target plan id")


class ChangePlanResponse(BaseModel):
    message: str
    plan: PlanResponse


class CheckoutRequest(BaseModel):
    plan_id: Optional[str] = Field(None, description="Paid plan to subscribe to")


class SessionURLResponse(BaseModel):
    url: str


class WebhookResponse(BaseModel):
    received: bool = True
