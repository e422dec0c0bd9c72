"""Billing endpoints: plans, plan changes and Stripe integration."""
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.auth.dependencies import TenantContext, get_tenant_context, get_user_context, require_role
from app.core.plans import PLANS, Plan, get_plan
from app.schemas.billing import (
    ChangePlanRequest,
    ChangePlanResponse,
    CheckoutRequest,
    CurrentPlanResponse,
    PlanListResponse,
    PlanResponse,
    SessionURLResponse,
    WebhookResponse,
)
from app.schemas.usage import UsageResponse
from app.api.usage import build_usage_response
from app.services.audit import record_event
from app.services.billing import StripeBilling, apply_webhook_event, change_plan, get_billing
from app.services.usage import UsageLedger
from app.utils.error_handling import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(**asdict(plan))


@router.get("/plans", response_model=PlanListResponse)
async def list_plans(context: TenantContext = Depends(get_user_context)):
    """List every subscription plan."""
    return PlanListResponse(plans=[_plan_response(p) for p in PLANS.values()])


@router.get("/current-plan", response_model=CurrentPlanResponse)
async def get_current_plan(context: TenantContext = Depends(get_user_context)):
    """Get the organization's plan and account status."""
    organization = context.organization
    plan = get_plan(organization.plan)
    return CurrentPlanResponse(
        current_plan=organization.plan,
        status=organization.status,
        plan=_plan_response(plan) if plan else None,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_billing_usage(
    context: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db)
):
    """Current month usage alongside plan limits."""
    snapshot = await UsageLedger(db).get_usage_snapshot(context.organization_id)
    return build_usage_response(snapshot)


@router.post("/change-plan", response_model=ChangePlanResponse)
async def change_organization_plan(
    payload: ChangePlanRequest,
    request: Request,
    context: TenantContext = Depends(require_role("owner", allow_api_key=False)),
    db: AsyncSession = Depends(get_db)
):
    """
    Upgrade or downgrade the organization's plan.

    Downgrades are refused while team size or stored bytes exceed the target
    plan's limits.
    """
    organization = context.organization
    old_price = PLANS[organization.plan].price if organization.plan in PLANS else None

    change = await change_plan(db, organization, payload.new_plan)

    await record_event(
        db,
        organization.id,
        f"billing.plan.{change.direction}",
        user_id=context.user_id,
        resource_type="organization",
        resource_id=organization.id,
        details={
            "old_plan": change.old_plan,
            "new_plan": change.new_plan.id,
            "old_price": old_price,
            "new_price": change.new_plan.price,
        },
        request=request,
    )

    return ChangePlanResponse(
        message=f"Successfully {change.direction} to {change.new_plan.name} plan",
        plan=_plan_response(change.new_plan),
    )


@router.post("/create-checkout", response_model=SessionURLResponse)
async def create_checkout(
    payload: CheckoutRequest,
    context: TenantContext = Depends(require_role("owner", allow_api_key=False)),
    billing: StripeBilling = Depends(get_billing),
    db: AsyncSession = Depends(get_db)
):
    """Start a Stripe checkout session for a paid plan."""
    plan = get_plan(payload.plan_id)
    if plan is None:
        raise ValidationError("Invalid plan", field="plan_id")
    if plan.price == 0:
        raise ValidationError("Cannot create checkout for free plan", field="plan_id")

    customer_id = await billing.ensure_customer(db, context.organization)
    url = await billing.create_checkout_session(customer_id, plan, context.organization_id)
    return SessionURLResponse(url=url)


@router.post("/create-portal", response_model=SessionURLResponse)
async def create_portal(
    context: TenantContext = Depends(require_role("owner", allow_api_key=False)),
    billing: StripeBilling = Depends(get_billing)
):
    """Open the Stripe customer portal."""
    customer_id = context.organization.stripe_customer_id
    if not customer_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No billing account found"
        )
    url = await billing.create_portal_session(customer_id)
    return SessionURLResponse(url=url)


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    billing: StripeBilling = Depends(get_billing),
    db: AsyncSession = Depends(get_db)
):
    """
    Receive Stripe events.

    Unauthenticated; the payload is verified against the Stripe-Signature
    header instead.
    """
    if not stripe_signature:
        raise ValidationError("Missing stripe signature")

    payload = await request.body()
    event = billing.construct_webhook_event(payload, stripe_signature)

    organization, action = await apply_webhook_event(db, event)
    if organization is not None:
        logger.info(f"Stripe event {event['type']} applied to organization {organization.id}")
        await record_event(
            db,
            organization.id,
            action,
            resource_type="organization",
            resource_id=organization.id,
            details={"event_type": event["type"], "event_id": event.get("id")},
            request=request,
        )

    return WebhookResponse(received=True)
