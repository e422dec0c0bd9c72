"""Subscription billing: plan changes and the Stripe integration."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import stripe
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.plans import PLANS, Plan, can_downgrade, can_upgrade, get_plan, is_unlimited
from app.models.organization import Organization
from app.models.user import User
from app.services.usage import BYTES_PER_GB, UsageLedger
from app.utils.error_handling import ExternalServiceError, ValidationError
from app.utils.helpers import to_uuid

logger = logging.getLogger(__name__)

HANDLED_EVENTS = (
    "checkout.session.completed",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_failed",
)


@dataclass
class PlanChange:
    """Result of a successful plan change."""

    old_plan: str
    new_plan: Plan
    direction: str  # "upgraded" or "downgraded"


async def change_plan(db: AsyncSession, organization: Organization, new_plan_id: Optional[str]) -> PlanChange:
    """
    Move an organization to another plan.

    Downgrades are refused while the organization has more team members or
    more stored bytes than the target plan allows.

    Raises:
        ValidationError: Missing, unknown or identical plan, or a blocked downgrade
    """
    if not new_plan_id:
        raise ValidationError("New plan is required", field="new_plan")

    new_plan = get_plan(new_plan_id)
    if new_plan is None:
        raise ValidationError("Invalid plan", field="new_plan")

    current = organization.plan
    if current == new_plan_id:
        raise ValidationError("Already on this plan", field="new_plan")

    upgrading = can_upgrade(current, new_plan_id)
    downgrading = can_downgrade(current, new_plan_id)
    if not upgrading and not downgrading:
        raise ValidationError("Invalid plan change", field="new_plan")

    if downgrading:
        await _check_downgrade_fits(db, organization, new_plan)

    organization.plan = new_plan_id
    await db.commit()

    direction = "upgraded" if upgrading else "downgraded"
    logger.info(f"Organization {organization.id} {direction} from {current} to {new_plan_id}")
    return PlanChange(old_plan=current, new_plan=new_plan, direction=direction)


async def _check_downgrade_fits(db: AsyncSession, organization: Organization, plan: Plan) -> None:
    limits = plan.limits

    member_count = (
        await db.execute(select(func.count(User.id)).where(User.organization_id == organization.id))
    ).scalar() or 0
    if not is_unlimited(limits.max_team_members) and member_count > limits.max_team_members:
        raise ValidationError(
            f"Cannot downgrade: You have {member_count} team members but the {plan.name} plan "
            f"allows only {limits.max_team_members}. Please remove team members first.",
            field="new_plan",
        )

    record = await UsageLedger(db).get_or_create_monthly_record(organization.id)
    storage_gb = record.storage_used / BYTES_PER_GB
    if not is_unlimited(limits.storage_gb) and storage_gb > limits.storage_gb:
        raise ValidationError(
            f"Cannot downgrade: You're using {storage_gb:.2f}GB but the {plan.name} plan "
            f"allows only {limits.storage_gb}GB. Please delete some videos first.",
            field="new_plan",
        )


class StripeBilling:
    """Thin wrapper over the Stripe SDK. SDK calls run in the threadpool."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        stripe.api_key = self.api_key

    def _require_configured(self) -> None:
        if not self.api_key:
            raise ExternalServiceError("Billing is not configured", service="stripe")

    async def _call(self, fn, **kwargs):
        self._require_configured()
        try:
            return await run_in_threadpool(fn, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe request failed: {e}")
            raise ExternalServiceError("Payment provider request failed", service="stripe") from e

    async def create_customer(self, organization: Organization) -> str:
        customer = await self._call(
            stripe.Customer.create,
            email=organization.email,
            name=organization.name,
            metadata={"organization_id": str(organization.id)},
        )
        return customer["id"]

    async def ensure_customer(self, db: AsyncSession, organization: Organization) -> str:
        """Return the organization's Stripe customer id, creating it on first use."""
        if organization.stripe_customer_id:
            return organization.stripe_customer_id
        organization.stripe_customer_id = await self.create_customer(organization)
        await db.commit()
        return organization.stripe_customer_id

    async def get_or_create_price(self, plan: Plan) -> str:
        lookup_key = f"plan_{plan.id}"
        prices = await self._call(stripe.Price.list, lookup_keys=[lookup_key], limit=1)
        if prices["data"]:
            return prices["data"][0]["id"]

        product = await self._call(
            stripe.Product.create,
            name=f"Video Processing Platform {plan.name}",
            description="Video processing and transcoding service",
        )
        price = await self._call(
            stripe.Price.create,
            product=product["id"],
            unit_amount=plan.price * 100,
            currency="usd",
            recurring={"interval": "month"},
            lookup_key=lookup_key,
            metadata={"plan_id": plan.id, "plan_name": plan.name},
        )
        return price["id"]

    async def create_checkout_session(self, customer_id: str, plan: Plan, organization_id) -> str:
        price_id = await self.get_or_create_price(plan)
        session = await self._call(
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{settings.frontend_url}/pricing?success=true",
            cancel_url=f"{settings.frontend_url}/pricing?canceled=true",
            metadata={"organization_id": str(organization_id), "plan_id": plan.id},
        )
        return session["url"] or ""

    async def create_portal_session(self, customer_id: str) -> str:
        session = await self._call(
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=f"{settings.frontend_url}/pricing",
        )
        return session["url"]

    def construct_webhook_event(self, payload: bytes, signature: str):
        """
        Verify a webhook payload.

        Raises:
            ValidationError: Payload or signature is invalid
        """
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise ValidationError(f"Invalid webhook: {e}") from e


def get_billing() -> StripeBilling:
    """FastAPI dependency for the Stripe wrapper."""
    return StripeBilling()


async def _organization_by_customer(db: AsyncSession, customer_id: Optional[str]) -> Optional[Organization]:
    if not customer_id:
        return None
    result = await db.execute(
        select(Organization).where(Organization.stripe_customer_id == customer_id)
    )
    return result.scalars().first()


async def apply_webhook_event(db: AsyncSession, event: Dict[str, Any]) -> Tuple[Optional[Organization], Optional[str]]:
    """
    Apply a verified Stripe event to the matching organization.

    Returns:
        (organization, audit action) when the event changed an organization,
        otherwise (None, None)
    """
    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type == "checkout.session.completed":
        metadata = obj.get("metadata") or {}
        plan_id = metadata.get("plan_id")
        org_id = metadata.get("organization_id")
        if not org_id or plan_id not in PLANS:
            logger.warning(f"Checkout session {obj.get('id')} has no usable metadata")
            return None, None
        try:
            organization = await db.get(Organization, to_uuid(org_id))
        except ValueError:
            organization = None
        if organization is None:
            return None, None
        organization.plan = plan_id
        organization.stripe_subscription_id = obj.get("subscription")
        organization.status = "active"
        await db.commit()
        return organization, "billing.subscription.created"

    organization = await _organization_by_customer(db, obj.get("customer"))
    if organization is None:
        if event_type in HANDLED_EVENTS:
            logger.warning(f"No organization for Stripe customer {obj.get('customer')} ({event_type})")
        return None, None

    if event_type == "customer.subscription.updated":
        organization.status = "active" if obj.get("status") == "active" else "suspended"
        action = "billing.subscription.updated"
    elif event_type == "customer.subscription.deleted":
        organization.plan = "free"
        organization.status = "active"
        organization.stripe_subscription_id = None
        action = "billing.subscription.canceled"
    elif event_type == "invoice.payment_failed":
        organization.status = "suspended"
        action = "billing.payment.failed"
    else:
        logger.debug(f"Ignoring Stripe event {event_type}")
        return None, None

    await db.commit()
    return organization, action
