"""Subscription plan catalog.

Plans are defined in code and never persisted. Every numeric limit uses -1
to mean "unlimited".
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

UNLIMITED = -1

PLAN_ORDER = ["free", "starter", "pro", "enterprise"]


@dataclass(frozen=True)
class PlanLimits:
    """Resource limits for a plan."""

    videos_per_month: int
    minutes_per_month: int
    storage_gb: int
    api_calls_per_month: int
    max_team_members: int
    max_resolutions: List[str] = field(default_factory=list)
    support_level: str = "community"


@dataclass(frozen=True)
class Plan:
    """A subscription tier."""

    id: str
    name: str
    price: int  # Monthly price in USD
    limits: PlanLimits
    features: List[str] = field(default_factory=list)


PLANS: Dict[str, Plan] = {
    "free": Plan(
        id="free",
        name="Free",
        price=0,
        limits=PlanLimits(
            videos_per_month=10,
            minutes_per_month=30,
            storage_gb=5,
            api_calls_per_month=1000,
            max_team_members=1,
            max_resolutions=["480p", "720p"],
            support_level="community",
        ),
        features=[
            "10 videos per month",
            "30 minutes of processing",
            "5GB storage",
            "1,000 API calls/month",
            "Solo user only",
            "Up to 720p resolution",
            "Community support",
        ],
    ),
    "starter": Plan(
        id="starter",
        name="Starter",
        price=29,
        limits=PlanLimits(
            videos_per_month=50,
            minutes_per_month=150,
            storage_gb=25,
            api_calls_per_month=10000,
            max_team_members=3,
            max_resolutions=["480p", "720p", "1080p"],
            support_level="email",
        ),
        features=[
            "50 videos per month",
            "150 minutes of processing",
            "25GB storage",
            "10,000 API calls/month",
            "Up to 3 team members",
            "Up to 1080p resolution",
            "Email support",
            "Priority processing",
        ],
    ),
    "pro": Plan(
        id="pro",
        name="Pro",
        price=99,
        limits=PlanLimits(
            videos_per_month=200,
            minutes_per_month=600,
            storage_gb=100,
            api_calls_per_month=50000,
            max_team_members=10,
            max_resolutions=["480p", "720p", "1080p", "4K"],
            support_level="priority",
        ),
        features=[
            "200 videos per month",
            "600 minutes of processing",
            "100GB storage",
            "50,000 API calls/month",
            "Up to 10 team members",
            "Up to 4K resolution",
            "Priority support",
            "Advanced analytics",
            "Custom branding",
        ],
    ),
    "enterprise": Plan(
        id="enterprise",
        name="Enterprise",
        price=299,
        limits=PlanLimits(
            videos_per_month=UNLIMITED,
            minutes_per_month=UNLIMITED,
            storage_gb=500,
            api_calls_per_month=UNLIMITED,
            max_team_members=UNLIMITED,
            max_resolutions=["480p", "720p", "1080p", "4K", "8K"],
            support_level="dedicated",
        ),
        features=[
            "Unlimited videos",
            "Unlimited processing",
            "500GB+ storage",
            "Unlimited API calls",
            "Unlimited team members",
            "Up to 8K resolution",
            "Dedicated support",
            "Custom integrations",
            "SLA guarantee",
            "Advanced security",
        ],
    ),
}


def get_plan(plan_id: Optional[str]) -> Optional[Plan]:
    """Look up a plan by id. Unknown ids return None."""
    if not plan_id:
        return None
    return PLANS.get(plan_id)


def _tier(plan_id: str) -> int:
    try:
        return PLAN_ORDER.index(plan_id)
    except ValueError:
        return -1


def can_upgrade(current_plan: str, new_plan: str) -> bool:
    """True when new_plan is a higher tier than current_plan."""
    if new_plan not in PLANS:
        return False
    return _tier(new_plan) > _tier(current_plan)


def can_downgrade(current_plan: str, new_plan: str) -> bool:
    """True when new_plan is a lower tier than current_plan."""
    if new_plan not in PLANS or current_plan not in PLANS:
        return False
    return _tier(new_plan) < _tier(current_plan)


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def check_limit(usage: float, limit: int) -> bool:
    """Return True when another unit of usage fits under the limit."""
    if is_unlimited(limit):
        return True
    return usage < limit
