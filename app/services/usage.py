"""Per-organization monthly quota ledger.

Counters live in ``usage_records`` (one row per organization and UTC month).
Every mutation is a single SQL ``UPDATE`` with column arithmetic so concurrent
requests never lose increments.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Union

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.plans import Plan, PlanLimits, get_plan, is_unlimited
from app.models.organization import Organization
from app.models.usage_record import UsageRecord
from app.utils.error_handling import NotFoundError
from app.utils.helpers import get_current_month, to_uuid

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3

OrgId = Union[str, uuid.UUID]


@dataclass
class QuotaDecision:
    """Outcome of a quota check. ``reason`` is set whenever ``allowed`` is False."""

    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


@dataclass
class UsageSnapshot:
    """Current month counters alongside the plan that bounds them."""

    organization_id: str
    month: str
    plan: str
    videos_uploaded: int = 0
    minutes_processed: float = 0.0
    storage_used: int = 0
    api_calls: int = 0
    limits: Optional[PlanLimits] = None
    percentages: dict = field(default_factory=dict)


def _percentage(used: float, limit: int) -> Optional[float]:
    if is_unlimited(limit) or limit <= 0:
        return None
    return round(min(used / limit * 100, 100.0), 1)


class UsageLedger:
    """Quota checks and counter mutations for one database session."""

    def __init__(self, db: AsyncSession, month_provider: Callable[[], str] = get_current_month):
        self.db = db
        self._month_provider = month_provider

    @property
    def month(self) -> str:
        return self._month_provider()

    async def _select_record(self, org_id: uuid.UUID, month: str) -> Optional[UsageRecord]:
        result = await self.db.execute(
            select(UsageRecord)
            .where(UsageRecord.organization_id == org_id)
            .where(UsageRecord.month == month)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create_monthly_record(self, org_id: OrgId) -> UsageRecord:
        """
        Fetch the counters row for the current month, creating it on first use.

        Two requests racing on the first access of a month both try to insert;
        the unique (organization_id, month) constraint rejects the loser, which
        then reads the winner's row.
        """
        org_id = to_uuid(org_id)
        month = self.month

        record = await self._select_record(org_id, month)
        if record:
            return record

        record = UsageRecord(
            organization_id=org_id,
            month=month,
            videos_uploaded=0,
            minutes_processed=0.0,
            storage_used=0,
            api_calls=0,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            record = await self._select_record(org_id, month)
            if record is None:
                raise
            return record

        await self.db.refresh(record)
        return record

    async def _resolve_plan(self, org_id: uuid.UUID) -> Union[Plan, QuotaDecision]:
        organization = await self.db.get(Organization, org_id)
        if organization is None:
            return QuotaDecision(False, "Organization not found")
        plan = get_plan(organization.plan)
        if plan is None:
            return QuotaDecision(False, "Invalid plan")
        return plan

    # Quota checks

    async def can_upload_video(self, org_id: OrgId) -> QuotaDecision:
        org_id = to_uuid(org_id)
        plan = await self._resolve_plan(org_id)
        if isinstance(plan, QuotaDecision):
            return plan

        limit = plan.limits.videos_per_month
        if is_unlimited(limit):
            return QuotaDecision(True)

        record = await self.get_or_create_monthly_record(org_id)
        if record.videos_uploaded >= limit:
            return QuotaDecision(False, f"Monthly video upload limit reached ({limit} videos)")
        return QuotaDecision(True)

    async def has_storage_capacity(self, org_id: OrgId, additional_bytes: int) -> QuotaDecision:
        org_id = to_uuid(org_id)
        plan = await self._resolve_plan(org_id)
        if isinstance(plan, QuotaDecision):
            return plan

        limit_gb = plan.limits.storage_gb
        if is_unlimited(limit_gb):
            return QuotaDecision(True)

        record = await self.get_or_create_monthly_record(org_id)
        if record.storage_used + additional_bytes > limit_gb * BYTES_PER_GB:
            return QuotaDecision(False, f"Storage limit exceeded ({limit_gb} GB)")
        return QuotaDecision(True)

    async def can_make_api_call(self, org_id: OrgId) -> QuotaDecision:
        org_id = to_uuid(org_id)
        plan = await self._resolve_plan(org_id)
        if isinstance(plan, QuotaDecision):
            return plan

        limit = plan.limits.api_calls_per_month
        if is_unlimited(limit):
            return QuotaDecision(True)

        record = await self.get_or_create_monthly_record(org_id)
        if record.api_calls >= limit:
            return QuotaDecision(False, f"Monthly API call limit reached ({limit} calls)")
        return QuotaDecision(True)

    # Mutations

    async def _increment(self, org_id: uuid.UUID, **values) -> None:
        record = await self.get_or_create_monthly_record(org_id)
        await self.db.execute(
            update(UsageRecord)
            .where(UsageRecord.id == record.id)
            .values(updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def record_upload(
        self,
        org_id: OrgId,
        byte_size: int,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Count one upload and its bytes (and minutes when already known)."""
        values = {
            "videos_uploaded": UsageRecord.videos_uploaded + 1,
            "storage_used": UsageRecord.storage_used + byte_size,
        }
        if duration_seconds:
            values["minutes_processed"] = UsageRecord.minutes_processed + duration_seconds / 60
        await self._increment(to_uuid(org_id), **values)

    async def try_record_upload(self, org_id: OrgId, byte_size: int) -> QuotaDecision:
        """
        Reserve one upload slot and its bytes in a single conditional UPDATE.

        The row only changes when both the video count and the storage total
        stay within the plan, so two uploads racing for the last slot cannot
        both succeed.
        """
        org_id = to_uuid(org_id)
        plan = await self._resolve_plan(org_id)
        if isinstance(plan, QuotaDecision):
            return plan

        record = await self.get_or_create_monthly_record(org_id)
        video_limit = plan.limits.videos_per_month
        storage_gb = plan.limits.storage_gb
        max_bytes = storage_gb * BYTES_PER_GB

        stmt = update(UsageRecord).where(UsageRecord.id == record.id)
        if not is_unlimited(video_limit):
            stmt = stmt.where(UsageRecord.videos_uploaded < video_limit)
        if not is_unlimited(storage_gb):
            stmt = stmt.where(UsageRecord.storage_used + byte_size <= max_bytes)
        stmt = stmt.values(
            videos_uploaded=UsageRecord.videos_uploaded + 1,
            storage_used=UsageRecord.storage_used + byte_size,
            updated_at=datetime.utcnow(),
        ).execution_options(synchronize_session=False)

        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 1:
            return QuotaDecision(True)

        record = await self._select_record(org_id, record.month)
        if not is_unlimited(video_limit) and record.videos_uploaded >= video_limit:
            return QuotaDecision(False, f"Monthly video upload limit reached ({video_limit} videos)")
        return QuotaDecision(False, f"Storage limit exceeded ({storage_gb} GB)")

    async def release_upload(self, org_id: OrgId, byte_size: int) -> None:
        """Undo a reservation made by try_record_upload."""
        await self._increment(
            to_uuid(org_id),
            videos_uploaded=case(
                (UsageRecord.videos_uploaded > 0, UsageRecord.videos_uploaded - 1),
                else_=0,
            ),
            storage_used=case(
                (UsageRecord.storage_used >= byte_size, UsageRecord.storage_used - byte_size),
                else_=0,
            ),
        )

    async def record_processing_minutes(self, org_id: OrgId, duration_seconds: float) -> None:
        if not duration_seconds or duration_seconds <= 0:
            return
        await self._increment(
            to_uuid(org_id),
            minutes_processed=UsageRecord.minutes_processed + duration_seconds / 60,
        )

    async def record_storage(self, org_id: OrgId, byte_size: int) -> None:
        """Add bytes produced after upload (transcoded variants)."""
        if byte_size <= 0:
            return
        await self._increment(to_uuid(org_id), storage_used=UsageRecord.storage_used + byte_size)

    async def record_deletion(self, org_id: OrgId, byte_size: int) -> None:
        """Release storage. The counter never goes below zero."""
        org_id = to_uuid(org_id)
        record = await self.get_or_create_monthly_record(org_id)
        if byte_size > record.storage_used:
            logger.warning(
                "Storage decrement exceeds recorded usage, clamping to zero",
                extra={
                    "organization_id": str(org_id),
                    "month": record.month,
                    "storage_used": record.storage_used,
                    "decrement": byte_size,
                },
            )
        await self._increment(
            org_id,
            storage_used=case(
                (UsageRecord.storage_used >= byte_size, UsageRecord.storage_used - byte_size),
                else_=0,
            ),
        )

    async def record_api_call(self, org_id: OrgId) -> None:
        await self._increment(to_uuid(org_id), api_calls=UsageRecord.api_calls + 1)

    # Reporting

    async def get_usage_snapshot(self, org_id: OrgId) -> UsageSnapshot:
        org_id = to_uuid(org_id)
        organization = await self.db.get(Organization, org_id)
        if organization is None:
            raise NotFoundError("Organization not found", resource="organization")

        record = await self.get_or_create_monthly_record(org_id)
        plan = get_plan(organization.plan)
        limits = plan.limits if plan else None

        percentages = {}
        if limits:
            percentages = {
                "videos": _percentage(record.videos_uploaded, limits.videos_per_month),
                "minutes": _percentage(record.minutes_processed, limits.minutes_per_month),
                "storage": _percentage(record.storage_used / BYTES_PER_GB, limits.storage_gb),
                "api_calls": _percentage(record.api_calls, limits.api_calls_per_month),
            }

        return UsageSnapshot(
            organization_id=str(org_id),
            month=record.month,
            plan=organization.plan,
            videos_uploaded=record.videos_uploaded,
            minutes_processed=record.minutes_processed,
            storage_used=record.storage_used,
            api_calls=record.api_calls,
            limits=limits,
            percentages=percentages,
        )
