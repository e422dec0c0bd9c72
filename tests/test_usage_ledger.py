"""Tests for the monthly quota ledger."""
import logging
import uuid

import pytest
from sqlalchemy import func, select

from app.models.usage_record import UsageRecord
from app.services.usage import BYTES_PER_GB, UsageLedger
from app.utils.error_handling import NotFoundError


async def _set_counters(ledger: UsageLedger, org_id, **values) -> UsageRecord:
    record = await ledger.get_or_create_monthly_record(org_id)
    for key, value in values.items():
        setattr(record, key, value)
    await ledger.db.commit()
    return record


class TestMonthlyRecord:
    """Test cases for lazily created monthly rows."""

    async def test_created_once_per_month(self, db, organization):
        """Test repeated access reuses the same row."""
        ledger = UsageLedger(db)

        first = await ledger.get_or_create_monthly_record(organization.id)
        second = await ledger.get_or_create_monthly_record(str(organization.id))

        assert first.id == second.id
        assert first.videos_uploaded == 0
        assert first.storage_used == 0
        count = (await db.execute(select(func.count(UsageRecord.id)))).scalar()
        assert count == 1

    async def test_losing_insert_reads_winning_row(self, session_factory, organization):
        """Test a session that lost the first-access race returns the other session's row."""
        async with session_factory() as first, session_factory() as second:
            winner = await UsageLedger(first).get_or_create_monthly_record(organization.id)

            late = UsageLedger(second)
            lookup = late._select_record
            lookups = []

            async def lookup_before_winner_committed(org_id, month):
                lookups.append(month)
                # The first read happened before the other session's insert
                if len(lookups) == 1:
                    return None
                return await lookup(org_id, month)

            late._select_record = lookup_before_winner_committed
            record = await late.get_or_create_monthly_record(organization.id)

        assert record.id == winner.id
        assert len(lookups) == 2
        async with session_factory() as session:
            count = (await session.execute(select(func.count(UsageRecord.id)))).scalar()
        assert count == 1

    async def test_new_month_starts_at_zero(self, db, organization):
        """Test a month rollover gets a fresh row."""
        march = UsageLedger(db, month_provider=lambda: "2026-03")
        april = UsageLedger(db, month_provider=lambda: "2026-04")

        await march.record_upload(organization.id, 500)
        record = await april.get_or_create_monthly_record(organization.id)

        assert record.month == "2026-04"
        assert record.videos_uploaded == 0
        assert record.storage_used == 0


class TestUploadQuota:
    """Test cases for the monthly video count."""

    async def test_free_plan_blocks_eleventh_upload(self, db, organization):
        """Test ten uploads are allowed and the eleventh is refused."""
        ledger = UsageLedger(db)

        for _ in range(10):
            assert (await ledger.can_upload_video(organization.id)).allowed
            await ledger.record_upload(organization.id, 1000)

        decision = await ledger.can_upload_video(organization.id)
        assert not decision.allowed
        assert "limit reached" in decision.reason
        assert "10 videos" in decision.reason

    async def test_enterprise_is_unlimited(self, db, make_organization):
        """Test unlimited plans never hit the video limit."""
        organization = await make_organization(plan="enterprise")
        ledger = UsageLedger(db)
        await _set_counters(ledger, organization.id, videos_uploaded=100_000)

        assert (await ledger.can_upload_video(organization.id)).allowed

    async def test_unknown_organization_fails_closed(self, db):
        """Test a missing organization is denied."""
        decision = await UsageLedger(db).can_upload_video(uuid.uuid4())

        assert not decision
        assert decision.reason == "Organization not found"

    async def test_unknown_plan_fails_closed(self, db, make_organization):
        """Test an organization on an unknown plan is denied."""
        organization = await make_organization(plan="platinum")

        decision = await UsageLedger(db).can_upload_video(organization.id)

        assert not decision.allowed
        assert decision.reason == "Invalid plan"


class TestStorageQuota:
    """Test cases for the storage ceiling."""

    async def test_exact_fit_is_allowed(self, db, organization):
        """Test reaching the limit exactly is allowed, one byte more is not."""
        ledger = UsageLedger(db)
        await _set_counters(ledger, organization.id, storage_used=5 * BYTES_PER_GB - 100)

        assert (await ledger.has_storage_capacity(organization.id, 100)).allowed

        decision = await ledger.has_storage_capacity(organization.id, 101)
        assert not decision.allowed
        assert decision.reason == "Storage limit exceeded (5 GB)"


class TestReservation:
    """Test cases for the atomic check-and-increment."""

    async def test_last_slot_taken_once(self, db, organization):
        """Test only one reservation succeeds for the final slot."""
        ledger = UsageLedger(db)
        await _set_counters(ledger, organization.id, videos_uploaded=9)

        first = await ledger.try_record_upload(organization.id, 1000)
        second = await ledger.try_record_upload(organization.id, 1000)

        assert first.allowed
        assert not second.allowed
        assert "limit reached" in second.reason

        record = await ledger.get_or_create_monthly_record(organization.id)
        assert record.videos_uploaded == 10
        assert record.storage_used == 1000

    async def test_storage_overflow_changes_nothing(self, db, organization):
        """Test a reservation that would overflow storage leaves counters alone."""
        ledger = UsageLedger(db)
        await _set_counters(ledger, organization.id, storage_used=5 * BYTES_PER_GB - 10)

        decision = await ledger.try_record_upload(organization.id, 11)

        assert not decision.allowed
        assert decision.reason == "Storage limit exceeded (5 GB)"
        record = await ledger.get_or_create_monthly_record(organization.id)
        assert record.videos_uploaded == 0
        assert record.storage_used == 5 * BYTES_PER_GB - 10

    async def test_release_undoes_reservation(self, db, organization):
        ledger = UsageLedger(db)
        await ledger.try_record_upload(organization.id, 4096)

        await ledger.release_upload(organization.id, 4096)

        record = await ledger.get_or_create_monthly_record(organization.id)
        assert record.videos_uploaded == 0
        assert record.storage_used == 0


class TestCounters:
    """Test cases for counter mutations."""

    async def test_record_upload_counts_minutes(self, db, organization):
        ledger = UsageLedger(db)

        await ledger.record_upload(organization.id, 2048, duration_seconds=90)

        record = await ledger.get_or_create_monthly_record(organization.id)
        assert record.videos_uploaded == 1
        assert record.storage_used == 2048
        assert record.minutes_processed == pytest.approx(1.5)

    async def test_processing_minutes_accumulate(self, db, organization):
        ledger = UsageLedger(db)

        await ledger.record_processing_minutes(organization.id, 120)
        await ledger.record_processing_minutes(organization.id, 30)
        await ledger.record_processing_minutes(organization.id, 0)

        record = await ledger.get_or_create_monthly_record(organization.id)
        assert record.minutes_processed == pytest.approx(2.5)

    async def test_deletion_subtracts_bytes(self, db, organization):
        ledger = UsageLedger(db)
        await ledger.record_upload(organization.id, 5000)

        await ledger.record_deletion(organization.id, 3000)

        record = await ledger.get_or_create_monthly_record(organization.id)
        assert record.storage_used == 2000
        # Deleting a video does not give back an upload slot
        assert record.videos_uploaded == 1

    async def test_deletion_clamps_at_zero(self, db, organization, caplog):
        """Test over-deletion clamps to zero and logs a warning."""
        ledger = UsageLedger(db)
        await ledger.record_upload(organization.id, 100)

        with caplog.at_level(logging.WARNING, logger="app.services.usage"):
            await ledger.record_deletion(organization.id, 1000)

        record = await ledger.get_or_create_monthly_record(organization.id)
        assert record.storage_used == 0
        assert any("clamping" in r.message for r in caplog.records)

    async def test_api_call_limit(self, db, organization):
        """Test the free plan allows 1000 API calls per month."""
        ledger = UsageLedger(db)
        await _set_counters(ledger, organization.id, api_calls=999)

        assert (await ledger.can_make_api_call(organization.id)).allowed
        await ledger.record_api_call(organization.id)

        decision = await ledger.can_make_api_call(organization.id)
        assert not decision.allowed
        assert decision.reason == "Monthly API call limit reached (1000 calls)"


class TestUsageSnapshot:
    """Test cases for usage reporting."""

    async def test_percentages(self, db, organization):
        ledger = UsageLedger(db)
        await _set_counters(ledger, organization.id, videos_uploaded=5, api_calls=250)

        snapshot = await ledger.get_usage_snapshot(organization.id)

        assert snapshot.plan == "free"
        assert snapshot.videos_uploaded == 5
        assert snapshot.percentages["videos"] == 50.0
        assert snapshot.percentages["api_calls"] == 25.0
        assert snapshot.percentages["storage"] == 0.0

    async def test_unlimited_has_no_percentage(self, db, make_organization):
        organization = await make_organization(plan="enterprise")

        snapshot = await UsageLedger(db).get_usage_snapshot(organization.id)

        assert snapshot.percentages["videos"] is None
        assert snapshot.limits.videos_per_month == -1

    async def test_missing_organization(self, db):
        with pytest.raises(NotFoundError):
            await UsageLedger(db).get_usage_snapshot(uuid.uuid4())
