"""
Tests for the Aggregate Counter

Day bucketing in the reference timezone and atomic create-or-increment.
"""

import asyncio
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from projectshelf.exceptions import StorageError, ValidationError
from projectshelf.models.engagement_event import EngagementKind
from projectshelf.schemas.engagement import DailyAggregateRecord
from projectshelf.services.aggregate_counter import AggregateCounter, bucket_day


class TestBucketDay:
    def test_utc_evening_is_next_day_in_kolkata(self):
        # 19:00 UTC is 00:30 IST the next day
        instant = datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)
        assert bucket_day(instant, "Asia/Kolkata") == date(2026, 3, 10)

    def test_utc_afternoon_is_same_day_in_kolkata(self):
        instant = datetime(2026, 3, 9, 18, 29, 59, tzinfo=timezone.utc)
        assert bucket_day(instant, "Asia/Kolkata") == date(2026, 3, 9)

    def test_naive_timestamp_is_treated_as_utc(self):
        naive = datetime(2026, 3, 9, 19, 0)
        aware = datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)
        assert bucket_day(naive, "Asia/Kolkata") == bucket_day(aware, "Asia/Kolkata")

    def test_same_instant_buckets_differently_per_zone(self):
        instant = datetime(2026, 3, 9, 2, 0, tzinfo=timezone.utc)
        assert bucket_day(instant, "UTC") == date(2026, 3, 9)
        assert bucket_day(instant, "America/New_York") == date(2026, 3, 8)

    def test_accepts_zoneinfo_instance(self):
        instant = datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)
        assert bucket_day(instant, ZoneInfo("Asia/Kolkata")) == date(2026, 3, 10)

    def test_unknown_timezone_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            bucket_day(datetime(2026, 3, 9, tzinfo=timezone.utc), "Mars/Olympus_Mons")
        assert exc_info.value.details["field"] == "analytics_timezone"


class TestAggregateCounter:
    @pytest.mark.asyncio
    async def test_first_increment_creates_row_with_count_one(self, services, owner, project):
        counter = services.aggregate_counter
        day = date(2026, 3, 9)

        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, day, owner.id)

        assert await counter.get_day_count(project.id, EngagementKind.PROJECT_VIEW, day) == 1
        assert await counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == 1

    @pytest.mark.asyncio
    async def test_subsequent_increments_add_one(self, services, owner, project):
        counter = services.aggregate_counter
        day = date(2026, 3, 9)

        for _ in range(3):
            await counter.increment(project.id, EngagementKind.PROJECT_VIEW, day, owner.id)

        assert await counter.get_day_count(project.id, EngagementKind.PROJECT_VIEW, day) == 3

    @pytest.mark.asyncio
    async def test_totals_match_sum_of_days(self, services, owner, project):
        counter = services.aggregate_counter
        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 8), owner.id)
        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), owner.id)
        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), owner.id)

        daily = await counter.daily_counts_for_owner(
            owner.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 1), date(2026, 3, 31)
        )

        assert daily == {date(2026, 3, 8): 1, date(2026, 3, 9): 2}
        assert await counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == sum(daily.values())

    @pytest.mark.asyncio
    async def test_kinds_are_counted_separately(self, services, owner):
        counter = services.aggregate_counter
        day = date(2026, 3, 9)

        await counter.increment(owner.id, EngagementKind.PORTFOLIO_VISIT, day, owner.id)

        assert await counter.get_totals(owner.id, EngagementKind.PORTFOLIO_VISIT) == 1
        assert await counter.get_totals(owner.id, EngagementKind.PROJECT_VIEW) == 0

    @pytest.mark.asyncio
    async def test_totals_for_unknown_subject_are_zero(self, services):
        assert await services.aggregate_counter.get_totals(999, EngagementKind.PROJECT_VIEW) == 0

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, database, owner, project):
        # Separate counter instances share nothing but the database
        counters = [AggregateCounter(database.session_factory, "Asia/Kolkata") for _ in range(25)]
        day = date(2026, 3, 9)

        await asyncio.gather(
            *(counter.increment(project.id, EngagementKind.PROJECT_VIEW, day, owner.id) for counter in counters)
        )

        assert await counters[0].get_day_count(project.id, EngagementKind.PROJECT_VIEW, day) == 25

    @pytest.mark.asyncio
    async def test_first_day_for_owner(self, services, owner, project):
        counter = services.aggregate_counter
        assert await counter.first_day_for_owner(owner.id, EngagementKind.PROJECT_VIEW) is None

        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), owner.id)
        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 2, 1), owner.id)

        assert await counter.first_day_for_owner(owner.id, EngagementKind.PROJECT_VIEW) == date(2026, 2, 1)

    @pytest.mark.asyncio
    async def test_invalid_identifiers_are_rejected(self, services, owner):
        with pytest.raises(ValidationError):
            await services.aggregate_counter.increment(None, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), owner.id)

    @pytest.mark.asyncio
    async def test_storage_failure_raises_storage_error(self, services, project):
        # owner 424242 does not exist, so the foreign key rejects the row
        with pytest.raises(StorageError) as exc_info:
            await services.aggregate_counter.increment(
                project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), 424242
            )
        assert exc_info.value.details["operation"] == "increment"

    @pytest.mark.asyncio
    async def test_aggregates_for_subject_are_records(self, services, owner, project):
        counter = services.aggregate_counter
        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), owner.id)
        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 8), owner.id)
        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), owner.id)

        rows = await counter.aggregates_for_subject(project.id, EngagementKind.PROJECT_VIEW)

        assert rows == [
            DailyAggregateRecord(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 8), owner.id, 1),
            DailyAggregateRecord(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), owner.id, 2),
        ]

    @pytest.mark.asyncio
    async def test_delete_for_subject(self, services, owner, project):
        counter = services.aggregate_counter
        await counter.increment(project.id, EngagementKind.PROJECT_VIEW, date(2026, 3, 9), owner.id)

        assert await counter.delete_for_subject(project.id, EngagementKind.PROJECT_VIEW) == 1
        assert await counter.aggregates_for_subject(project.id, EngagementKind.PROJECT_VIEW) == []
