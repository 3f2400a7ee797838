"""
Tests for sample analytics data generation
"""

import random
from datetime import date, datetime, timedelta, timezone

import pytest

from projectshelf.exceptions import ValidationError
from projectshelf.models.engagement_event import EngagementKind
from projectshelf.services.query_engine import EPOCH, QueryEngine
from projectshelf.services.sample_data import SampleDataService

from utils.mock_utils import create_test_project

# 08:00 IST, so today's samples must squeeze into the first 8 hours of the day
NOW = datetime(2026, 3, 10, 2, 30, tzinfo=timezone.utc)
TODAY = date(2026, 3, 10)


@pytest.fixture
def sample_data(services, database) -> SampleDataService:
    clock = lambda: NOW  # noqa: E731
    engine = QueryEngine(services.event_store, services.aggregate_counter, clock=clock)
    return SampleDataService(
        database.session_factory,
        services.event_store,
        services.aggregate_counter,
        engine,
        rng=random.Random(1234),
        clock=clock,
    )


class TestSampleDataService:
    @pytest.mark.asyncio
    async def test_counts_are_within_bounds(self, sample_data, owner, project, test_db):
        await create_test_project(test_db, owner_id=owner.id, title="Second Project")

        result = await sample_data.generate(owner.id)

        assert 7 * 2 <= result.portfolio_visits <= 7 * 8
        assert 2 * 7 * 1 <= result.project_views <= 2 * 7 * 5
        assert result.message == "Sample analytics data generated successfully"

    @pytest.mark.asyncio
    async def test_events_and_aggregates_agree(self, services, sample_data, owner, project):
        result = await sample_data.generate(owner.id)

        assert await services.event_store.count_for_owner(owner.id, EngagementKind.PROJECT_VIEW) == result.project_views
        assert await services.aggregate_counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == result.project_views
        assert (
            await services.aggregate_counter.get_totals(owner.id, EngagementKind.PORTFOLIO_VISIT)
            == result.portfolio_visits
        )

    @pytest.mark.asyncio
    async def test_samples_cover_last_seven_days_and_not_the_future(self, services, sample_data, owner, project):
        await sample_data.generate(owner.id)

        daily = await services.aggregate_counter.daily_counts_for_owner(
            owner.id, EngagementKind.PORTFOLIO_VISIT, TODAY - timedelta(days=30), TODAY + timedelta(days=30)
        )
        assert set(daily) == {TODAY - timedelta(days=offset) for offset in range(7)}
        assert all(2 <= count <= 8 for count in daily.values())

        events = await services.event_store.query_range(
            owner.id, EngagementKind.PORTFOLIO_VISIT, EPOCH, datetime(2100, 1, 1, tzinfo=timezone.utc)
        ).to_list()
        assert all(event.occurred_at <= NOW for event in events)
        assert all(event.viewer_id is None for event in events)

    @pytest.mark.asyncio
    async def test_owner_without_projects_gets_only_visits(self, sample_data, owner):
        result = await sample_data.generate(owner.id)

        assert result.project_views == 0
        assert result.portfolio_visits > 0

    @pytest.mark.asyncio
    async def test_refuses_when_data_exists(self, services, sample_data, owner, viewer):
        await services.recording.record_portfolio_visit(owner.id, viewer.id)

        with pytest.raises(ValidationError) as exc_info:
            await sample_data.generate(owner.id)

        assert exc_info.value.details["portfolio_visits"] == 1
        assert exc_info.value.details["project_views"] == 0
