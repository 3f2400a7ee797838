"""
Sample analytics data for new accounts (development and demo use).

Seeds a week of anonymous portfolio visits and project views through the
Event Store with explicit timestamps, bumping the matching daily rollups.
"""

import logging
import random
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from projectshelf.exceptions import ValidationError
from projectshelf.models.engagement_event import EngagementKind
from projectshelf.models.project import Project
from projectshelf.schemas.analytics import SampleDataResult
from projectshelf.schemas.engagement import EngagementEventInput
from projectshelf.services.aggregate_counter import AggregateCounter
from projectshelf.services.event_store import EventStore, require_id
from projectshelf.services.query_engine import QueryEngine, utc_now

logger = logging.getLogger(__name__)

SAMPLE_DAYS = 7
VISITS_PER_DAY = (2, 8)
VIEWS_PER_PROJECT_PER_DAY = (1, 5)


class SampleDataService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_store: EventStore,
        aggregate_counter: AggregateCounter,
        query_engine: QueryEngine,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._event_store = event_store
        self._counter = aggregate_counter
        self._query_engine = query_engine
        self._rng = rng or random.Random()
        self._clock = clock

    async def generate(self, owner_id: int) -> SampleDataResult:
        """
        Generate a week of demo analytics for an owner without any data.

        Raises:
            ValidationError: the owner already has analytics data
        """
        owner_id = require_id(owner_id, "owner_id")

        existing_visits = await self._event_store.count_for_owner(owner_id, EngagementKind.PORTFOLIO_VISIT)
        existing_views = await self._event_store.count_for_owner(owner_id, EngagementKind.PROJECT_VIEW)
        if existing_visits > 0 or existing_views > 0:
            raise ValidationError(
                "User already has analytics data. Sample data generation is only for new accounts.",
                details={"portfolio_visits": existing_visits, "project_views": existing_views},
            )

        logger.info(f"Generating sample analytics data for user {owner_id}")
        project_ids = await self._owner_project_ids(owner_id)

        visits = 0
        views = 0
        for timestamp in self._timestamps(*VISITS_PER_DAY):
            await self._seed(EngagementKind.PORTFOLIO_VISIT, owner_id, owner_id, timestamp)
            visits += 1

        for project_id in project_ids:
            for timestamp in self._timestamps(*VIEWS_PER_PROJECT_PER_DAY):
                await self._seed(EngagementKind.PROJECT_VIEW, project_id, owner_id, timestamp)
                views += 1

        logger.info(f"Seeded {visits} portfolio visits and {views} project views for user {owner_id}")
        return SampleDataResult(
            message="Sample analytics data generated successfully",
            portfolio_visits=visits,
            project_views=views,
        )

    async def _owner_project_ids(self, owner_id: int) -> list[int]:
        async with self._session_factory() as db:
            result = await db.execute(select(Project.id).where(Project.user_id == owner_id).order_by(Project.id))
            return list(result.scalars().all())

    def _timestamps(self, low: int, high: int) -> list[datetime]:
        """Random instants for each of the last SAMPLE_DAYS days, never later than now."""
        now = self._clock()
        today = self._counter.bucket_day(now)
        timestamps = []
        for offset in range(SAMPLE_DAYS - 1, -1, -1):
            day_start = self._query_engine.day_start(today - timedelta(days=offset))
            span = min(timedelta(days=1), now - day_start)
            span_seconds = max(1, int(span.total_seconds()))
            for _ in range(self._rng.randint(low, high)):
                timestamps.append(day_start + timedelta(seconds=self._rng.randrange(span_seconds)))
        return timestamps

    async def _seed(self, kind: EngagementKind, subject_id: int, owner_id: int, occurred_at: datetime) -> None:
        event = await self._event_store.append(
            EngagementEventInput(kind=kind, subject_id=subject_id, owner_id=owner_id, occurred_at=occurred_at)
        )
        await self._counter.increment(subject_id, kind, self._counter.bucket_day(event.occurred_at), owner_id)
