"""
Query Engine

Answers the dashboard questions ("views over the last week, per day, per
project") on top of the Event Store and the Aggregate Counter, so callers
never have to know which of the two holds what.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from projectshelf.exceptions import InvalidPeriodError
from projectshelf.models.engagement_event import EngagementKind
from projectshelf.schemas.analytics import BreakdownEntry, DailyCount, StatsPeriod, StatsResult
from projectshelf.schemas.engagement import as_utc
from projectshelf.services.aggregate_counter import AggregateCounter
from projectshelf.services.event_store import EventStore, parse_kind, require_id

logger = logging.getLogger(__name__)

# Window length in reference-timezone days, today included
PERIOD_DAYS = {
    StatsPeriod.WEEK: 7,
    StatsPeriod.MONTH: 30,
    StatsPeriod.YEAR: 365,
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_period(value: Any) -> StatsPeriod:
    try:
        return StatsPeriod(value)
    except ValueError:
        raise InvalidPeriodError(value, [period.value for period in StatsPeriod])


def days_between(first_day: date, last_day: date) -> list[date]:
    """Every calendar day from first_day to last_day inclusive."""
    return [first_day + timedelta(days=offset) for offset in range((last_day - first_day).days + 1)]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueryEngine:
    def __init__(
        self,
        event_store: EventStore,
        aggregate_counter: AggregateCounter,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._event_store = event_store
        self._counter = aggregate_counter
        self._clock = clock

    def day_start(self, day: date) -> datetime:
        """Midnight of ``day`` in the reference timezone, as a UTC instant."""
        return datetime.combine(day, time.min, tzinfo=self._counter.timezone).astimezone(timezone.utc)

    async def get_stats(
        self,
        owner_id: int,
        kind: EngagementKind,
        period: StatsPeriod | str,
        subject_id_filter: int | None = None,
    ) -> StatsResult:
        """
        Engagement statistics for everything an owner has.

        Args:
            owner_id: Owner of the viewed projects / portfolio
            kind: PROJECT_VIEW or PORTFOLIO_VISIT
            period: week, month, year or all
            subject_id_filter: Restrict to one project

        Returns:
            StatsResult with totals, a zero-filled daily series and, for
            unfiltered project views, a per-project breakdown

        Raises:
            ValidationError: unknown period or kind, malformed owner id
        """
        kind = parse_kind(kind)
        period = parse_period(period)
        owner_id = require_id(owner_id, "owner_id")
        if subject_id_filter is not None:
            subject_id_filter = require_id(subject_id_filter, "subject_id")

        now = as_utc(self._clock())
        today = self._counter.bucket_day(now)
        empty = StatsResult(kind=kind, period=period)

        if period == StatsPeriod.ALL:
            first_day = await self._counter.first_day_for_owner(owner_id, kind, subject_id_filter)
            if first_day is None:
                return empty
            start = EPOCH
            if self.day_start(first_day) > now:
                logger.warning(f"Aggregates for owner {owner_id} start after now ({first_day}); returning empty stats")
                return empty
        else:
            first_day = today - timedelta(days=PERIOD_DAYS[period] - 1)
            start = self.day_start(first_day)

        daily_counts = await self._counter.daily_counts_for_owner(
            owner_id, kind, first_day, today, subject_id=subject_id_filter
        )
        daily_series = [DailyCount(day=day, count=daily_counts.get(day, 0)) for day in days_between(first_day, today)]

        unique_viewers = await self._event_store.count_distinct_viewers_for_owner(
            owner_id, kind, start, now, subject_id=subject_id_filter
        )

        breakdown: list[BreakdownEntry] = []
        if kind == EngagementKind.PROJECT_VIEW and subject_id_filter is None:
            rows = await self._event_store.breakdown_for_owner(owner_id, kind, start, now)
            breakdown = [
                BreakdownEntry(subject_id=subject_id, title=title, count=count) for subject_id, title, count in rows
            ]

        return StatsResult(
            kind=kind,
            period=period,
            total_count=sum(entry.count for entry in daily_series),
            unique_viewer_count=unique_viewers,
            daily_series=daily_series,
            breakdown=breakdown,
        )
