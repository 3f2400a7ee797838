"""
Storage boundary value objects.

Rows read from the engagement tables are turned into these immutable
records by plain functions, so nothing outside the stores ever touches an
ORM instance.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone

from projectshelf.models.daily_aggregate import DailyAggregate
from projectshelf.models.engagement_event import EngagementEvent, EngagementKind


@dataclass(frozen=True)
class EngagementEventInput:
    kind: EngagementKind | str | None
    subject_id: int | None
    owner_id: int | None
    viewer_id: int | None = None
    # Only seeding tooling sets this; the HTTP schemas never expose it
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class EngagementEventRecord:
    id: int
    kind: EngagementKind
    subject_id: int
    owner_id: int
    viewer_id: int | None
    occurred_at: datetime


@dataclass(frozen=True)
class DailyAggregateRecord:
    subject_id: int
    kind: EngagementKind
    day: date
    owner_id: int
    count: int


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def event_from_row(row: EngagementEvent) -> EngagementEventRecord:
    return EngagementEventRecord(
        id=row.id,
        kind=EngagementKind(row.kind),
        subject_id=row.subject_id,
        owner_id=row.owner_id,
        viewer_id=row.viewer_id,
        occurred_at=as_utc(row.occurred_at),
    )


def aggregate_from_row(row: DailyAggregate) -> DailyAggregateRecord:
    return DailyAggregateRecord(
        subject_id=row.subject_id,
        kind=EngagementKind(row.kind),
        day=row.day,
        owner_id=row.owner_id,
        count=int(row.count),
    )
