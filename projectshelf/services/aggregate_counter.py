"""
Aggregate Counter

Per-subject, per-day rollups of engagement events. Days are calendar days
in one configured reference timezone so bucket boundaries are the same on
every deployment.
"""

import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, delete, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from projectshelf.exceptions import StorageError, ValidationError
from projectshelf.models.daily_aggregate import DailyAggregate
from projectshelf.models.engagement_event import EngagementKind
from projectshelf.schemas.engagement import DailyAggregateRecord, aggregate_from_row
from projectshelf.services.event_store import live_subjects_only, parse_kind, require_id

logger = logging.getLogger(__name__)

UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def resolve_timezone(reference_timezone: str | ZoneInfo) -> ZoneInfo:
    if isinstance(reference_timezone, ZoneInfo):
        return reference_timezone
    try:
        return ZoneInfo(reference_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(
            f"Unknown timezone '{reference_timezone}'",
            field="analytics_timezone",
            details={"value": str(reference_timezone)},
        )


def bucket_day(timestamp: datetime, reference_timezone: str | ZoneInfo) -> date:
    """
    Map an instant to its calendar day in the reference timezone.

    Naive timestamps are taken to be UTC.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(resolve_timezone(reference_timezone)).date()


class AggregateCounter:
    """Daily rollup counters keyed by (subject_id, kind, day)"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], reference_timezone: str | ZoneInfo):
        self._session_factory = session_factory
        self.timezone = resolve_timezone(reference_timezone)

    def bucket_day(self, timestamp: datetime) -> date:
        return bucket_day(timestamp, self.timezone)

    async def increment(self, subject_id: int, kind: EngagementKind, day: date, owner_id: int) -> None:
        """
        Create the (subject_id, kind, day) row with count=1 or add one to it.

        Runs as one INSERT ... ON CONFLICT DO UPDATE statement, so concurrent
        increments of the same key never read the same prior count.

        Raises:
            StorageError: the upsert failed
        """
        kind = parse_kind(kind)
        subject_id = require_id(subject_id, "subject_id")
        owner_id = require_id(owner_id, "owner_id")

        async with self._session_factory() as db:
            try:
                statement = self._upsert_statement(db, subject_id, kind, day, owner_id)
                await db.execute(statement)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to increment {kind.value} aggregate for subject {subject_id} on {day}: {e}")
                raise StorageError("Failed to update daily aggregate", operation="increment") from e

    @staticmethod
    def _upsert_statement(db: AsyncSession, subject_id: int, kind: EngagementKind, day: date, owner_id: int):
        dialect_name = db.get_bind().dialect.name
        insert = UPSERT_DIALECTS.get(dialect_name)
        if insert is None:
            raise StorageError(f"Atomic increment is not supported on '{dialect_name}'", operation="increment")

        statement = insert(DailyAggregate).values(
            subject_id=subject_id,
            kind=kind,
            day=day,
            owner_id=owner_id,
            count=1,
        )
        return statement.on_conflict_do_update(
            index_elements=[DailyAggregate.subject_id, DailyAggregate.kind, DailyAggregate.day],
            set_={"count": DailyAggregate.count + 1},
        )

    async def get_totals(self, subject_id: int, kind: EngagementKind) -> int:
        """Sum of every daily count for the subject."""
        return await self._scalar(
            select(func.coalesce(func.sum(DailyAggregate.count), 0)).where(
                and_(DailyAggregate.subject_id == subject_id, DailyAggregate.kind == parse_kind(kind))
            ),
            operation="get_totals",
        )

    async def get_day_count(self, subject_id: int, kind: EngagementKind, day: date) -> int:
        return await self._scalar(
            select(DailyAggregate.count).where(
                and_(
                    DailyAggregate.subject_id == subject_id,
                    DailyAggregate.kind == parse_kind(kind),
                    DailyAggregate.day == day,
                )
            ),
            operation="get_day_count",
        )

    async def aggregates_for_subject(self, subject_id: int, kind: EngagementKind) -> list[DailyAggregateRecord]:
        """Every rollup row of one subject, oldest day first."""
        statement = (
            select(DailyAggregate)
            .where(and_(DailyAggregate.subject_id == subject_id, DailyAggregate.kind == parse_kind(kind)))
            .order_by(DailyAggregate.day)
        )
        async with self._session_factory() as db:
            try:
                result = await db.execute(statement)
            except SQLAlchemyError as e:
                logger.error(f"Aggregate scan failed for subject {subject_id}: {e}")
                raise StorageError("Failed to read daily aggregates", operation="aggregates_for_subject") from e
            return [aggregate_from_row(row) for row in result.scalars().all()]

    async def daily_counts_for_owner(
        self,
        owner_id: int,
        kind: EngagementKind,
        first_day: date,
        last_day: date,
        subject_id: int | None = None,
    ) -> dict[date, int]:
        """Per-day sums over the owner's subjects for first_day..last_day inclusive. Empty days are absent."""
        conditions = [
            DailyAggregate.owner_id == owner_id,
            DailyAggregate.kind == parse_kind(kind),
            DailyAggregate.day >= first_day,
            DailyAggregate.day <= last_day,
        ]
        if subject_id is not None:
            conditions.append(DailyAggregate.subject_id == subject_id)

        statement = live_subjects_only(
            select(DailyAggregate.day, func.sum(DailyAggregate.count)).where(and_(*conditions)),
            kind,
            DailyAggregate.subject_id,
        )
        statement = statement.group_by(DailyAggregate.day).order_by(DailyAggregate.day)
        async with self._session_factory() as db:
            try:
                result = await db.execute(statement)
            except SQLAlchemyError as e:
                logger.error(f"Daily counts query failed for owner {owner_id}: {e}")
                raise StorageError("Failed to read daily aggregates", operation="daily_counts_for_owner") from e
            return {day: int(total) for day, total in result.all()}

    async def first_day_for_owner(
        self, owner_id: int, kind: EngagementKind, subject_id: int | None = None
    ) -> date | None:
        conditions = [DailyAggregate.owner_id == owner_id, DailyAggregate.kind == parse_kind(kind)]
        if subject_id is not None:
            conditions.append(DailyAggregate.subject_id == subject_id)

        statement = live_subjects_only(
            select(func.min(DailyAggregate.day)).where(and_(*conditions)), kind, DailyAggregate.subject_id
        )
        async with self._session_factory() as db:
            try:
                result = await db.execute(statement)
            except SQLAlchemyError as e:
                logger.error(f"First day query failed for owner {owner_id}: {e}")
                raise StorageError("Failed to read daily aggregates", operation="first_day_for_owner") from e
            return result.scalar()

    async def delete_for_subject(self, subject_id: int, kind: EngagementKind) -> int:
        kind = parse_kind(kind)
        async with self._session_factory() as db:
            try:
                result = await db.execute(
                    delete(DailyAggregate).where(
                        and_(DailyAggregate.subject_id == subject_id, DailyAggregate.kind == kind)
                    )
                )
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to delete aggregates for subject {subject_id}: {e}")
                raise StorageError("Failed to delete daily aggregates", operation="delete_for_subject") from e
        return result.rowcount

    async def _scalar(self, statement, operation: str) -> int:
        async with self._session_factory() as db:
            try:
                result = await db.execute(statement)
            except SQLAlchemyError as e:
                logger.error(f"{operation} failed: {e}")
                raise StorageError("Failed to read daily aggregates", operation=operation) from e
            return int(result.scalar() or 0)
