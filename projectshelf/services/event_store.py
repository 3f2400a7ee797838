"""
Event Store

Append-only persistence of engagement events (project views and portfolio
visits) plus the range scans and distinct-viewer counts the dashboards need.
"""

import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from projectshelf.exceptions import ProjectNotFoundError, StorageError, UserNotFoundError, ValidationError
from projectshelf.models.engagement_event import EngagementEvent, EngagementKind
from projectshelf.models.project import Project
from projectshelf.schemas.engagement import EngagementEventInput, EngagementEventRecord, as_utc, event_from_row
from projectshelf.services.lookups import ProjectLookup, UserLookup

logger = logging.getLogger(__name__)


def parse_kind(value: Any) -> EngagementKind:
    if value is None:
        raise ValidationError("Engagement kind is required", field="kind")
    try:
        return EngagementKind(value)
    except ValueError:
        raise ValidationError(f"Unknown engagement kind '{value}'", field="kind", details={"value": str(value)})


def require_id(value: Any, field: str) -> int:
    """Identifiers must be present positive integers."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer", field=field, details={"value": str(value)})
    return value


def live_subjects_only(statement, kind: EngagementKind, subject_column=EngagementEvent.subject_id):
    """
    Restrict an engagement query to subjects that still exist.

    Project views whose project row is gone no longer count, even before
    their events have been purged.
    """
    if parse_kind(kind) == EngagementKind.PROJECT_VIEW:
        return statement.join_from(subject_column.class_, Project, Project.id == subject_column)
    return statement


class EventRange:
    """
    Lazy view over the events of one subject in [start, end).

    Nothing is read until iteration starts, and every ``async for`` runs the
    query again, so the same range can be walked more than once.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], statement, batch_size: int = 500):
        self._session_factory = session_factory
        self._statement = statement
        self.batch_size = batch_size

    def __aiter__(self) -> AsyncIterator[EngagementEventRecord]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[EngagementEventRecord]:
        async with self._session_factory() as db:
            try:
                rows = await db.stream_scalars(self._statement.execution_options(yield_per=self.batch_size))
            except SQLAlchemyError as e:
                logger.error(f"Event range scan failed: {e}")
                raise StorageError("Failed to read engagement events", operation="query_range") from e
            async for row in rows:
                yield event_from_row(row)

    async def to_list(self) -> list[EngagementEventRecord]:
        return [event async for event in self]


class EventStore:
    """Append-only store for engagement events"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        project_lookup: ProjectLookup,
        user_lookup: UserLookup,
    ):
        self._session_factory = session_factory
        self._project_lookup = project_lookup
        self._user_lookup = user_lookup

    async def append(self, event: EngagementEventInput) -> EngagementEventRecord:
        """
        Validate and persist one engagement event.

        Args:
            event: The event to store. ``occurred_at`` defaults to now.

        Returns:
            The stored event as an immutable record

        Raises:
            ValidationError: kind, subject_id or owner_id missing or malformed
            NotFoundError: the subject does not exist
            StorageError: the insert failed; nothing was written
        """
        kind = parse_kind(event.kind)
        subject_id = require_id(event.subject_id, "subject_id")
        owner_id = require_id(event.owner_id, "owner_id")
        viewer_id = None if event.viewer_id is None else require_id(event.viewer_id, "viewer_id")

        await self._ensure_subject_exists(kind, subject_id)

        occurred_at = as_utc(event.occurred_at) if event.occurred_at else datetime.now(timezone.utc)
        row = EngagementEvent(
            kind=kind,
            subject_id=subject_id,
            owner_id=owner_id,
            viewer_id=viewer_id,
            occurred_at=occurred_at,
        )

        async with self._session_factory() as db:
            db.add(row)
            try:
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to append {kind.value} event for subject {subject_id}: {e}")
                raise StorageError("Failed to store engagement event", operation="append") from e

            record = event_from_row(row)

        logger.debug(f"Appended {kind.value} event {record.id} for subject {subject_id}")
        return record

    async def _ensure_subject_exists(self, kind: EngagementKind, subject_id: int) -> None:
        if kind == EngagementKind.PROJECT_VIEW:
            project = await self._project_lookup.find_project_owner(subject_id)
            if not project.exists:
                raise ProjectNotFoundError(subject_id)
        else:
            user = await self._user_lookup.find_user(subject_id)
            if not user.exists:
                raise UserNotFoundError(subject_id)

    def query_range(self, subject_id: int, kind: EngagementKind, start: datetime, end: datetime) -> EventRange:
        """Events for one subject in [start, end), oldest first."""
        statement = (
            select(EngagementEvent)
            .where(
                and_(
                    EngagementEvent.subject_id == subject_id,
                    EngagementEvent.kind == parse_kind(kind),
                    EngagementEvent.occurred_at >= as_utc(start),
                    EngagementEvent.occurred_at < as_utc(end),
                )
            )
            .order_by(EngagementEvent.occurred_at.asc(), EngagementEvent.id.asc())
        )
        return EventRange(self._session_factory, statement)

    async def count_distinct_viewers(
        self, subject_id: int, kind: EngagementKind, start: datetime, end: datetime
    ) -> int:
        """Distinct non-null viewers of one subject in [start, end). Anonymous views do not count."""
        return await self._scalar(
            select(func.count(func.distinct(EngagementEvent.viewer_id))).where(
                and_(
                    EngagementEvent.subject_id == subject_id,
                    EngagementEvent.kind == parse_kind(kind),
                    EngagementEvent.occurred_at >= as_utc(start),
                    EngagementEvent.occurred_at < as_utc(end),
                )
            ),
            operation="count_distinct_viewers",
        )

    async def count_distinct_viewers_for_owner(
        self,
        owner_id: int,
        kind: EngagementKind,
        start: datetime,
        end: datetime,
        subject_id: int | None = None,
    ) -> int:
        conditions = self._owner_conditions(owner_id, kind, start, end, subject_id)
        statement = select(func.count(func.distinct(EngagementEvent.viewer_id))).where(and_(*conditions))
        return await self._scalar(
            live_subjects_only(statement, kind),
            operation="count_distinct_viewers_for_owner",
        )

    async def count_for_owner(
        self,
        owner_id: int,
        kind: EngagementKind,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        conditions = [EngagementEvent.owner_id == owner_id, EngagementEvent.kind == parse_kind(kind)]
        if start is not None:
            conditions.append(EngagementEvent.occurred_at >= as_utc(start))
        if end is not None:
            conditions.append(EngagementEvent.occurred_at < as_utc(end))
        return await self._scalar(
            live_subjects_only(select(func.count(EngagementEvent.id)).where(and_(*conditions)), kind),
            operation="count_for_owner",
        )

    async def breakdown_for_owner(
        self, owner_id: int, kind: EngagementKind, start: datetime, end: datetime
    ) -> list[tuple[int, str, int]]:
        """(project id, project title, count) rows, most viewed first, ties by project id."""
        view_count = func.count(EngagementEvent.id).label("count")
        statement = (
            select(EngagementEvent.subject_id, Project.title, view_count)
            .select_from(EngagementEvent)
            .join(Project, Project.id == EngagementEvent.subject_id)
            .where(and_(*self._owner_conditions(owner_id, kind, start, end)))
            .group_by(EngagementEvent.subject_id, Project.title)
            .order_by(view_count.desc(), EngagementEvent.subject_id.asc())
        )
        async with self._session_factory() as db:
            try:
                result = await db.execute(statement)
            except SQLAlchemyError as e:
                logger.error(f"Breakdown query failed for owner {owner_id}: {e}")
                raise StorageError("Failed to read engagement events", operation="breakdown_for_owner") from e
            return [(subject_id, title, count) for subject_id, title, count in result.all()]

    async def delete_for_subject(self, subject_id: int, kind: EngagementKind) -> int:
        """
        Remove every event of a deleted subject.

        ``subject_id`` is polymorphic and carries no foreign key. ORM deletes of
        a project purge in the same transaction; rows deleted with raw SQL are
        hidden from owner stats and cleaned up through here.
        """
        kind = parse_kind(kind)
        async with self._session_factory() as db:
            try:
                result = await db.execute(
                    delete(EngagementEvent).where(
                        and_(EngagementEvent.subject_id == subject_id, EngagementEvent.kind == kind)
                    )
                )
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to delete events for subject {subject_id}: {e}")
                raise StorageError("Failed to delete engagement events", operation="delete_for_subject") from e
        logger.info(f"Deleted {result.rowcount} {kind.value} events for subject {subject_id}")
        return result.rowcount

    @staticmethod
    def _owner_conditions(
        owner_id: int,
        kind: EngagementKind,
        start: datetime,
        end: datetime,
        subject_id: int | None = None,
    ) -> list:
        conditions = [
            EngagementEvent.owner_id == owner_id,
            EngagementEvent.kind == parse_kind(kind),
            EngagementEvent.occurred_at >= as_utc(start),
            EngagementEvent.occurred_at < as_utc(end),
        ]
        if subject_id is not None:
            conditions.append(EngagementEvent.subject_id == subject_id)
        return conditions

    async def _scalar(self, statement, operation: str) -> int:
        async with self._session_factory() as db:
            try:
                result = await db.execute(statement)
            except SQLAlchemyError as e:
                logger.error(f"{operation} failed: {e}")
                raise StorageError("Failed to read engagement events", operation=operation) from e
            return result.scalar() or 0
