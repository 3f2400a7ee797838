"""
Recording Service

The ingestion surface the public portfolio and project pages call. A
recording appends one engagement event and then bumps the daily rollup.
The event is the source of truth: once it is stored, a failing rollup is
logged and left for reconciliation, never rolled back.
"""

import logging

from projectshelf.exceptions import ProjectNotFoundError, StorageError, UserNotFoundError
from projectshelf.models.engagement_event import EngagementKind
from projectshelf.schemas.analytics import RecordResult
from projectshelf.schemas.engagement import EngagementEventInput
from projectshelf.services.aggregate_counter import AggregateCounter
from projectshelf.services.event_store import EventStore, require_id
from projectshelf.services.lookups import ProjectLookup, UserLookup
from projectshelf.utils.metrics import record_aggregate_failure, record_engagement

logger = logging.getLogger(__name__)

SELF_VIEW = "self_view"


class RecordingService:
    def __init__(
        self,
        event_store: EventStore,
        aggregate_counter: AggregateCounter,
        project_lookup: ProjectLookup,
        user_lookup: UserLookup,
    ):
        self._event_store = event_store
        self._counter = aggregate_counter
        self._project_lookup = project_lookup
        self._user_lookup = user_lookup

    async def record_project_view(self, project_id: int, viewer_id: int | None = None) -> RecordResult:
        """
        Record that someone looked at a project.

        Raises:
            ValidationError: malformed project or viewer id
            ProjectNotFoundError: no such project
            StorageError: the event could not be stored
        """
        project_id = require_id(project_id, "project_id")
        project = await self._project_lookup.find_project_owner(project_id)
        if not project.exists:
            raise ProjectNotFoundError(project_id)

        return await self._record(EngagementKind.PROJECT_VIEW, project_id, project.owner_id, viewer_id)

    async def record_portfolio_visit(self, user_id: int, viewer_id: int | None = None) -> RecordResult:
        """
        Record that someone opened a user's portfolio page.

        Raises:
            ValidationError: malformed user or viewer id
            UserNotFoundError: no such user
            StorageError: the event could not be stored
        """
        user_id = require_id(user_id, "user_id")
        user = await self._user_lookup.find_user(user_id)
        if not user.exists:
            raise UserNotFoundError(user_id)

        return await self._record(EngagementKind.PORTFOLIO_VISIT, user_id, user_id, viewer_id)

    async def purge_project(self, project_id: int) -> int:
        """
        Drop the view history of a deleted project.

        Called by the projects service after it removes a project row.

        Returns:
            Number of events removed
        """
        project_id = require_id(project_id, "project_id")
        deleted = await self._event_store.delete_for_subject(project_id, EngagementKind.PROJECT_VIEW)
        await self._counter.delete_for_subject(project_id, EngagementKind.PROJECT_VIEW)
        logger.info(f"Purged {deleted} view events of project {project_id}")
        return deleted

    async def _record(
        self, kind: EngagementKind, subject_id: int, owner_id: int, viewer_id: int | None
    ) -> RecordResult:
        if viewer_id is not None:
            viewer_id = require_id(viewer_id, "viewer_id")

        # Owners looking at their own work never show up in any statistic
        if viewer_id is not None and viewer_id == owner_id:
            logger.debug(f"Skipping self-view of {kind.value} subject {subject_id} by owner {owner_id}")
            record_engagement(kind.value, SELF_VIEW)
            return RecordResult(recorded=False, kind=kind, subject_id=subject_id, reason=SELF_VIEW)

        event = await self._event_store.append(
            EngagementEventInput(kind=kind, subject_id=subject_id, owner_id=owner_id, viewer_id=viewer_id)
        )
        record_engagement(kind.value, "recorded")

        aggregated = True
        day = self._counter.bucket_day(event.occurred_at)
        try:
            await self._counter.increment(subject_id, kind, day, owner_id)
        except StorageError as e:
            aggregated = False
            record_aggregate_failure(kind.value)
            logger.warning(
                f"Event {event.id} stored but daily aggregate for subject {subject_id} on {day} was not updated: "
                f"{e.message}"
            )

        return RecordResult(
            recorded=True,
            aggregated=aggregated,
            event_id=event.id,
            kind=kind,
            subject_id=subject_id,
        )
