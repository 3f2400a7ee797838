"""
Tests for the Recording Service

Self-view suppression, missing subjects, concurrency and the
event-first failure semantics.
"""

import asyncio
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from projectshelf.exceptions import ProjectNotFoundError, StorageError, UserNotFoundError, ValidationError
from projectshelf.models.engagement_event import EngagementKind
from projectshelf.models.user import User
from projectshelf.services.query_engine import EPOCH, utc_now

from utils.mock_utils import create_test_user


def failure_count(kind: EngagementKind) -> float:
    return (
        REGISTRY.get_sample_value("projectshelf_aggregate_increment_failures_total", {"kind": kind.value}) or 0.0
    )


class TestRecordProjectView:
    @pytest.mark.asyncio
    async def test_records_event_and_aggregate(self, services, owner, project, viewer):
        result = await services.recording.record_project_view(project.id, viewer.id)

        assert result.recorded is True
        assert result.aggregated is True
        assert result.event_id is not None
        assert result.kind == EngagementKind.PROJECT_VIEW
        assert result.subject_id == project.id
        assert await services.aggregate_counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == 1
        assert await services.event_store.count_for_owner(owner.id, EngagementKind.PROJECT_VIEW) == 1

    @pytest.mark.asyncio
    async def test_event_is_attributed_to_project_owner(self, services, owner, project):
        result = await services.recording.record_project_view(project.id)

        events = await services.event_store.query_range(
            project.id, EngagementKind.PROJECT_VIEW, EPOCH, utc_now() + timedelta(minutes=1)
        ).to_list()

        assert [event.id for event in events] == [result.event_id]
        assert events[0].owner_id == owner.id
        assert events[0].viewer_id is None

    @pytest.mark.asyncio
    async def test_self_view_is_not_recorded(self, services, owner, project):
        result = await services.recording.record_project_view(project.id, owner.id)

        assert result.recorded is False
        assert result.aggregated is False
        assert result.event_id is None
        assert result.reason == "self_view"
        assert await services.event_store.count_for_owner(owner.id, EngagementKind.PROJECT_VIEW) == 0
        assert await services.aggregate_counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == 0

        stats = await services.query_engine.get_stats(owner.id, EngagementKind.PROJECT_VIEW, "week")
        assert stats.total_count == 0

    @pytest.mark.asyncio
    async def test_missing_project_raises_not_found(self, services):
        with pytest.raises(ProjectNotFoundError):
            await services.recording.record_project_view(4242)

    @pytest.mark.asyncio
    async def test_malformed_project_id_is_rejected(self, services):
        with pytest.raises(ValidationError):
            await services.recording.record_project_view(None)

    @pytest.mark.asyncio
    async def test_aggregate_failure_keeps_event(self, services, owner, project, viewer, monkeypatch):
        async def failing_increment(*args, **kwargs):
            raise StorageError("Failed to update daily aggregate", operation="increment")

        monkeypatch.setattr(services.aggregate_counter, "increment", failing_increment)
        failures_before = failure_count(EngagementKind.PROJECT_VIEW)

        result = await services.recording.record_project_view(project.id, viewer.id)

        assert result.recorded is True
        assert result.aggregated is False
        assert await services.event_store.count_for_owner(owner.id, EngagementKind.PROJECT_VIEW) == 1
        assert await services.aggregate_counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == 0
        assert failure_count(EngagementKind.PROJECT_VIEW) == failures_before + 1

    @pytest.mark.asyncio
    async def test_event_failure_propagates_and_skips_aggregate(self, services, project, viewer, monkeypatch):
        async def failing_append(event):
            raise StorageError("Failed to store engagement event", operation="append")

        monkeypatch.setattr(services.event_store, "append", failing_append)

        with pytest.raises(StorageError):
            await services.recording.record_project_view(project.id, viewer.id)

        assert await services.aggregate_counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == 0


class TestRecordPortfolioVisit:
    @pytest.mark.asyncio
    async def test_records_visit(self, services, owner, viewer):
        result = await services.recording.record_portfolio_visit(owner.id, viewer.id)

        assert result.recorded is True
        assert result.kind == EngagementKind.PORTFOLIO_VISIT
        assert await services.aggregate_counter.get_totals(owner.id, EngagementKind.PORTFOLIO_VISIT) == 1

    @pytest.mark.asyncio
    async def test_self_visit_is_not_recorded(self, services, owner):
        result = await services.recording.record_portfolio_visit(owner.id, owner.id)

        assert result.recorded is False
        assert await services.event_store.count_for_owner(owner.id, EngagementKind.PORTFOLIO_VISIT) == 0

    @pytest.mark.asyncio
    async def test_missing_user_raises_not_found(self, services):
        with pytest.raises(UserNotFoundError):
            await services.recording.record_portfolio_visit(4242)


class TestConcurrentRecording:
    @pytest.mark.asyncio
    async def test_concurrent_views_match_aggregate(self, services, owner, project, test_db):
        viewers: list[User] = []
        for index in range(12):
            viewers.append(await create_test_user(test_db, username=f"fan{index}", email=f"fan{index}@example.com"))

        # Two views per viewer plus three self-views, all at once
        calls = [services.recording.record_project_view(project.id, viewer.id) for viewer in viewers * 2]
        calls += [services.recording.record_project_view(project.id, owner.id) for _ in range(3)]
        results = await asyncio.gather(*calls)

        recorded = [result for result in results if result.recorded]
        assert len(recorded) == 24
        assert all(result.aggregated for result in recorded)
        assert await services.event_store.count_for_owner(owner.id, EngagementKind.PROJECT_VIEW) == 24
        assert await services.aggregate_counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == 24

        stats = await services.query_engine.get_stats(owner.id, EngagementKind.PROJECT_VIEW, "week")
        assert stats.total_count == 24
        assert stats.unique_viewer_count == 12


class TestPurgeProject:
    @pytest.mark.asyncio
    async def test_purge_removes_events_and_rollups(self, services, owner, project, viewer):
        for _ in range(3):
            await services.recording.record_project_view(project.id, viewer.id)
        await services.recording.record_portfolio_visit(owner.id, viewer.id)

        deleted = await services.recording.purge_project(project.id)

        assert deleted == 3
        assert await services.event_store.count_for_owner(owner.id, EngagementKind.PROJECT_VIEW) == 0
        assert await services.aggregate_counter.get_totals(project.id, EngagementKind.PROJECT_VIEW) == 0
        # Portfolio visits are keyed by user id and stay untouched
        assert await services.aggregate_counter.get_totals(owner.id, EngagementKind.PORTFOLIO_VISIT) == 1
