"""
Analytics Routes

Recording endpoints for the public portfolio and project pages, and
statistics endpoints for the owner's dashboard.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from projectshelf.auth import get_current_user, get_optional_user
from projectshelf.models.engagement_event import EngagementKind
from projectshelf.models.user import User
from projectshelf.schemas.analytics import (
    PortfolioVisitCreate,
    ProjectViewCreate,
    RecordResult,
    SampleDataResult,
    StatsResult,
)
from projectshelf.services.container import AnalyticsServices, get_analytics_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analytics"])


@router.post("/project-view", response_model=RecordResult, status_code=status.HTTP_201_CREATED)
async def record_project_view(
    payload: ProjectViewCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    services: AnalyticsServices = Depends(get_analytics_services),
):
    """
    Record a view of a published project.

    Authentication is optional. The authenticated user, when present, is the
    viewer; otherwise `viewerId` from the body is used, and anonymous views
    are recorded without a viewer. Owners viewing their own project are not
    counted.
    """
    viewer_id = current_user.id if current_user else payload.viewer_id
    return await services.recording.record_project_view(payload.project_id, viewer_id)


@router.post("/portfolio-visit", response_model=RecordResult, status_code=status.HTTP_201_CREATED)
async def record_portfolio_visit(
    payload: PortfolioVisitCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    services: AnalyticsServices = Depends(get_analytics_services),
):
    """Record a visit to a user's public portfolio page. Same viewer rules as project views."""
    viewer_id = current_user.id if current_user else payload.viewer_id
    return await services.recording.record_portfolio_visit(payload.user_id, viewer_id)


@router.get("/project-views", response_model=StatsResult)
async def get_project_view_stats(
    period: str = Query("all", description="week, month, year or all"),
    project_id: Optional[int] = Query(None, alias="projectId", gt=0),
    current_user: User = Depends(get_current_user),
    services: AnalyticsServices = Depends(get_analytics_services),
):
    """
    View statistics for the current user's projects.

    **Returns**:
    - Total views and unique viewers in the period
    - Daily views, one entry per day including days without views
    - Per-project breakdown, most viewed first (omitted when `projectId` is given)
    """
    return await services.query_engine.get_stats(
        current_user.id, EngagementKind.PROJECT_VIEW, period, subject_id_filter=project_id
    )


@router.get("/portfolio-visits", response_model=StatsResult)
async def get_portfolio_visit_stats(
    period: str = Query("all", description="week, month, year or all"),
    current_user: User = Depends(get_current_user),
    services: AnalyticsServices = Depends(get_analytics_services),
):
    """Visit statistics for the current user's portfolio page."""
    return await services.query_engine.get_stats(current_user.id, EngagementKind.PORTFOLIO_VISIT, period)


@router.post("/generate-sample-data", response_model=SampleDataResult)
async def generate_sample_data(
    current_user: User = Depends(get_current_user),
    services: AnalyticsServices = Depends(get_analytics_services),
):
    """
    Seed a week of demo analytics for an account without any.

    Development and demo use only.
    """
    return await services.sample_data.generate(current_user.id)
