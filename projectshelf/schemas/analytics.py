from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from projectshelf.models.engagement_event import EngagementKind


class StatsPeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


class ProjectViewCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: int = Field(..., alias="projectId", gt=0, description="The project being viewed.")
    viewer_id: Optional[int] = Field(
        None, alias="viewerId", gt=0, description="The viewing user, if known. Defaults to the authenticated user."
    )


class PortfolioVisitCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(..., alias="userId", gt=0, description="The user whose portfolio is visited.")
    viewer_id: Optional[int] = Field(
        None, alias="viewerId", gt=0, description="The visiting user, if known. Defaults to the authenticated user."
    )


class RecordResult(BaseModel):
    recorded: bool = Field(..., description="Whether an engagement event was stored.")
    aggregated: bool = Field(False, description="Whether the daily rollup was updated as well.")
    event_id: Optional[int] = Field(None, description="Id of the stored event.")
    kind: EngagementKind
    subject_id: int
    reason: Optional[str] = Field(None, description="Why nothing was recorded, e.g. 'self_view'.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "recorded": True,
                "aggregated": True,
                "event_id": 42,
                "kind": "PROJECT_VIEW",
                "subject_id": 7,
                "reason": None,
            }
        }
    )


class DailyCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: date
    count: int


class BreakdownEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject_id: int
    title: str
    count: int


class StatsResult(BaseModel):
    kind: EngagementKind
    period: StatsPeriod
    total_count: int = 0
    unique_viewer_count: int = 0
    daily_series: list[DailyCount] = Field(default_factory=list)
    breakdown: list[BreakdownEntry] = Field(default_factory=list)


class SampleDataResult(BaseModel):
    message: str
    portfolio_visits: int
    project_views: int
