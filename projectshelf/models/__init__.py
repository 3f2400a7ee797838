from .daily_aggregate import DailyAggregate
from .engagement_event import EngagementEvent, EngagementKind
from .project import Project
from .user import User

__all__ = [
    "DailyAggregate",
    "EngagementEvent",
    "EngagementKind",
    "Project",
    "User",
]
