"""Engagement event log: one row per observed project view or portfolio visit."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer

from projectshelf.database import Base


class EngagementKind(str, enum.Enum):
    PROJECT_VIEW = "PROJECT_VIEW"
    PORTFOLIO_VISIT = "PORTFOLIO_VISIT"


class EngagementEvent(Base):
    __tablename__ = "engagement_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    kind = Column(Enum(EngagementKind, name="engagement_kind"), nullable=False)
    # Project id for PROJECT_VIEW, portfolio owner's user id for PORTFOLIO_VISIT
    subject_id = Column(Integer, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    viewer_id = Column(Integer, nullable=True)
    occurred_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("idx_engagement_events_subject", "subject_id", "kind", "occurred_at"),
        Index("idx_engagement_events_owner", "owner_id", "kind", "occurred_at"),
    )
