"""Per-subject, per-day rollup of engagement events."""

from sqlalchemy import Column, Date, Enum, ForeignKey, Index, Integer, UniqueConstraint

from projectshelf.database import Base
from projectshelf.models.engagement_event import EngagementKind


class DailyAggregate(Base):
    __tablename__ = "daily_aggregates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, nullable=False)
    kind = Column(Enum(EngagementKind, name="engagement_kind"), nullable=False)
    # Calendar day in the configured analytics timezone
    day = Column(Date, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("subject_id", "kind", "day", name="uq_daily_aggregates_subject_kind_day"),
        Index("idx_daily_aggregates_owner_day", "owner_id", "kind", "day"),
    )
