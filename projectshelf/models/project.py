from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, and_, delete, event
from sqlalchemy.orm import relationship

from projectshelf.database import Base
from projectshelf.models.daily_aggregate import DailyAggregate
from projectshelf.models.engagement_event import EngagementEvent, EngagementKind


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    slug = Column(String, index=True, nullable=False)
    is_published = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    owner = relationship("User", back_populates="projects")


@event.listens_for(Project, "after_delete")
def purge_project_engagement(mapper, connection, target):
    """
    Project views key on the project id without a foreign key, so deleting a
    project through the ORM removes its events and daily aggregates in the
    same transaction.
    """
    for model in (EngagementEvent, DailyAggregate):
        connection.execute(
            delete(model).where(and_(model.subject_id == target.id, model.kind == EngagementKind.PROJECT_VIEW))
        )
