"""
SQLAlchemy ORM models for SprintSync.

Sprint membership is held twice: the `sprint_tasks` association table (the
sprint side, with a UNIQUE task_id so a task sits in at most one sprint) and
`tasks.sprint_id` (the task side). Both are written in the same transaction.
Sprints and tasks carry a version counter so concurrent writers to the same
row fail at flush instead of silently overwriting each other.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from sprintsync.infrastructure.database import Base
from sprintsync.models.common import utcnow
from sprintsync.models.sprint import SprintStatus, derive_sprint_status


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

class ProjectModel(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Ordered [{"name": ..., "terminal": ...}]
    statuses: Mapped[list] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class ProjectMemberModel(Base):
    __tablename__ = "project_members"

    project_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------

class SprintModel(Base):
    __tablename__ = "sprints"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=SprintStatus.PLANNING.value, index=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    progress_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}
    __table_args__ = (
        CheckConstraint("progress_percentage BETWEEN 0 AND 100", name="ck_sprints_progress_range"),
        Index("ix_sprints_project_status", "project_id", "status"),
    )


class SprintTaskModel(Base):
    """Sprint side of the membership relation, in insertion order."""
    __tablename__ = "sprint_tasks"

    sprint_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("sprints.id", ondelete="CASCADE"), primary_key=True
    )
    task_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True, unique=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskModel(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sprint_id: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("sprints.id", ondelete="SET NULL"), index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(20), default="Medium")
    assigned_to: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


# ---------------------------------------------------------------------------
# Lifecycle status
# ---------------------------------------------------------------------------

@event.listens_for(SprintModel, "before_insert")
@event.listens_for(SprintModel, "before_update")
def _derive_status_on_save(mapper, connection, target: SprintModel) -> None:
    """Re-derive the lifecycle status from the dates on every save."""
    target.status = derive_sprint_status(target.start_date, target.end_date, target.status)
