from __future__ import annotations

from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from taskboard.database import Base
from taskboard.models.user import utcnow


class SubtaskStatus(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    TAKEN = "taken"
    COMPLETED = "completed"


class SubtaskProgress(str, Enum):
    NOT_STARTED = "not_started"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    TESTING = "testing"
    COMPLETED = "completed"


# Order in which a member's own subtasks are listed.
PROGRESS_ORDER = [p.value for p in SubtaskProgress]


def derive_status(current_status: str, progress: str) -> str:
    """Status that follows from moving a subtask to ``progress``."""

    if progress == SubtaskProgress.COMPLETED.value:
        return SubtaskStatus.COMPLETED.value
    if progress == SubtaskProgress.IN_PROGRESS.value and current_status == SubtaskStatus.ASSIGNED.value:
        return SubtaskStatus.TAKEN.value
    return current_status


class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    assigned_to = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(String(16), nullable=False, default=SubtaskStatus.AVAILABLE.value)
    progress = Column(String(16), nullable=False, default=SubtaskProgress.NOT_STARTED.value)
    deadline = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, default=utcnow, onupdate=utcnow)

    assignee = relationship("User", lazy="joined", foreign_keys=[assigned_to])
    task = relationship("Task", lazy="joined")

    @property
    def assigned_to_name(self) -> Optional[str]:
        return self.assignee.name if self.assignee is not None else None

    @property
    def assigned_to_email(self) -> Optional[str]:
        return self.assignee.email if self.assignee is not None else None

    @property
    def task_title(self) -> Optional[str]:
        return self.task.title if self.task is not None else None

    @property
    def team_code(self) -> Optional[str]:
        return self.task.team_code if self.task is not None else None
