"""
Task data models.

Task status is a free string checked against the owning project's status
vocabulary, so it is not an enum here.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from sprintsync.models.common import CamelModel, to_naive_utc


class TaskPriority(str, Enum):
    """Task priority level."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class TaskCreate(CamelModel):
    """Schema for creating a new task."""
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = Field(None, min_length=1, max_length=50)
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: Optional[str] = Field(None, max_length=64)
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class TaskUpdate(CamelModel):
    """Schema for updating a task. Sprint membership goes through the sprint endpoints."""
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = Field(None, min_length=1, max_length=50)
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = Field(None, max_length=64)
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class Task(CamelModel):
    """Full task model."""
    id: str
    project_id: str
    sprint_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: str
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
