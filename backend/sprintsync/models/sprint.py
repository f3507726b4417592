"""
Sprint data models.
"""

import math
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AfterValidator, Field, computed_field, field_validator, model_validator
from typing_extensions import Annotated

from sprintsync.models.common import CamelModel, ListQuery, to_naive_utc, utcnow
from sprintsync.models.task import Task


class SprintStatus(str, Enum):
    """Sprint lifecycle status."""
    PLANNING = "Planning"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


def derive_sprint_status(
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    current: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """
    Lifecycle status implied by the sprint dates at `now`.

    Planning -> Active once now >= start, Active -> Completed once now > end.
    Cancelled is only ever set by hand and is never left automatically.
    Without the relevant date the current status is kept.
    """
    if current == SprintStatus.CANCELLED.value:
        return current
    now = now or utcnow()
    if start_date is not None and now < start_date:
        return SprintStatus.PLANNING.value
    if end_date is not None and now > end_date:
        return SprintStatus.COMPLETED.value
    if start_date is not None:
        return SprintStatus.ACTIVE.value
    return current or SprintStatus.PLANNING.value


def _clean_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if len(v) < 3 or len(v) > 100:
        raise ValueError("Sprint name must be between 3 and 100 characters")
    return v


SprintName = Annotated[str, AfterValidator(_clean_name)]


class SprintCreate(CamelModel):
    """Schema for creating a new sprint."""
    name: SprintName
    description: Optional[str] = Field(None, max_length=500)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def _check_dates(self) -> "SprintCreate":
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("Both start and end dates must be provided")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be after start date")
        return self


class SprintUpdate(CamelModel):
    """Schema for updating a sprint. Membership and progress are not patchable."""
    name: Optional[SprintName] = None
    description: Optional[str] = Field(None, max_length=500)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[SprintStatus] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @field_validator("status")
    @classmethod
    def _only_cancel(cls, v: Optional[SprintStatus]) -> Optional[SprintStatus]:
        if v is not None and v != SprintStatus.CANCELLED:
            raise ValueError("Sprint status is derived from its dates; only Cancelled can be set")
        return v

    @model_validator(mode="after")
    def _check_dates(self) -> "SprintUpdate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be after start date")
        return self


class Sprint(CamelModel):
    """Full sprint model."""
    id: str
    name: str
    description: Optional[str] = None
    project_id: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: SprintStatus = SprintStatus.PLANNING
    progress_percentage: int = 0
    task_ids: List[str] = Field(default_factory=list)
    tasks: Optional[List[Task]] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field(alias="durationDays")
    @property
    def duration_days(self) -> Optional[int]:
        if not self.start_date or not self.end_date:
            return None
        return math.ceil(abs((self.end_date - self.start_date).total_seconds()) / 86400)

    @computed_field(alias="remainingDays")
    @property
    def remaining_days(self) -> Optional[int]:
        if not self.end_date:
            return None
        seconds = (self.end_date - utcnow()).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    @computed_field(alias="tasksCount")
    @property
    def tasks_count(self) -> int:
        return len(self.task_ids)


class SprintListQuery(ListQuery):
    """Query parameters for listing a project's sprints."""
    status: Optional[SprintStatus] = None


class ProgressResult(CamelModel):
    sprint_id: str
    progress_percentage: int


class CompletionStatistics(CamelModel):
    total_completed_sprints: int
    total_tasks_planned: int
    total_tasks_completed: int
    average_completion_rate: float
