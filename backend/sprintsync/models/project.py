"""
Project data models.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from sprintsync.models.common import CamelModel


class ProjectRole(str, Enum):
    """Role a user holds within one project."""
    DEVELOPER = "Developer"
    MANAGER = "Manager"
    QA = "QA"
    CLIENT = "Client"
    ADMIN = "Admin"


# Roles allowed to plan sprints
MANAGER_ROLES = {ProjectRole.MANAGER, ProjectRole.ADMIN}


class StatusDefinition(CamelModel):
    """One entry of a project's task-status vocabulary."""
    name: str = Field(..., min_length=1, max_length=50)
    terminal: bool = False

    @field_validator("name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Status name must not be blank")
        return v


DEFAULT_STATUSES: List[StatusDefinition] = [
    StatusDefinition(name="ToDo"),
    StatusDefinition(name="Doing"),
    StatusDefinition(name="Testing"),
    StatusDefinition(name="Done", terminal=True),
]


class StatusVocabulary(CamelModel):
    """
    Ordered task statuses of a project.

    Completion is decided by the `terminal` flag of each status rather than a
    fixed label, so projects may call their final column "Done", "Completed",
    "Shipped" or anything else.
    """
    statuses: List[StatusDefinition] = Field(..., min_length=2, max_length=10)

    @model_validator(mode="after")
    def _check(self) -> "StatusVocabulary":
        names = [s.name for s in self.statuses]
        if len(set(names)) != len(names):
            raise ValueError("Duplicate statuses are not allowed")
        if not any(s.terminal for s in self.statuses):
            raise ValueError("At least one status must be marked terminal")
        return self

    @classmethod
    def default(cls) -> "StatusVocabulary":
        return cls(statuses=[s.model_copy() for s in DEFAULT_STATUSES])

    @classmethod
    def from_stored(cls, raw: Optional[List[dict]]) -> "StatusVocabulary":
        if not raw:
            return cls.default()
        return cls(statuses=[StatusDefinition.model_validate(s) for s in raw])

    def to_stored(self) -> List[dict]:
        return [{"name": s.name, "terminal": s.terminal} for s in self.statuses]

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.statuses]

    @property
    def terminal_names(self) -> List[str]:
        return [s.name for s in self.statuses if s.terminal]

    def contains(self, status: str) -> bool:
        return status in self.names

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal_names

    @property
    def initial(self) -> str:
        return self.statuses[0].name


class ProjectCreate(CamelModel):
    """Schema for creating a new project."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    statuses: Optional[List[StatusDefinition]] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Project name must not be blank")
        return v

    def vocabulary(self) -> StatusVocabulary:
        if self.statuses is None:
            return StatusVocabulary.default()
        return StatusVocabulary(statuses=self.statuses)


class ProjectMemberCreate(CamelModel):
    """Schema for granting a user a role in a project."""
    user_id: str = Field(..., min_length=1, max_length=64)
    role: ProjectRole = ProjectRole.DEVELOPER


class ProjectMember(CamelModel):
    user_id: str
    role: ProjectRole
    added_at: Optional[datetime] = None


class Project(CamelModel):
    """Full project model."""
    id: str
    name: str
    description: Optional[str] = None
    owner_id: str
    statuses: List[StatusDefinition]
    members: List[ProjectMember] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StatusMigration(CamelModel):
    """Old status name -> replacement status name."""
    mappings: Dict[str, str] = Field(..., min_length=1)


class StatusUpdateResult(CamelModel):
    statuses: List[StatusDefinition]
    tasks_needing_migration: int


class StatusMigrationResult(CamelModel):
    migrated: Dict[str, int]
    sprints_recomputed: int
