# Data models
from sprintsync.models.sprint import (
    Sprint, SprintCreate, SprintUpdate, SprintStatus, SprintListQuery,
    ProgressResult, CompletionStatistics, derive_sprint_status
)
from sprintsync.models.task import Task, TaskCreate, TaskUpdate, TaskPriority
from sprintsync.models.project import (
    Project, ProjectCreate, ProjectMember, ProjectMemberCreate, ProjectRole,
    StatusDefinition, StatusVocabulary, StatusMigration
)

__all__ = [
    "Sprint", "SprintCreate", "SprintUpdate", "SprintStatus", "SprintListQuery",
    "ProgressResult", "CompletionStatistics", "derive_sprint_status",
    "Task", "TaskCreate", "TaskUpdate", "TaskPriority",
    "Project", "ProjectCreate", "ProjectMember", "ProjectMemberCreate", "ProjectRole",
    "StatusDefinition", "StatusVocabulary", "StatusMigration"
]
