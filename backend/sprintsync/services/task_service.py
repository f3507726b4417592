"""
Task management service.

Tasks are created inside a project and carry a status from the project's
vocabulary. A status change or a deletion recomputes the progress of the
sprint holding the task in the same transaction.
"""

from typing import Any, Dict

import structlog

from sprintsync.db.models import TaskModel
from sprintsync.db.store import EntityStore, UnitOfWork
from sprintsync.infrastructure.broadcast import BroadcastChannel, sprint_room
from sprintsync.infrastructure.cache import ReadThroughCache, project_sprints_pattern, sprint_key, task_key
from sprintsync.infrastructure.exceptions import InvalidInputError
from sprintsync.models.common import is_valid_id, new_id
from sprintsync.models.project import StatusVocabulary
from sprintsync.models.task import Task, TaskCreate, TaskUpdate
from sprintsync.services.collaborators import AuditLogger
from sprintsync.services.permissions import require_member
from sprintsync.services.progress_engine import ProgressEngine

logger = structlog.get_logger()


def check_id(value: str, kind: str) -> None:
    """Reject malformed ids before any transaction opens."""
    if not is_valid_id(value):
        raise InvalidInputError(f"Invalid {kind} ID format")


def task_from_row(row: TaskModel) -> Task:
    """Convert a TaskModel ORM row to the Task schema."""
    return Task(
        id=row.id,
        project_id=row.project_id,
        sprint_id=row.sprint_id,
        title=row.title,
        description=row.description,
        status=row.status,
        priority=row.priority,
        assigned_to=row.assigned_to,
        due_date=row.due_date,
        created_by=row.created_by,
        updated_by=row.updated_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class TaskService:
    """Service for task management."""

    def __init__(
        self,
        store: EntityStore,
        cache: ReadThroughCache,
        broadcast: BroadcastChannel,
        progress: ProgressEngine,
        audit: AuditLogger,
    ):
        self.store = store
        self.cache = cache
        self.broadcast = broadcast
        self.progress = progress
        self.audit = audit

    def _invalidate_task(self, uow: UnitOfWork, row: TaskModel) -> None:
        uow.after_commit("invalidate_task", self.cache.invalidate, task_key(row.id))
        if row.sprint_id:
            uow.after_commit("invalidate_sprint", self.cache.invalidate, sprint_key(row.sprint_id))
            uow.after_commit(
                "invalidate_project_sprints", self.cache.invalidate, project_sprints_pattern(row.project_id)
            )

    async def create_task(self, project_id: str, data: TaskCreate, actor_id: str) -> Task:
        check_id(project_id, "project")
        async with self.store.transaction() as uow:
            project = await uow.projects.get_or_raise(project_id, "Project not found")
            await require_member(uow, project, actor_id)

            vocabulary = StatusVocabulary.from_stored(project.statuses)
            status = data.status or vocabulary.initial
            if not vocabulary.contains(status):
                raise InvalidInputError(
                    f"Invalid status '{status}'. Allowed: {', '.join(vocabulary.names)}"
                )

            row = TaskModel(
                id=new_id(),
                project_id=project.id,
                title=data.title.strip(),
                description=data.description,
                status=status,
                priority=data.priority.value,
                assigned_to=data.assigned_to,
                due_date=data.due_date,
                created_by=actor_id,
                updated_by=actor_id,
            )
            await uow.tasks.save(row)
            task = task_from_row(row)
            uow.after_commit(
                "audit_create_task", self.audit.log_action,
                actor_id, "CREATE_TASK", "Task", row.id, {"title": row.title},
            )

        logger.info("task_created", task_id=task.id, project_id=project_id)
        return task

    async def get_task(self, task_id: str, actor_id: str) -> Task:
        check_id(task_id, "task")

        async with self.store.transaction() as uow:
            row = await uow.tasks.get_or_raise(task_id, "Task not found")
            project = await uow.projects.get_or_raise(row.project_id, "Project not found")
            await require_member(uow, project, actor_id)

        async def load() -> Task:
            async with self.store.transaction() as uow:
                return task_from_row(await uow.tasks.get_or_raise(task_id, "Task not found"))

        return await self.cache.get_or_compute(task_key(task_id), None, load)

    async def update_task(self, task_id: str, data: TaskUpdate, actor_id: str) -> Task:
        check_id(task_id, "task")
        changes: Dict[str, Any] = data.model_dump(exclude_unset=True)

        async with self.store.transaction() as uow:
            row = await uow.tasks.get_or_raise(task_id, "Task not found")
            project = await uow.projects.get_or_raise(row.project_id, "Project not found")
            await require_member(uow, project, actor_id)

            if "status" in changes:
                vocabulary = StatusVocabulary.from_stored(project.statuses)
                if changes["status"] is None or not vocabulary.contains(changes["status"]):
                    raise InvalidInputError(
                        f"Invalid status '{changes['status']}'. Allowed: {', '.join(vocabulary.names)}"
                    )

            status_changed = "status" in changes and changes["status"] != row.status
            for field, value in changes.items():
                if field in ("title", "status", "priority") and value is None:
                    continue
                if field == "priority":
                    value = value.value if hasattr(value, "value") else value
                setattr(row, field, value)
            row.updated_by = actor_id
            await uow.tasks.save(row)

            if status_changed and row.sprint_id:
                await self.progress.recompute(uow, row.sprint_id)

            task = task_from_row(row)
            self._invalidate_task(uow, row)
            uow.after_commit(
                "audit_update_task", self.audit.log_action,
                actor_id, "UPDATE_TASK", "Task", row.id, data.model_dump(mode="json", exclude_unset=True),
            )

        logger.info("task_updated", task_id=task_id, status_changed=status_changed)
        return task

    async def delete_task(self, task_id: str, actor_id: str) -> None:
        check_id(task_id, "task")
        async with self.store.transaction() as uow:
            row = await uow.tasks.get_or_raise(task_id, "Task not found")
            project = await uow.projects.get_or_raise(row.project_id, "Project not found")
            await require_member(uow, project, actor_id)

            holders = set(await uow.sprints.remove_task_everywhere(row.id))
            if row.sprint_id:
                holders.add(row.sprint_id)
            await uow.tasks.delete(row)

            for sprint_id in sorted(holders):
                sprint = await uow.sprints.get(sprint_id)
                if sprint is None:
                    continue
                await self.progress.recompute(uow, sprint_id, sprint)
                uow.after_commit("invalidate_sprint", self.cache.invalidate, sprint_key(sprint_id))
                uow.after_commit(
                    "broadcast_task_removed", self.broadcast.publish,
                    sprint_room(sprint_id), "sprint:task:removed",
                    {"sprintId": sprint_id, "taskId": row.id},
                )

            uow.after_commit("invalidate_task", self.cache.invalidate, task_key(row.id))
            uow.after_commit(
                "invalidate_project_sprints", self.cache.invalidate, project_sprints_pattern(row.project_id)
            )
            uow.after_commit(
                "audit_delete_task", self.audit.log_action,
                actor_id, "DELETE_TASK", "Task", row.id, None,
            )

        logger.info("task_deleted", task_id=task_id, sprints=len(holders))
