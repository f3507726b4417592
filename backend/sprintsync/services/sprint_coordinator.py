"""
Sprint management service.

Coordinates every write that touches sprint membership. Each operation runs
in one store transaction: the sprint's `sprint_tasks` rows and the task's
`sprint_id` are updated together and progress is recomputed before commit.
Cache invalidation, broadcasts, audit entries and notifications are queued
as post-commit hooks, so they only happen for writes that actually landed.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from sprintsync.db.models import SprintModel
from sprintsync.db.store import EntityStore, UnitOfWork
from sprintsync.infrastructure.broadcast import BroadcastChannel, project_room, sprint_room
from sprintsync.infrastructure.cache import (
    ReadThroughCache,
    project_sprints_key,
    project_sprints_pattern,
    sprint_key,
    task_key,
)
from sprintsync.infrastructure.exceptions import InvalidInputError, NotFoundError
from sprintsync.models.common import new_id, utcnow
from sprintsync.models.project import StatusVocabulary
from sprintsync.models.sprint import (
    CompletionStatistics,
    ProgressResult,
    Sprint,
    SprintCreate,
    SprintListQuery,
    SprintStatus,
    SprintUpdate,
    derive_sprint_status,
)
from sprintsync.services.collaborators import AuditLogger, Notifier
from sprintsync.services.permissions import require_manager, require_member
from sprintsync.services.progress_engine import ProgressEngine
from sprintsync.services.task_service import check_id, task_from_row

logger = structlog.get_logger()


def sprint_from_row(row: SprintModel, task_ids: List[str], tasks=None) -> Sprint:
    """Convert a SprintModel ORM row to the Sprint schema."""
    return Sprint(
        id=row.id,
        name=row.name,
        description=row.description,
        project_id=row.project_id,
        start_date=row.start_date,
        end_date=row.end_date,
        status=derive_sprint_status(row.start_date, row.end_date, row.status),
        progress_percentage=row.progress_percentage or 0,
        task_ids=task_ids,
        tasks=tasks,
        created_by=row.created_by,
        updated_by=row.updated_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def with_current_status(sprint: Sprint) -> Sprint:
    """Re-derive the date-driven status of a (possibly cached) sprint."""
    status = SprintStatus(derive_sprint_status(sprint.start_date, sprint.end_date, sprint.status.value))
    if status == sprint.status:
        return sprint
    return sprint.model_copy(update={"status": status})


class SprintCoordinator:
    """Transactional sprint and sprint-membership operations."""

    def __init__(
        self,
        store: EntityStore,
        cache: ReadThroughCache,
        broadcast: BroadcastChannel,
        progress: ProgressEngine,
        audit: AuditLogger,
        notifier: Notifier,
    ):
        self.store = store
        self.cache = cache
        self.broadcast = broadcast
        self.progress = progress
        self.audit = audit
        self.notifier = notifier

    # ============================================
    # HELPERS
    # ============================================

    def _invalidate(self, uow: UnitOfWork, *keys: str) -> None:
        for key in keys:
            uow.after_commit("cache_invalidate", self.cache.invalidate, key)

    def _publish(self, uow: UnitOfWork, room: str, event: str, payload: Dict[str, Any]) -> None:
        uow.after_commit(f"broadcast {event}", self.broadcast.publish, room, event, payload)

    def _audit(
        self, uow: UnitOfWork, actor_id: str, action: str, sprint_id: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> None:
        uow.after_commit(
            f"audit {action}", self.audit.log_action, actor_id, action, "Sprint", sprint_id, changes,
        )

    async def _load_sprint_for(self, uow: UnitOfWork, sprint_id: str):
        sprint = await uow.sprints.get_or_raise(sprint_id, "Sprint not found")
        project = await uow.projects.get_or_raise(sprint.project_id, "Project not found")
        return sprint, project

    async def _notify_assignee(self, task_id: str, sprint_id: str, sprint_name: str, added: bool = True) -> None:
        """Tell the assignee their task joined or left a sprint, if that still holds."""
        async with self.store.transaction() as uow:
            task = await uow.tasks.get(task_id)
            in_sprint = task is not None and task.sprint_id == sprint_id
            if task is None or in_sprint != added or not task.assigned_to:
                logger.info("assignee_notification_skipped", task_id=task_id, sprint_id=sprint_id, added=added)
                return
            assignee, title = task.assigned_to, task.title

        verb = "added to" if added else "removed from"
        await self.notifier.notify_user(
            assignee,
            f'Task "{title}" was {verb} sprint "{sprint_name}"',
            link=f"/sprints/{sprint_id}",
            metadata={"taskId": task_id, "sprintId": sprint_id},
        )

    async def _notify_members(self, user_ids: Sequence[str], sprint: Sprint) -> None:
        for user_id in user_ids:
            await self.notifier.notify_user(
                user_id,
                f'New sprint "{sprint.name}" was created',
                link=f"/sprints/{sprint.id}",
                metadata={"sprintId": sprint.id, "projectId": sprint.project_id},
            )

    # ============================================
    # MUTATIONS
    # ============================================

    async def create_sprint(self, project_id: str, data: SprintCreate, actor_id: str) -> Sprint:
        """Create an empty sprint in a project."""
        check_id(project_id, "project")

        async with self.store.transaction() as uow:
            project = await uow.projects.get_or_raise(project_id, "Project not found")
            await require_manager(uow, project, actor_id)

            row = SprintModel(
                id=new_id(),
                project_id=project.id,
                name=data.name,
                description=data.description,
                start_date=data.start_date,
                end_date=data.end_date,
                status=SprintStatus.PLANNING.value,
                progress_percentage=0,
                created_by=actor_id,
                updated_by=actor_id,
            )
            await uow.sprints.save(row)
            sprint = sprint_from_row(row, [])

            recipients = [m.user_id for m in await uow.projects.members(project.id) if m.user_id != actor_id]
            if project.owner_id != actor_id and project.owner_id not in recipients:
                recipients.append(project.owner_id)

            self._invalidate(uow, project_sprints_pattern(project.id))
            self._publish(uow, project_room(project.id), "sprint:created", sprint.model_dump(mode="json", by_alias=True))
            self._audit(uow, actor_id, "CREATE_SPRINT", row.id, {"name": row.name})
            if recipients:
                uow.after_commit("notify_project_members", self._notify_members, recipients, sprint)

        logger.info("sprint_created", sprint_id=sprint.id, project_id=project_id, status=sprint.status.value)
        return sprint

    async def add_task_to_sprint(self, sprint_id: str, task_id: str, actor_id: str) -> Sprint:
        """
        Make a task a member of a sprint.

        A task belongs to at most one sprint: if another sprint holds it, it is
        removed there first and that sprint's progress is recomputed too.
        Adding a task that is already a member changes nothing.
        """
        check_id(sprint_id, "sprint")
        check_id(task_id, "task")

        async with self.store.transaction() as uow:
            sprint, project = await self._load_sprint_for(uow, sprint_id)
            await require_manager(uow, project, actor_id)
            task = await uow.tasks.get_or_raise(task_id, "Task not found")
            if task.project_id != sprint.project_id:
                raise InvalidInputError("Task does not belong to the sprint's project")

            others = set(await uow.sprints.sprints_holding(task.id))
            if task.sprint_id:
                others.add(task.sprint_id)
            others.discard(sprint.id)

            for other_id in sorted(others):
                await uow.sprints.remove_member(other_id, task.id)
                other = await uow.sprints.get(other_id)
                if other is not None:
                    other.updated_by = actor_id
                    await self.progress.recompute(uow, other_id, other)
                self._invalidate(uow, sprint_key(other_id))
                self._publish(
                    uow, sprint_room(other_id), "sprint:task:removed",
                    {"sprintId": other_id, "taskId": task.id, "movedTo": sprint.id},
                )

            added = await uow.sprints.add_member(sprint.id, task.id)
            if task.sprint_id != sprint.id:
                task.sprint_id = sprint.id
                task.updated_by = actor_id
                await uow.tasks.save(task)

            if added:
                sprint.updated_by = actor_id
                await uow.sprints.save(sprint)
            progress = await self.progress.recompute(uow, sprint.id, sprint)
            result = sprint_from_row(sprint, await uow.sprints.member_ids(sprint.id))

            self._invalidate(uow, sprint_key(sprint.id), task_key(task.id), project_sprints_pattern(sprint.project_id))
            if added or others:
                self._publish(
                    uow, sprint_room(sprint.id), "sprint:task:added",
                    {"sprintId": sprint.id, "taskId": task.id, "progressPercentage": progress},
                )
                self._audit(uow, actor_id, "ADD_TASK_TO_SPRINT", sprint.id, {"taskId": task.id})
                if task.assigned_to:
                    uow.after_commit(
                        "notify_assignee", self._notify_assignee, task.id, sprint.id, sprint.name,
                    )

        logger.info(
            "sprint_task_added",
            sprint_id=sprint_id, task_id=task_id, moved_from=sorted(others), progress=progress,
        )
        return result

    async def remove_task_from_sprint(self, sprint_id: str, task_id: str, actor_id: str) -> Sprint:
        """
        Remove a task from a sprint.

        Removing a non-member changes nothing. A task deleted concurrently is
        tolerated: its membership row is still cleaned up.
        """
        check_id(sprint_id, "sprint")
        check_id(task_id, "task")

        async with self.store.transaction() as uow:
            sprint, project = await self._load_sprint_for(uow, sprint_id)
            await require_manager(uow, project, actor_id)
            task = await uow.tasks.get(task_id)
            if task is not None and task.project_id != sprint.project_id:
                raise InvalidInputError("Task does not belong to the sprint's project")

            removed = await uow.sprints.remove_member(sprint.id, task_id)
            if task is None and not removed:
                raise NotFoundError("Task not found")

            if task is not None and task.sprint_id == sprint.id:
                task.sprint_id = None
                task.updated_by = actor_id
                await uow.tasks.save(task)

            if removed:
                sprint.updated_by = actor_id
                await uow.sprints.save(sprint)
            progress = await self.progress.recompute(uow, sprint.id, sprint)
            result = sprint_from_row(sprint, await uow.sprints.member_ids(sprint.id))

            self._invalidate(uow, sprint_key(sprint.id), task_key(task_id), project_sprints_pattern(sprint.project_id))
            if removed:
                self._publish(
                    uow, sprint_room(sprint.id), "sprint:task:removed",
                    {"sprintId": sprint.id, "taskId": task_id, "progressPercentage": progress},
                )
                self._audit(uow, actor_id, "REMOVE_TASK_FROM_SPRINT", sprint.id, {"taskId": task_id})
                if task is not None and task.assigned_to:
                    uow.after_commit(
                        "notify_assignee", self._notify_assignee, task_id, sprint.id, sprint.name, False,
                    )

        logger.info("sprint_task_removed", sprint_id=sprint_id, task_id=task_id, removed=removed)
        return result

    async def delete_sprint(self, sprint_id: str, actor_id: str) -> None:
        """Delete a sprint, detaching every member task."""
        check_id(sprint_id, "sprint")

        async with self.store.transaction() as uow:
            sprint, project = await self._load_sprint_for(uow, sprint_id)
            await require_manager(uow, project, actor_id)

            member_ids = await uow.sprints.clear_members(sprint.id)
            detached = await uow.tasks.detach_sprint(sprint.id, actor_id)
            await uow.sprints.delete(sprint)

            affected = sorted(set(member_ids) | set(detached))
            self._invalidate(
                uow, sprint_key(sprint_id), project_sprints_pattern(project.id),
                *(task_key(t) for t in affected),
            )
            payload = {"sprintId": sprint_id, "projectId": project.id, "taskIds": affected}
            self._publish(uow, project_room(project.id), "sprint:deleted", payload)
            self._publish(uow, sprint_room(sprint_id), "sprint:deleted", payload)
            self._audit(uow, actor_id, "DELETE_SPRINT", sprint_id, {"name": sprint.name, "taskIds": affected})

        logger.info("sprint_deleted", sprint_id=sprint_id, detached_tasks=len(affected))

    async def update_sprint(self, sprint_id: str, patch: SprintUpdate, actor_id: str) -> Sprint:
        """Update sprint fields. Membership and progress are left alone."""
        check_id(sprint_id, "sprint")
        changes = patch.model_dump(exclude_unset=True)
        if changes.get("name", "") is None:
            del changes["name"]
        if changes.get("status", "") is None:
            del changes["status"]

        async with self.store.transaction() as uow:
            sprint, project = await self._load_sprint_for(uow, sprint_id)
            await require_manager(uow, project, actor_id)

            start = changes.get("start_date", sprint.start_date)
            end = changes.get("end_date", sprint.end_date)
            if start and end and end < start:
                raise InvalidInputError("End date must be after start date")

            for field, value in changes.items():
                if field == "status":
                    value = value.value
                setattr(sprint, field, value)
            sprint.updated_by = actor_id
            await uow.sprints.save(sprint)

            result = sprint_from_row(sprint, await uow.sprints.member_ids(sprint.id))
            body = result.model_dump(mode="json", by_alias=True)

            self._invalidate(uow, sprint_key(sprint.id), project_sprints_pattern(project.id))
            self._publish(uow, project_room(project.id), "sprint:updated", body)
            self._publish(uow, sprint_room(sprint.id), "sprint:details:updated", body)
            self._audit(uow, actor_id, "UPDATE_SPRINT", sprint.id, patch.model_dump(mode="json", exclude_unset=True))

        logger.info("sprint_updated", sprint_id=sprint_id, fields=sorted(changes), status=result.status.value)
        return result

    async def recalculate_progress(self, sprint_id: str, actor_id: str) -> ProgressResult:
        """Manually recompute a sprint's progress."""
        check_id(sprint_id, "sprint")

        async with self.store.transaction() as uow:
            sprint, project = await self._load_sprint_for(uow, sprint_id)
            await require_member(uow, project, actor_id)
            progress = await self.progress.recompute(uow, sprint.id, sprint)

        return ProgressResult(sprint_id=sprint_id, progress_percentage=progress)

    # ============================================
    # READS
    # ============================================

    async def _load_sprint(self, sprint_id: str) -> Sprint:
        async with self.store.transaction() as uow:
            row = await uow.sprints.get_or_raise(sprint_id, "Sprint not found")
            task_ids = await uow.sprints.member_ids(row.id)
            tasks = [task_from_row(t) for t in await uow.tasks.list_by_ids(task_ids)]
            return sprint_from_row(row, task_ids, tasks)

    async def get_sprint(self, sprint_id: str, actor_id: str) -> Sprint:
        """Sprint with its member tasks, served from the cache when possible."""
        check_id(sprint_id, "sprint")
        async with self.store.transaction() as uow:
            _, project = await self._load_sprint_for(uow, sprint_id)
            await require_member(uow, project, actor_id)

        sprint = await self.cache.get_or_compute(
            sprint_key(sprint_id), None, lambda: self._load_sprint(sprint_id)
        )
        return with_current_status(sprint)

    async def list_sprints(
        self, project_id: str, query: SprintListQuery, actor_id: str
    ) -> Tuple[List[Sprint], int]:
        """One page of a project's sprints and the total match count."""
        check_id(project_id, "project")
        async with self.store.transaction() as uow:
            project = await uow.projects.get_or_raise(project_id, "Project not found")
            await require_member(uow, project, actor_id)

        async def load() -> Tuple[List[Sprint], int]:
            async with self.store.transaction() as uow:
                rows, total = await uow.sprints.search(project_id, query, utcnow())
                members = await uow.sprints.member_map(r.id for r in rows)
                return [sprint_from_row(r, members[r.id]) for r in rows], total

        key = project_sprints_key(project_id, query.model_dump(mode="json"))
        sprints, total = await self.cache.get_or_compute(key, None, load)
        return [with_current_status(s) for s in sprints], total

    async def _sprints_with_members(self, uow: UnitOfWork, rows) -> List[Sprint]:
        members = await uow.sprints.member_map(r.id for r in rows)
        return [sprint_from_row(r, members[r.id]) for r in rows]

    async def list_active_sprints(self, actor_id: str) -> List[Sprint]:
        """Sprints currently running in the projects the actor belongs to."""
        async with self.store.transaction() as uow:
            project_ids = await uow.projects.project_ids_for_user(actor_id)
            rows = await uow.sprints.in_status(project_ids, SprintStatus.ACTIVE, utcnow(), order_by="end_date")
            return await self._sprints_with_members(uow, rows)

    async def list_upcoming_sprints(self, actor_id: str) -> List[Sprint]:
        """Sprints not yet started in the projects the actor belongs to."""
        async with self.store.transaction() as uow:
            project_ids = await uow.projects.project_ids_for_user(actor_id)
            rows = await uow.sprints.upcoming(project_ids, utcnow())
            return await self._sprints_with_members(uow, rows)

    async def completion_statistics(self, actor_id: str) -> CompletionStatistics:
        """Planned vs completed tasks over the actor's completed sprints."""
        async with self.store.transaction() as uow:
            project_ids = await uow.projects.project_ids_for_user(actor_id)
            rows = await uow.sprints.in_status(project_ids, SprintStatus.COMPLETED, utcnow())
            members = await uow.sprints.member_map(r.id for r in rows)

            vocabularies: Dict[str, StatusVocabulary] = {}
            planned = completed = 0
            for row in rows:
                if row.project_id not in vocabularies:
                    project = await uow.projects.get(row.project_id)
                    vocabularies[row.project_id] = StatusVocabulary.from_stored(project.statuses if project else None)
                vocabulary = vocabularies[row.project_id]
                statuses = await uow.tasks.statuses_of(members[row.id])
                planned += len(statuses)
                completed += sum(1 for s in statuses if vocabulary.is_terminal(s))

        rate = round(completed / planned * 100, 1) if planned else 0.0
        return CompletionStatistics(
            total_completed_sprints=len(rows),
            total_tasks_planned=planned,
            total_tasks_completed=completed,
            average_completion_rate=rate,
        )
