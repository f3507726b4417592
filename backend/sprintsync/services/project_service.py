"""
Project management service: projects, membership roles and the task-status
vocabulary.

Changing the vocabulary can flip which statuses count as complete, so every
vocabulary write recomputes the progress of the project's sprints in the same
transaction.
"""

from typing import Dict, List, Sequence

import structlog

from sprintsync.db.models import ProjectMemberModel, ProjectModel
from sprintsync.db.store import EntityStore
from sprintsync.infrastructure.cache import ReadThroughCache, project_sprints_pattern, sprint_key, task_key
from sprintsync.infrastructure.exceptions import ForbiddenError, InvalidInputError
from sprintsync.models.common import new_id
from sprintsync.models.project import (
    Project,
    ProjectCreate,
    ProjectMember,
    ProjectMemberCreate,
    StatusDefinition,
    StatusMigration,
    StatusMigrationResult,
    StatusUpdateResult,
    StatusVocabulary,
)
from sprintsync.services.collaborators import CUSTOM_STATUSES, AuditLogger, FeatureGate
from sprintsync.services.permissions import require_manager, require_member, require_owner_or_admin
from sprintsync.services.progress_engine import ProgressEngine
from sprintsync.services.task_service import check_id

logger = structlog.get_logger()


def project_from_row(row: ProjectModel, members: Sequence[ProjectMemberModel]) -> Project:
    """Convert a ProjectModel ORM row and its member rows to the Project schema."""
    return Project(
        id=row.id,
        name=row.name,
        description=row.description,
        owner_id=row.owner_id,
        statuses=StatusVocabulary.from_stored(row.statuses).statuses,
        members=[ProjectMember(user_id=m.user_id, role=m.role, added_at=m.added_at) for m in members],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class ProjectService:
    """Service for project management."""

    def __init__(
        self,
        store: EntityStore,
        cache: ReadThroughCache,
        progress: ProgressEngine,
        features: FeatureGate,
        audit: AuditLogger,
    ):
        self.store = store
        self.cache = cache
        self.progress = progress
        self.features = features
        self.audit = audit

    async def _require_custom_statuses(self, project_id: str) -> None:
        if not await self.features.check_feature_access(project_id, CUSTOM_STATUSES):
            raise ForbiddenError(
                "Custom statuses are not available on this subscription",
                details={"feature": CUSTOM_STATUSES},
            )

    async def create_project(self, data: ProjectCreate, actor_id: str) -> Project:
        project_id = new_id()
        vocabulary = data.vocabulary()
        if data.statuses is not None:
            await self._require_custom_statuses(project_id)

        async with self.store.transaction() as uow:
            row = ProjectModel(
                id=project_id,
                name=data.name,
                description=data.description,
                owner_id=actor_id,
                statuses=vocabulary.to_stored(),
            )
            await uow.projects.save(row)
            project = project_from_row(row, [])
            uow.after_commit(
                "audit_create_project", self.audit.log_action,
                actor_id, "CREATE_PROJECT", "Project", project_id, {"name": row.name},
            )

        logger.info("project_created", project_id=project_id, owner_id=actor_id)
        return project

    async def get_project(self, project_id: str, actor_id: str) -> Project:
        check_id(project_id, "project")
        async with self.store.transaction() as uow:
            row = await uow.projects.get_or_raise(project_id, "Project not found")
            await require_member(uow, row, actor_id)
            return project_from_row(row, await uow.projects.members(row.id))

    async def add_member(self, project_id: str, data: ProjectMemberCreate, actor_id: str) -> Project:
        """Grant (or change) a user's role in the project."""
        check_id(project_id, "project")
        async with self.store.transaction() as uow:
            row = await uow.projects.get_or_raise(project_id, "Project not found")
            await require_owner_or_admin(uow, row, actor_id)
            if data.user_id == row.owner_id:
                raise InvalidInputError("The project owner already has full access")

            await uow.projects.set_member(row.id, data.user_id, data.role.value)
            project = project_from_row(row, await uow.projects.members(row.id))
            uow.after_commit(
                "audit_add_member", self.audit.log_action,
                actor_id, "ADD_PROJECT_MEMBER", "Project", row.id,
                {"userId": data.user_id, "role": data.role.value},
            )

        logger.info("project_member_added", project_id=project_id, user_id=data.user_id, role=data.role.value)
        return project

    async def get_statuses(self, project_id: str, actor_id: str) -> List[StatusDefinition]:
        check_id(project_id, "project")
        async with self.store.transaction() as uow:
            row = await uow.projects.get_or_raise(project_id, "Project not found")
            await require_member(uow, row, actor_id)
            return StatusVocabulary.from_stored(row.statuses).statuses

    async def update_statuses(
        self, project_id: str, vocabulary: StatusVocabulary, actor_id: str
    ) -> StatusUpdateResult:
        """
        Replace the project's status vocabulary.

        Tasks whose status is no longer in the vocabulary are left untouched
        and reported as needing migration.
        """
        check_id(project_id, "project")
        await self._require_custom_statuses(project_id)

        async with self.store.transaction() as uow:
            row = await uow.projects.get_or_raise(project_id, "Project not found")
            await require_manager(uow, row, actor_id)

            old = row.statuses
            row.statuses = vocabulary.to_stored()
            await uow.projects.save(row)

            recomputed = await self.progress.recompute_project(uow, row.id)
            pending = await uow.tasks.count_outside(row.id, vocabulary.names)

            uow.after_commit("invalidate_project_sprints", self.cache.invalidate, project_sprints_pattern(row.id))
            uow.after_commit(
                "audit_update_statuses", self.audit.log_action,
                actor_id, "UPDATE_PROJECT_STATUSES", "Project", row.id,
                {"oldStatuses": old, "newStatuses": row.statuses},
            )

        logger.info(
            "project_statuses_updated",
            project_id=project_id, statuses=vocabulary.names,
            sprints_recomputed=recomputed, tasks_needing_migration=pending,
        )
        return StatusUpdateResult(statuses=vocabulary.statuses, tasks_needing_migration=pending)

    async def migrate_statuses(
        self, project_id: str, migration: StatusMigration, actor_id: str
    ) -> StatusMigrationResult:
        """Move every task from an old status to its replacement."""
        check_id(project_id, "project")

        async with self.store.transaction() as uow:
            row = await uow.projects.get_or_raise(project_id, "Project not found")
            await require_manager(uow, row, actor_id)

            vocabulary = StatusVocabulary.from_stored(row.statuses)
            for target in migration.mappings.values():
                if not vocabulary.contains(target):
                    raise InvalidInputError(f'Status "{target}" is not a valid status for this project')

            migrated: Dict[str, int] = {}
            touched: List[str] = []
            for old_status, new_status in migration.mappings.items():
                tasks = await uow.tasks.with_statuses(row.id, [old_status])
                for task in tasks:
                    task.status = new_status
                    task.updated_by = actor_id
                    touched.append(task.id)
                migrated[old_status] = len(tasks)
            await uow.session.flush()

            recomputed = await self.progress.recompute_project(uow, row.id)

            for task_id in touched:
                uow.after_commit("invalidate_task", self.cache.invalidate, task_key(task_id))
            # Cached sprints embed their tasks
            for sprint in await uow.sprints.list(filters={"project_id": row.id}):
                uow.after_commit("invalidate_sprint", self.cache.invalidate, sprint_key(sprint.id))
            uow.after_commit("invalidate_project_sprints", self.cache.invalidate, project_sprints_pattern(row.id))
            uow.after_commit(
                "audit_migrate_statuses", self.audit.log_action,
                actor_id, "MIGRATE_TASK_STATUSES", "Project", row.id,
                {"statusMappings": migration.mappings, "results": migrated},
            )

        logger.info("task_statuses_migrated", project_id=project_id, migrated=migrated)
        return StatusMigrationResult(migrated=migrated, sprints_recomputed=recomputed)
