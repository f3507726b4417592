"""
Sprint progress engine.

A sprint's progress is the share of its member tasks whose status is marked
terminal in the project's status vocabulary, as an integer percentage
rounded half up. The value is only written (and only announced) when it
actually changes, so recomputing twice in a row is a no-op the second time.
"""

from typing import Optional

import structlog

from sprintsync.db.models import SprintModel
from sprintsync.db.store import UnitOfWork
from sprintsync.infrastructure.broadcast import BroadcastChannel, project_room, sprint_room
from sprintsync.infrastructure.cache import ReadThroughCache, project_sprints_pattern, sprint_key
from sprintsync.models.project import StatusVocabulary

logger = structlog.get_logger()


def completion_percentage(done: int, total: int) -> int:
    """round_half_up(100 * done / total), or 0 for an empty sprint."""
    if total <= 0:
        return 0
    # Integer form of floor(100 * done / total + 0.5)
    return (200 * done + total) // (2 * total)


class ProgressEngine:
    """Recomputes and persists sprint completion percentages."""

    def __init__(self, cache: ReadThroughCache, broadcast: BroadcastChannel):
        self.cache = cache
        self.broadcast = broadcast

    async def measure(self, uow: UnitOfWork, sprint: SprintModel) -> int:
        """Current completion percentage of a sprint, without persisting it."""
        task_ids = await uow.sprints.member_ids(sprint.id)
        if not task_ids:
            return 0

        project = await uow.projects.get(sprint.project_id)
        vocabulary = StatusVocabulary.from_stored(project.statuses if project else None)
        statuses = await uow.tasks.statuses_of(task_ids)
        done = sum(1 for status in statuses if vocabulary.is_terminal(status))
        return completion_percentage(done, len(statuses))

    async def recompute(
        self,
        uow: UnitOfWork,
        sprint_id: str,
        sprint: Optional[SprintModel] = None,
    ) -> int:
        """
        Recompute a sprint's progress inside the caller's transaction.

        When the value changes it is written to the sprint and post-commit
        hooks are queued to invalidate the cached sprint and announce
        `sprint:progress:updated` to the project and sprint rooms.
        """
        if sprint is None:
            sprint = await uow.sprints.get_or_raise(sprint_id, "Sprint not found")

        progress = await self.measure(uow, sprint)
        if progress == sprint.progress_percentage:
            return progress

        previous = sprint.progress_percentage
        sprint.progress_percentage = progress
        await uow.sprints.save(sprint)

        payload = {
            "sprintId": sprint.id,
            "projectId": sprint.project_id,
            "progressPercentage": progress,
        }
        uow.after_commit("invalidate_sprint", self.cache.invalidate, sprint_key(sprint.id))
        uow.after_commit("invalidate_project_sprints", self.cache.invalidate, project_sprints_pattern(sprint.project_id))
        uow.after_commit(
            "broadcast_progress_project", self.broadcast.publish,
            project_room(sprint.project_id), "sprint:progress:updated", payload,
        )
        uow.after_commit(
            "broadcast_progress_sprint", self.broadcast.publish,
            sprint_room(sprint.id), "sprint:progress:updated", payload,
        )
        logger.info("sprint_progress_updated", sprint_id=sprint.id, previous=previous, progress=progress)
        return progress

    async def recompute_project(self, uow: UnitOfWork, project_id: str) -> int:
        """Recompute every sprint of a project. Returns how many changed."""
        changed = 0
        for sprint in await uow.sprints.list(filters={"project_id": project_id}):
            before = sprint.progress_percentage
            if await self.recompute(uow, sprint.id, sprint) != before:
                changed += 1
        return changed
