"""
Task repository, including the task side of sprint membership.
"""

from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, select

from sprintsync.db.models import TaskModel
from sprintsync.db.repositories.base import BaseRepository


class TaskRepository(BaseRepository[TaskModel]):
    model = TaskModel

    async def list_by_ids(self, task_ids: Iterable[str]) -> List[TaskModel]:
        """Tasks for the given ids, in the order given. Unknown ids are skipped."""
        ids = list(task_ids)
        if not ids:
            return []
        result = await self.session.execute(select(TaskModel).where(TaskModel.id.in_(ids)))
        by_id = {t.id: t for t in result.scalars().all()}
        return [by_id[i] for i in ids if i in by_id]

    async def statuses_of(self, task_ids: Iterable[str]) -> List[str]:
        """Status of every existing task among `task_ids`."""
        ids = list(task_ids)
        if not ids:
            return []
        result = await self.session.execute(select(TaskModel.status).where(TaskModel.id.in_(ids)))
        return list(result.scalars().all())

    async def detach_sprint(self, sprint_id: str, user_id: Optional[str] = None) -> List[str]:
        """Clear `sprint_id` on every task pointing at the sprint. Returns their ids."""
        tasks = await self.list(filters={"sprint_id": sprint_id})
        for task in tasks:
            task.sprint_id = None
            task.updated_by = user_id
        if tasks:
            await self.session.flush()
        return [t.id for t in tasks]

    async def with_statuses(self, project_id: str, statuses: Iterable[str]) -> Sequence[TaskModel]:
        return await self.list(filters={"project_id": project_id, "status": list(statuses)})

    async def count_outside(self, project_id: str, statuses: Iterable[str]) -> int:
        """Number of project tasks whose status is not in `statuses`."""
        result = await self.session.execute(
            select(func.count())
            .select_from(TaskModel)
            .where(TaskModel.project_id == project_id, TaskModel.status.not_in(list(statuses)))
        )
        return result.scalar_one()
