"""
Sprint repository, including the sprint side of task membership.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Tuple

from sqlalchemy import and_, delete, func, or_, select

from sprintsync.db.models import SprintModel, SprintTaskModel
from sprintsync.db.repositories.base import BaseRepository
from sprintsync.models.sprint import SprintListQuery, SprintStatus

# Public sort keys -> column names
SORTABLE = {
    "name": "name",
    "status": "status",
    "startDate": "start_date",
    "endDate": "end_date",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "progressPercentage": "progress_percentage",
}
DEFAULT_SORT = "-created_at"


def status_clause(status: SprintStatus, now: datetime):
    """
    SQL condition matching sprints whose derived status at `now` is `status`.

    Mirrors derive_sprint_status so rows not saved since a date boundary passed
    still filter correctly.
    """
    col = SprintModel.status
    if status == SprintStatus.CANCELLED:
        return col == SprintStatus.CANCELLED.value

    live = col != SprintStatus.CANCELLED.value
    undated = and_(
        SprintModel.start_date.is_(None),
        or_(SprintModel.end_date.is_(None), SprintModel.end_date >= now),
    )
    if status == SprintStatus.COMPLETED:
        return and_(live, or_(
            and_(SprintModel.end_date.is_not(None), SprintModel.end_date < now),
            and_(undated, col == SprintStatus.COMPLETED.value),
        ))
    if status == SprintStatus.ACTIVE:
        return and_(live, or_(
            and_(
                SprintModel.start_date.is_not(None),
                SprintModel.start_date <= now,
                or_(SprintModel.end_date.is_(None), SprintModel.end_date >= now),
            ),
            and_(undated, col == SprintStatus.ACTIVE.value),
        ))
    return and_(live, or_(
        SprintModel.start_date > now,
        and_(undated, or_(col.is_(None), col == SprintStatus.PLANNING.value)),
    ))


def translate_sort(sort: str | None) -> str:
    """Turn `-startDate,name` into `-start_date,name`, dropping unknown keys."""
    if not sort:
        return DEFAULT_SORT
    parts = []
    for part in sort.split(","):
        part = part.strip()
        column = SORTABLE.get(part.lstrip("-"))
        if column:
            parts.append(f"-{column}" if part.startswith("-") else column)
    return ",".join(parts) or DEFAULT_SORT


class SprintRepository(BaseRepository[SprintModel]):
    model = SprintModel

    # -- membership ---------------------------------------------------------

    async def member_ids(self, sprint_id: str) -> List[str]:
        """Task ids of a sprint in insertion order."""
        result = await self.session.execute(
            select(SprintTaskModel.task_id)
            .where(SprintTaskModel.sprint_id == sprint_id)
            .order_by(SprintTaskModel.position, SprintTaskModel.added_at)
        )
        return list(result.scalars().all())

    async def member_map(self, sprint_ids: Iterable[str]) -> Dict[str, List[str]]:
        ids = list(sprint_ids)
        members: Dict[str, List[str]] = {sid: [] for sid in ids}
        if not ids:
            return members
        result = await self.session.execute(
            select(SprintTaskModel.sprint_id, SprintTaskModel.task_id)
            .where(SprintTaskModel.sprint_id.in_(ids))
            .order_by(SprintTaskModel.position, SprintTaskModel.added_at)
        )
        for sprint_id, task_id in result.all():
            members[sprint_id].append(task_id)
        return members

    async def sprints_holding(self, task_id: str) -> List[str]:
        """Sprints whose member list contains the task."""
        result = await self.session.execute(
            select(SprintTaskModel.sprint_id).where(SprintTaskModel.task_id == task_id)
        )
        return list(result.scalars().all())

    async def add_member(self, sprint_id: str, task_id: str) -> bool:
        """Append a task to the sprint. Returns False if it was already a member."""
        existing = await self.session.get(SprintTaskModel, (sprint_id, task_id))
        if existing is not None:
            return False

        result = await self.session.execute(
            select(func.max(SprintTaskModel.position)).where(SprintTaskModel.sprint_id == sprint_id)
        )
        last = result.scalar_one_or_none()
        self.session.add(SprintTaskModel(
            sprint_id=sprint_id,
            task_id=task_id,
            position=0 if last is None else last + 1,
        ))
        await self.session.flush()
        return True

    async def remove_member(self, sprint_id: str, task_id: str) -> bool:
        """Drop a task from the sprint. Returns False if it was not a member."""
        existing = await self.session.get(SprintTaskModel, (sprint_id, task_id))
        if existing is None:
            return False
        await self.session.delete(existing)
        await self.session.flush()
        return True

    async def remove_task_everywhere(self, task_id: str) -> List[str]:
        """Drop a task from every sprint holding it. Returns those sprint ids."""
        holders = await self.sprints_holding(task_id)
        for sprint_id in holders:
            await self.remove_member(sprint_id, task_id)
        return holders

    async def clear_members(self, sprint_id: str) -> List[str]:
        """Empty the sprint's member list. Returns the removed task ids."""
        task_ids = await self.member_ids(sprint_id)
        if task_ids:
            await self.session.execute(
                delete(SprintTaskModel).where(SprintTaskModel.sprint_id == sprint_id)
            )
        return task_ids

    # -- queries ------------------------------------------------------------

    async def search(
        self, project_id: str, query: SprintListQuery, now: datetime
    ) -> Tuple[Sequence[SprintModel], int]:
        """One page of a project's sprints plus the total match count."""
        conditions = [SprintModel.project_id == project_id]

        if query.status:
            conditions.append(status_clause(query.status, now))

        if query.search:
            pattern = f"%{query.search.strip()}%"
            conditions.append(or_(SprintModel.name.ilike(pattern), SprintModel.description.ilike(pattern)))

        stmt = self._apply_order(select(SprintModel).where(*conditions), translate_sort(query.sort))
        stmt = stmt.offset(query.offset).limit(query.limit)
        count_stmt = select(func.count()).select_from(SprintModel).where(*conditions)

        rows = (await self.session.execute(stmt)).scalars().all()
        total = (await self.session.execute(count_stmt)).scalar_one()
        return rows, total

    async def in_status(
        self, project_ids: Iterable[str], status: SprintStatus, now: datetime, order_by: str | None = None
    ) -> Sequence[SprintModel]:
        """Sprints of the given projects whose derived status at `now` is `status`."""
        ids = list(project_ids)
        if not ids:
            return []
        stmt = select(SprintModel).where(SprintModel.project_id.in_(ids), status_clause(status, now))
        result = await self.session.execute(self._apply_order(stmt, order_by))
        return result.scalars().all()

    async def upcoming(self, project_ids: Iterable[str], now: datetime) -> Sequence[SprintModel]:
        """Sprints with a start date still in the future, soonest first."""
        ids = list(project_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(SprintModel)
            .where(
                SprintModel.project_id.in_(ids),
                SprintModel.status != SprintStatus.CANCELLED.value,
                SprintModel.start_date > now,
            )
            .order_by(SprintModel.start_date.asc())
        )
        return result.scalars().all()
