"""
Project repository and project membership.
"""

from typing import List, Optional, Sequence

from sqlalchemy import select

from sprintsync.db.models import ProjectMemberModel, ProjectModel
from sprintsync.db.repositories.base import BaseRepository


class ProjectRepository(BaseRepository[ProjectModel]):
    model = ProjectModel

    async def get_role(self, project_id: str, user_id: str) -> Optional[str]:
        """Role of the user in the project, or None when not a member."""
        member = await self.session.get(ProjectMemberModel, (project_id, user_id))
        return member.role if member else None

    async def set_member(self, project_id: str, user_id: str, role: str) -> ProjectMemberModel:
        """Grant a role, replacing any role the user already had."""
        member = await self.session.get(ProjectMemberModel, (project_id, user_id))
        if member is None:
            member = ProjectMemberModel(project_id=project_id, user_id=user_id, role=role)
            self.session.add(member)
        else:
            member.role = role
        await self.session.flush()
        return member

    async def members(self, project_id: str) -> Sequence[ProjectMemberModel]:
        result = await self.session.execute(
            select(ProjectMemberModel)
            .where(ProjectMemberModel.project_id == project_id)
            .order_by(ProjectMemberModel.added_at)
        )
        return result.scalars().all()

    async def project_ids_for_user(self, user_id: str) -> List[str]:
        """Projects the user owns or belongs to."""
        owned = await self.session.execute(select(ProjectModel.id).where(ProjectModel.owner_id == user_id))
        joined = await self.session.execute(
            select(ProjectMemberModel.project_id).where(ProjectMemberModel.user_id == user_id)
        )
        ids = list(owned.scalars().all())
        for project_id in joined.scalars().all():
            if project_id not in ids:
                ids.append(project_id)
        return ids
