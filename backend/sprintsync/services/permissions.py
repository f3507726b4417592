"""
Project-level permission checks.

The project owner may do anything. Other users act through their role in
`project_members`: any member may read, Managers and Admins may plan
sprints, Admins (and the owner) may manage membership.
"""

from typing import Optional

from sprintsync.db.models import ProjectModel
from sprintsync.db.store import UnitOfWork
from sprintsync.infrastructure.exceptions import ForbiddenError
from sprintsync.models.project import MANAGER_ROLES, ProjectRole


async def project_role(uow: UnitOfWork, project: ProjectModel, user_id: str) -> Optional[str]:
    if project.owner_id == user_id:
        return "Owner"
    return await uow.projects.get_role(project.id, user_id)


async def require_member(uow: UnitOfWork, project: ProjectModel, user_id: str) -> str:
    role = await project_role(uow, project, user_id)
    if role is None:
        raise ForbiddenError("Not authorized to access this project")
    return role


async def require_manager(uow: UnitOfWork, project: ProjectModel, user_id: str) -> str:
    role = await project_role(uow, project, user_id)
    if role != "Owner" and role not in {r.value for r in MANAGER_ROLES}:
        raise ForbiddenError("Not authorized to manage sprints for this project")
    return role


async def require_owner_or_admin(uow: UnitOfWork, project: ProjectModel, user_id: str) -> str:
    role = await project_role(uow, project, user_id)
    if role not in ("Owner", ProjectRole.ADMIN.value):
        raise ForbiddenError("Only the project owner or an admin can do this")
    return role
