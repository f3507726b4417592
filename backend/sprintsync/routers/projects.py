"""
Project API endpoints: projects, members and the status vocabulary.
"""

from typing import List

from fastapi import APIRouter, Body, Depends

from sprintsync.dependencies import get_project_service
from sprintsync.infrastructure.auth import require_user
from sprintsync.models.common import Envelope, envelope
from sprintsync.models.project import (
    ProjectCreate,
    ProjectMemberCreate,
    StatusDefinition,
    StatusMigration,
    StatusVocabulary,
)
from sprintsync.services.project_service import ProjectService

router = APIRouter()


@router.post("", status_code=201, response_model=Envelope)
async def create_project(
    data: ProjectCreate,
    user_id: str = Depends(require_user),
    service: ProjectService = Depends(get_project_service),
):
    """Create a project owned by the caller."""
    project = await service.create_project(data, user_id)
    return envelope(project, "Project created successfully")


@router.get("/{project_id}", response_model=Envelope)
async def get_project(
    project_id: str,
    user_id: str = Depends(require_user),
    service: ProjectService = Depends(get_project_service),
):
    """Get project by ID."""
    return envelope(await service.get_project(project_id, user_id))


@router.post("/{project_id}/members", response_model=Envelope)
async def add_member(
    project_id: str,
    data: ProjectMemberCreate,
    user_id: str = Depends(require_user),
    service: ProjectService = Depends(get_project_service),
):
    """Grant a user a role in the project."""
    project = await service.add_member(project_id, data, user_id)
    return envelope(project, "Member added successfully")


@router.get("/{project_id}/statuses", response_model=Envelope)
async def get_statuses(
    project_id: str,
    user_id: str = Depends(require_user),
    service: ProjectService = Depends(get_project_service),
):
    """Get the project's task-status vocabulary."""
    return envelope(await service.get_statuses(project_id, user_id))


@router.put("/{project_id}/statuses", response_model=Envelope)
async def update_statuses(
    project_id: str,
    statuses: List[StatusDefinition] = Body(..., embed=True),
    user_id: str = Depends(require_user),
    service: ProjectService = Depends(get_project_service),
):
    """Replace the project's status vocabulary."""
    vocabulary = StatusVocabulary(statuses=statuses)
    result = await service.update_statuses(project_id, vocabulary, user_id)
    return envelope(result, "Project statuses updated successfully")


@router.post("/{project_id}/statuses/migrate", response_model=Envelope)
async def migrate_statuses(
    project_id: str,
    migration: StatusMigration,
    user_id: str = Depends(require_user),
    service: ProjectService = Depends(get_project_service),
):
    """Move tasks from deprecated statuses to their replacements."""
    result = await service.migrate_statuses(project_id, migration, user_id)
    return envelope(result, "Tasks migrated successfully")
