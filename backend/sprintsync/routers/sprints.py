"""
Sprint management API endpoints.

`project_router` is mounted under /api/projects for the project-scoped
collection; `router` is mounted under /api/sprints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
import structlog

from sprintsync.dependencies import get_sprint_coordinator
from sprintsync.infrastructure.auth import require_user
from sprintsync.models.common import CollectionEnvelope, Envelope, collection, envelope, to_wire
from sprintsync.models.sprint import SprintCreate, SprintListQuery, SprintStatus, SprintUpdate
from sprintsync.services.sprint_coordinator import SprintCoordinator

router = APIRouter()
project_router = APIRouter()
logger = structlog.get_logger()


# ============================================
# PROJECT-SCOPED
# ============================================

@project_router.post("/{project_id}/sprints", status_code=201, response_model=Envelope)
async def create_sprint(
    project_id: str,
    data: SprintCreate,
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Create a sprint in a project."""
    sprint = await coordinator.create_sprint(project_id, data, user_id)
    return envelope(sprint, "Sprint created successfully")


@project_router.get("/{project_id}/sprints", response_model=CollectionEnvelope)
async def list_sprints(
    project_id: str,
    status: Optional[SprintStatus] = Query(None, description="Filter by lifecycle status"),
    search: Optional[str] = Query(None, max_length=100, description="Match name or description"),
    sort: Optional[str] = Query(None, max_length=100, description="e.g. -startDate,name"),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=100),
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Paginated, filtered list of a project's sprints."""
    query = SprintListQuery(status=status, search=search, sort=sort, page=page, limit=limit)
    items, total = await coordinator.list_sprints(project_id, query, user_id)
    return collection(items, total, page, limit)


# ============================================
# CROSS-PROJECT VIEWS
# ============================================

@router.get("/status/active", response_model=CollectionEnvelope)
async def list_active_sprints(
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Sprints currently running in the caller's projects."""
    sprints = await coordinator.list_active_sprints(user_id)
    return CollectionEnvelope(data=to_wire(sprints), count=len(sprints))


@router.get("/status/upcoming", response_model=CollectionEnvelope)
async def list_upcoming_sprints(
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Sprints not started yet in the caller's projects."""
    sprints = await coordinator.list_upcoming_sprints(user_id)
    return CollectionEnvelope(data=to_wire(sprints), count=len(sprints))


@router.get("/statistics/completion-rate", response_model=Envelope)
async def completion_rate(
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Planned vs completed tasks across the caller's completed sprints."""
    return envelope(await coordinator.completion_statistics(user_id))


# ============================================
# SINGLE SPRINT
# ============================================

@router.get("/{sprint_id}", response_model=Envelope)
async def get_sprint(
    sprint_id: str,
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Get a sprint with its member tasks."""
    return envelope(await coordinator.get_sprint(sprint_id, user_id))


@router.put("/{sprint_id}", response_model=Envelope)
async def update_sprint(
    sprint_id: str,
    patch: SprintUpdate,
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Update sprint details."""
    sprint = await coordinator.update_sprint(sprint_id, patch, user_id)
    return envelope(sprint, "Sprint updated successfully")


@router.delete("/{sprint_id}", response_model=Envelope)
async def delete_sprint(
    sprint_id: str,
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Delete a sprint and detach its tasks."""
    await coordinator.delete_sprint(sprint_id, user_id)
    return envelope(message="Sprint deleted successfully")


@router.post("/{sprint_id}/tasks/{task_id}", response_model=Envelope)
async def add_task_to_sprint(
    sprint_id: str,
    task_id: str,
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Add a task to a sprint, moving it out of any other sprint."""
    sprint = await coordinator.add_task_to_sprint(sprint_id, task_id, user_id)
    return envelope(sprint, "Task added to sprint successfully")


@router.delete("/{sprint_id}/tasks/{task_id}", response_model=Envelope)
async def remove_task_from_sprint(
    sprint_id: str,
    task_id: str,
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Remove a task from a sprint."""
    sprint = await coordinator.remove_task_from_sprint(sprint_id, task_id, user_id)
    return envelope(sprint, "Task removed from sprint successfully")


@router.post("/{sprint_id}/recalculate-progress", response_model=Envelope)
async def recalculate_progress(
    sprint_id: str,
    user_id: str = Depends(require_user),
    coordinator: SprintCoordinator = Depends(get_sprint_coordinator),
):
    """Recompute a sprint's progress from its member tasks."""
    result = await coordinator.recalculate_progress(sprint_id, user_id)
    return envelope(result, "Sprint progress recalculated")
