"""
Task API endpoints.

`project_router` is mounted under /api/projects for task creation;
`router` is mounted under /api/tasks.
"""

from fastapi import APIRouter, Depends

from sprintsync.dependencies import get_task_service
from sprintsync.infrastructure.auth import require_user
from sprintsync.models.common import Envelope, envelope
from sprintsync.models.task import TaskCreate, TaskUpdate
from sprintsync.services.task_service import TaskService

router = APIRouter()
project_router = APIRouter()


@project_router.post("/{project_id}/tasks", status_code=201, response_model=Envelope)
async def create_task(
    project_id: str,
    data: TaskCreate,
    user_id: str = Depends(require_user),
    service: TaskService = Depends(get_task_service),
):
    """Create a task in a project."""
    task = await service.create_task(project_id, data, user_id)
    return envelope(task, "Task created successfully")


@router.get("/{task_id}", response_model=Envelope)
async def get_task(
    task_id: str,
    user_id: str = Depends(require_user),
    service: TaskService = Depends(get_task_service),
):
    """Get task by ID."""
    return envelope(await service.get_task(task_id, user_id))


@router.put("/{task_id}", response_model=Envelope)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user_id: str = Depends(require_user),
    service: TaskService = Depends(get_task_service),
):
    """Update a task. A status change recomputes its sprint's progress."""
    task = await service.update_task(task_id, data, user_id)
    return envelope(task, "Task updated successfully")


@router.delete("/{task_id}", response_model=Envelope)
async def delete_task(
    task_id: str,
    user_id: str = Depends(require_user),
    service: TaskService = Depends(get_task_service),
):
    """Delete a task and drop it from its sprint."""
    await service.delete_task(task_id, user_id)
    return envelope(message="Task deleted successfully")
