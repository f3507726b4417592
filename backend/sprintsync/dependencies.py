"""
FastAPI dependencies resolving the services held by the app's container.
"""

from fastapi import Request

from sprintsync.services.container import ServiceContainer
from sprintsync.services.project_service import ProjectService
from sprintsync.services.sprint_coordinator import SprintCoordinator
from sprintsync.services.task_service import TaskService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_sprint_coordinator(request: Request) -> SprintCoordinator:
    return get_container(request).sprints


def get_task_service(request: Request) -> TaskService:
    return get_container(request).tasks


def get_project_service(request: Request) -> ProjectService:
    return get_container(request).projects
