# Services
from sprintsync.services.container import ServiceContainer
from sprintsync.services.progress_engine import ProgressEngine, completion_percentage
from sprintsync.services.project_service import ProjectService
from sprintsync.services.sprint_coordinator import SprintCoordinator
from sprintsync.services.task_service import TaskService

__all__ = [
    "ServiceContainer", "ProgressEngine", "completion_percentage",
    "ProjectService", "SprintCoordinator", "TaskService",
]
