"""
Service container.

Builds the process-wide collaborators (database, cache, broadcast channel,
post-commit queue) once and wires the services on top of them. The FastAPI
lifespan creates one container and stores it on `app.state`.
"""

from typing import Optional

import httpx
import structlog

from sprintsync.db.store import EntityStore
from sprintsync.infrastructure.auth import TokenAuthenticator
from sprintsync.infrastructure.broadcast import BroadcastChannel
from sprintsync.infrastructure.cache import ReadThroughCache
from sprintsync.infrastructure.config import Settings
from sprintsync.infrastructure.database import Database
from sprintsync.infrastructure.post_commit import PostCommitQueue
from sprintsync.services.collaborators import AuditLogger, FeatureGate, Notifier
from sprintsync.services.progress_engine import ProgressEngine
from sprintsync.services.project_service import ProjectService
from sprintsync.services.sprint_coordinator import SprintCoordinator
from sprintsync.services.task_service import TaskService

logger = structlog.get_logger()


class ServiceContainer:
    """Owns the lifecycle of every shared service instance."""

    def __init__(
        self,
        settings: Settings,
        notification_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.database = Database(settings.database_url, echo=settings.database_echo)
        self.cache = ReadThroughCache(
            default_ttl=settings.cache_ttl_seconds,
            single_flight=settings.cache_single_flight,
        )
        self.broadcast = BroadcastChannel()
        self.post_commit = PostCommitQueue()
        self.store = EntityStore(self.database, self.post_commit)

        self.authenticator = TokenAuthenticator(
            settings.auth_secret, lifetime_seconds=settings.auth_token_lifetime_seconds,
        )
        self.features = FeatureGate(settings.feature_set)
        self.audit = AuditLogger()
        self.notifier = Notifier(
            self.broadcast,
            webhook_url=settings.notification_webhook_url,
            timeout=settings.notification_timeout,
            transport=notification_transport,
        )

        self.progress = ProgressEngine(self.cache, self.broadcast)
        self.projects = ProjectService(self.store, self.cache, self.progress, self.features, self.audit)
        self.tasks = TaskService(self.store, self.cache, self.broadcast, self.progress, self.audit)
        self.sprints = SprintCoordinator(
            self.store, self.cache, self.broadcast, self.progress, self.audit, self.notifier,
        )

    async def start(self) -> None:
        await self.database.connect()
        await self.database.create_tables()
        logger.info("service_container_started", environment=self.settings.environment)

    async def close(self) -> None:
        await self.post_commit.drain()
        await self.database.close()
        logger.info("service_container_stopped")
