"""
SprintSync API - FastAPI Backend

Sprint planning coordination service: projects, tasks and sprints with
derived progress, a read-through cache and real-time change events.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from sprintsync.infrastructure.config import Settings, get_settings
from sprintsync.infrastructure.exceptions import register_exception_handlers
from sprintsync.routers import projects, sprints, tasks, websocket
from sprintsync.services.container import ServiceContainer


def configure_logging(level: str = "info") -> None:
    """Configure structured logging."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info("sprintsync_starting", environment=settings.environment)

    container = ServiceContainer(settings)
    await container.start()
    app.state.container = container

    yield

    await container.close()
    logger.info("sprintsync_stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application for the given settings."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="SprintSync API",
        description="Sprint planning with derived progress, cache coherency and real-time events",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Register global exception handlers
    register_exception_handlers(app, debug=settings.is_development)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(projects.router, prefix="/api/projects", tags=["Projects"])
    app.include_router(sprints.project_router, prefix="/api/projects", tags=["Sprints"])
    app.include_router(tasks.project_router, prefix="/api/projects", tags=["Tasks"])
    app.include_router(sprints.router, prefix="/api/sprints", tags=["Sprints"])
    app.include_router(tasks.router, prefix="/api/tasks", tags=["Tasks"])
    app.include_router(websocket.router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "SprintSync API",
            "version": "1.0.0"
        }

    @app.get("/health")
    async def health():
        """Detailed health check."""
        container: ServiceContainer = app.state.container
        return {
            "status": "healthy",
            "components": {
                "api": "ok",
                "cache": container.cache.stats(),
                "broadcast": container.broadcast.stats(),
                "post_commit": {
                    "pending": container.post_commit.pending,
                    "completed": container.post_commit.completed,
                    "failed": container.post_commit.failed,
                },
            }
        }

    @app.get("/health/live")
    async def health_live():
        """Liveness probe: the process is running."""
        return {"alive": True}

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness probe: checks the database.
        Returns 503 when it does not answer.
        """
        container: ServiceContainer = app.state.container
        database_ok = await container.database.ping()
        body = {
            "ready": database_ok,
            "checks": {
                "database": "ok" if database_ok else "unavailable",
                "cache": container.cache.stats(),
            },
        }
        return JSONResponse(status_code=200 if database_ok else 503, content=body)

    return app


app = create_app()
