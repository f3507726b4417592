"""
Error taxonomy and global exception handling for SprintSync API.

Every error leaves the API in the `{success: false, message}` envelope.
Stack details are only attached in development mode.
"""

import traceback
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

logger = structlog.get_logger(__name__)


class SprintSyncError(Exception):
    """Base exception for SprintSync application errors."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidInputError(SprintSyncError):
    """Malformed id, out-of-range field or failed validation."""
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(SprintSyncError):
    """Missing or invalid credential."""
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(SprintSyncError):
    """Authenticated but lacking permission on the project."""
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(SprintSyncError):
    """Entity absent from the store."""
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(SprintSyncError):
    """Write lost a race against a concurrent transaction."""
    status_code = status.HTTP_409_CONFLICT


class InternalError(SprintSyncError):
    """Unexpected store or cache failure."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")


def _body(message: str, error_id: str, exc: Exception = None, debug: bool = False, **extra) -> dict:
    content = {"success": False, "message": message, "error_id": error_id}
    content.update(extra)
    if debug and exc is not None:
        content["error"] = {
            "type": type(exc).__name__,
            "detail": str(exc),
            "stack": traceback.format_exception(type(exc), exc, exc.__traceback__),
        }
    return content


def register_exception_handlers(app: FastAPI, debug: bool = False):
    """Register all exception handlers with the FastAPI app."""

    async def _sprintsync_exception_handler(request: Request, exc: SprintSyncError) -> JSONResponse:
        error_id = _error_id()
        logger.warning(
            "request_failed",
            error_id=error_id,
            error_type=type(exc).__name__,
            message=exc.message,
            path=request.url.path,
            method=request.method,
            details=exc.details,
        )
        extra = {"details": exc.details} if exc.details else {}
        return JSONResponse(
            status_code=exc.status_code,
            content=_body(exc.message, error_id, exc, debug, **extra),
        )

    async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        errors = exc.errors()
        logger.warning(
            "validation_error",
            path=request.url.path,
            method=request.method,
            errors=errors,
        )
        first = errors[0] if errors else {}
        message = first.get("msg", "Validation error")
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        if location:
            message = f"{location}: {message}"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_body(message, _error_id(), exc, debug),
        )

    async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_body(str(exc.detail), _error_id()),
            headers=getattr(exc, "headers", None),
        )

    async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        error_id = _error_id()
        logger.error(
            "unhandled_exception",
            error_id=error_id,
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_body("Something went wrong", error_id, exc, debug),
        )

    app.add_exception_handler(SprintSyncError, _sprintsync_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(ValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _global_exception_handler)
    logger.info("exception_handlers_registered", debug=debug)
