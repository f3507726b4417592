"""
Transactional entity store.

`EntityStore.transaction()` opens one database transaction and yields a
`UnitOfWork` exposing the repositories bound to it. Side effects registered
with `after_commit` are handed to the post-commit queue only once the commit
succeeded; a failed transaction discards them.

A write that loses a race (unique violation or stale version) surfaces as
`ConflictError`; any other database failure as `InternalError`.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
import structlog

from sprintsync.db.repositories.projects import ProjectRepository
from sprintsync.db.repositories.sprints import SprintRepository
from sprintsync.db.repositories.tasks import TaskRepository
from sprintsync.infrastructure.database import Database
from sprintsync.infrastructure.exceptions import ConflictError, InternalError
from sprintsync.infrastructure.post_commit import PostCommitHook, PostCommitQueue

logger = structlog.get_logger(__name__)


class UnitOfWork:
    """Repositories and pending side effects of one transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.projects = ProjectRepository(session)
        self.sprints = SprintRepository(session)
        self.tasks = TaskRepository(session)
        self.hooks: List[PostCommitHook] = []

    def after_commit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Run `fn(*args, **kwargs)` once this transaction has committed."""
        self.hooks.append(PostCommitHook(name=name, fn=fn, args=args, kwargs=kwargs))


class EntityStore:
    """Opens transactions against the database and dispatches their side effects."""

    def __init__(self, database: Database, post_commit: PostCommitQueue):
        self.database = database
        self.post_commit = post_commit

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[UnitOfWork, None]:
        try:
            async with self.database.session() as session:
                uow = UnitOfWork(session)
                yield uow
        except (IntegrityError, StaleDataError) as e:
            logger.warning("transaction_conflict", error_type=type(e).__name__)
            raise ConflictError("Concurrent modification detected, please retry") from e
        except SQLAlchemyError as e:
            logger.error("transaction_failed", error_type=type(e).__name__, error=str(e))
            raise InternalError("Database operation failed") from e
        # Reached only after a successful commit
        if uow.hooks:
            logger.debug("post_commit_dispatch", hooks=[h.name for h in uow.hooks])
            self.post_commit.dispatch(uow.hooks)
