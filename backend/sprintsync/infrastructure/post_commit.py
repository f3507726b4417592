"""
Post-commit side effects.

Transactions record hooks (cache invalidation, broadcasts, audit entries,
notifications) while they run; the store hands them to this queue only after
a successful commit, so a rolled-back write never produces side effects.
Synchronous hooks run inline; coroutine hooks run as background tasks so they
never hold up the caller's response. Failures are logged, never raised.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Set, Tuple

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class PostCommitHook:
    name: str
    fn: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


class PostCommitQueue:
    """Runs hooks of committed transactions and tracks background work."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    def dispatch(self, hooks: Iterable[PostCommitHook]) -> None:
        for hook in hooks:
            try:
                result = hook.fn(*hook.args, **hook.kwargs)
            except Exception as e:
                self._record_failure(hook, e)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(self._await(hook, result))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            else:
                self.completed += 1

    async def _await(self, hook: PostCommitHook, awaitable) -> None:
        try:
            await awaitable
            self.completed += 1
        except Exception as e:
            self._record_failure(hook, e)

    def _record_failure(self, hook: PostCommitHook, error: Exception) -> None:
        self.failed += 1
        logger.error(
            "post_commit_hook_failed",
            hook=hook.name,
            error_type=type(error).__name__,
            error=str(error),
            exc_info=error,
        )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all background hooks scheduled so far (and any they schedule)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
