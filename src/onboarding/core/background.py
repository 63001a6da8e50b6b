"""Bounded runner for best-effort work (CRM sync, notes, cleanup).

Callers hand over a coroutine factory and move on; they never await the result.
Every task gets its own timeout, and failures surface in logs and metrics
instead of being raised into the request that scheduled them.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from src.onboarding.core.config import get_settings
from src.onboarding.core.logging import get_logger
from src.onboarding.core.metrics import BACKGROUND_TASKS

logger = get_logger(__name__)


class BackgroundRunner:
    """Runs fire-and-forget tasks with a concurrency bound and per-task timeout."""

    def __init__(self, max_workers: int, timeout: float):
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max_workers)
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        name: str,
        factory: Callable[[], Awaitable[Any]],
        timeout: float | None = None,
    ) -> asyncio.Task[Any]:
        """Schedule ``factory()`` and return its task as a completion signal.

        The factory is only invoked once a worker slot is free, so work that
        opens sessions or sockets does not start before it can run.
        """
        task = asyncio.create_task(
            self._run(name, factory, timeout or self.timeout), name=f"background:{name}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        name: str,
        factory: Callable[[], Awaitable[Any]],
        timeout: float,
    ) -> Any:
        async with self._semaphore:
            try:
                result = await asyncio.wait_for(factory(), timeout=timeout)
            except TimeoutError:
                BACKGROUND_TASKS.labels(task=name, outcome="timeout").inc()
                logger.warning("Background task timed out", task=name, timeout=timeout)
                return None
            except asyncio.CancelledError:
                BACKGROUND_TASKS.labels(task=name, outcome="cancelled").inc()
                raise
            except Exception as e:
                BACKGROUND_TASKS.labels(task=name, outcome="failure").inc()
                logger.warning("Background task failed", task=name, error=str(e), exc_info=e)
                return None
            BACKGROUND_TASKS.labels(task=name, outcome="success").inc()
            logger.debug("Background task completed", task=name)
            return result

    async def drain(self, timeout: float) -> bool:
        """Wait for in-flight tasks. Returns False if some were still running at timeout."""
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("Background tasks still running at drain timeout", count=len(pending))
            for task in pending:
                task.cancel()
            return False
        return True


_runner: BackgroundRunner | None = None


def get_background_runner() -> BackgroundRunner:
    """Get the process-wide background runner."""
    global _runner
    if _runner is None:
        settings = get_settings()
        _runner = BackgroundRunner(
            max_workers=settings.background_max_workers,
            timeout=settings.background_task_timeout_seconds,
        )
    return _runner


def reset_background_runner() -> None:
    """Forget the runner (tests create a fresh one per event loop)."""
    global _runner
    _runner = None
