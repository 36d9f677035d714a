"""Per-view lifetime scope with tracked background tasks.

Every browsing view (an episode list, a comment thread, the notification
bell) owns one ViewScope. Results that arrive after the scope is closed are
dropped, and closing the scope cancels whatever background work it started.
"""

import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


class ViewScope:
    """
    Liveness flag plus a set of tasks owned by one view.

    Usage:
        scope = ViewScope("episode-list")
        scope.create_task(poll(), name="poll")
        ...
        if scope.alive:
            apply(result)
        ...
        await scope.close()
    """

    def __init__(self, name: str = "view"):
        self.name = name
        self._alive = True
        self._tasks: set[asyncio.Task] = set()
        self._named_tasks: dict[str, asyncio.Task] = {}

    @property
    def alive(self) -> bool:
        return self._alive

    def create_task(self, coro: Awaitable[Any], name: str | None = None) -> asyncio.Task:
        """
        Start a tracked background task.

        Failures are logged rather than left as "exception was never
        retrieved" warnings.
        """
        if not self._alive:
            raise RuntimeError(f"Scope {self.name!r} is closed")

        task_name = f"{self.name}:{name or 'unnamed'}"

        async def wrapped_coro():
            try:
                logger.debug(f"Starting task: {task_name}")
                return await coro
            except asyncio.CancelledError:
                logger.debug(f"Task cancelled: {task_name}")
                raise
            except Exception as e:
                logger.error(f"Task failed: {task_name} - {type(e).__name__}: {e}")
                return None

        task = asyncio.create_task(wrapped_coro(), name=task_name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        if name:
            self._named_tasks[name] = task

        return task

    def get_task(self, name: str) -> asyncio.Task | None:
        """Get a running named task."""
        task = self._named_tasks.get(name)
        if task and task.done():
            del self._named_tasks[name]
            return None
        return task

    def cancel_task(self, name: str) -> bool:
        """Cancel a named task. Returns True if one was running."""
        task = self.get_task(name)
        if task is None:
            return False
        task.cancel()
        del self._named_tasks[name]
        return True

    def running_tasks(self) -> list[asyncio.Task]:
        return [t for t in self._tasks if not t.done()]

    async def close(self, timeout: float = 5.0) -> None:
        """Mark the view gone and cancel its tasks."""
        self._alive = False
        current = asyncio.current_task()
        running = [t for t in self.running_tasks() if t is not current]
        self._named_tasks.clear()
        if not running:
            return

        logger.debug(f"Closing scope {self.name!r}, cancelling {len(running)} tasks")
        for task in running:
            task.cancel()

        _, pending = await asyncio.wait(running, timeout=timeout)
        if pending:
            logger.warning(
                f"{len(pending)} tasks in scope {self.name!r} did not finish within {timeout}s"
            )

    async def __aenter__(self) -> "ViewScope":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
