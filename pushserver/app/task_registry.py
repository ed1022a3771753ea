"""
TaskRegistry for the push server's background tasks.

Tracks the asyncio tasks started for one worker (the poll and heartbeat
loops) so they can be cancelled together, within a timeout, on shutdown.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class TaskMetadata:
    """Metadata for tracked asyncio.Tasks."""

    def __init__(self, task: asyncio.Task[Any], task_name: str, task_type: str = "unknown"):
        """
        Initialize task metadata.

        Args:
            task: The asyncio.Task instance to track
            task_name: Human-readable name for this task
            task_type: Categorization of task (e.g. 'scheduler')
        """
        self.task = task
        self.task_name = task_name
        self.task_type = task_type
        self.created_at = asyncio.get_running_loop().time()

    def __repr__(self):
        status = "done" if self.task.done() else "pending"
        return f"TaskMetadata({self.task_name}, {self.task_type}, {status})"


class TaskRegistry:
    """
    Asyncio task registry with timeout-bounded shutdown.

    Finished tasks remove themselves through a done callback.
    """

    def __init__(self) -> None:
        self._active_tasks: dict[asyncio.Task[Any], TaskMetadata] = {}
        self._task_names: dict[str, asyncio.Task[Any]] = {}
        self._shutdown_in_progress = False

    def register_task(
        self, coro: Coroutine[Any, Any, Any], task_name: str, task_type: str = "unknown"
    ) -> asyncio.Task[Any]:
        """
        Register and create a tracked asyncio.Task.

        Args:
            coro: The coroutine to wrap as a task
            task_name: Human-readable identifier for this task
            task_type: Category for task management

        Returns:
            The created asyncio.Task that is now tracked

        Raises:
            RuntimeError: If shutdown is already in progress
        """
        if self._shutdown_in_progress:
            coro.close()
            logger.warning("Attempting to register task during shutdown - denied", task_name=task_name)
            raise RuntimeError("Task registration denied during shutdown")

        if task_name in self._task_names:
            logger.debug("Task name already exists, appending loop time", task_name=task_name)
            task_name = f"{task_name}_{asyncio.get_running_loop().time()}"

        task: asyncio.Task[Any] = asyncio.create_task(coro, name=task_name)
        self._active_tasks[task] = TaskMetadata(task, task_name, task_type)
        self._task_names[task_name] = task

        def task_completion_callback(completed_task: asyncio.Task[Any]) -> None:
            """Automatic cleanup when task completes."""
            self._active_tasks.pop(completed_task, None)
            if self._task_names.get(task_name) is completed_task:
                del self._task_names[task_name]
            if not completed_task.cancelled() and completed_task.exception() is not None:
                logger.error(
                    "Background task failed",
                    task_name=task_name,
                    error=str(completed_task.exception()),
                )
            else:
                logger.debug("Task completed and cleaned up", task_name=task_name)

        task.add_done_callback(task_completion_callback)

        logger.debug("Registered task", task_name=task_name, task_type=task_type)
        return task

    async def shutdown_all(self, timeout: float = 5.0) -> bool:
        """
        Cancel every tracked task and wait for them to finish.

        Args:
            timeout: Maximum seconds to wait for cancelled tasks

        Returns:
            True if every task finished within the timeout
        """
        if self._shutdown_in_progress:
            logger.warning("Shutdown already in progress")
            return False

        self._shutdown_in_progress = True
        tasks = [task for task in self._active_tasks if not task.done()]
        for task in tasks:
            task.cancel()

        logger.info("Cancelled active tasks - awaiting completion", cancelled_count=len(tasks))

        success = True
        if tasks:
            try:
                await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout)
            except TimeoutError:
                logger.error("TaskRegistry shutdown timeout", timeout=timeout)
                success = False

        remaining = [m.task_name for m in self._active_tasks.values() if not m.task.done()]
        if remaining:
            logger.warning("Tasks still active after shutdown", active_tasks=remaining)
            success = False
        else:
            logger.info("All background tasks terminated")

        self._shutdown_in_progress = False
        return success

    def list_active_tasks(self) -> list[TaskMetadata]:
        """Return list of currently registered TaskMetadata."""
        return [m for m in self._active_tasks.values() if not m.task.done()]

    def get_registry_info(self) -> dict[str, Any]:
        return {
            "active_tasks": len(self.list_active_tasks()),
            "task_names": sorted(self._task_names),
            "registry_shutdown_in_progress": self._shutdown_in_progress,
        }
