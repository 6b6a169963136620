"""Task tracking service for the source controller.

Reconciliation workers run as long lived background tasks, while one-off
work such as deleting the artifacts of a removed resource runs as regular
tasks that callers can wait on with `block_till_done`.
"""

import asyncio
from abc import ABC, abstractmethod
from functools import partial
import logging
from typing import Any, Coroutine

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskService(ABC):
    """Service for tracking and waiting for asynchronous tasks."""

    @abstractmethod
    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task.

        Args:
            coro: The coroutine to run as a task
            name: Optional name of the task, used in logs

        Returns:
            The created task
        """

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new long running background task.

        Background tasks are not waited on by `block_till_done`.
        """

    @abstractmethod
    async def block_till_done(self) -> None:
        """Wait for all active non-background tasks to complete."""

    @abstractmethod
    async def cancel_background_tasks(self) -> None:
        """Cancel every background task and wait for them to exit."""

    @abstractmethod
    def get_num_active_tasks(self) -> int:
        """Get the number of active non-background tasks."""


class TaskServiceImpl(TaskService):
    """Default TaskService implementation backed by asyncio tasks."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._active_tasks: set[asyncio.Task[Any]] = set()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task."""
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(partial(self._task_done, self._active_tasks))
        return task

    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new background task."""
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(partial(self._task_done, self._background_tasks))
        return task

    def _task_done(
        self, task_set: set[asyncio.Task[Any]], task: asyncio.Task[Any]
    ) -> None:
        """Callback when a task is done, logging any unhandled failure."""
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            _LOGGER.error("Task %s failed: %s", task.get_name(), e)
        finally:
            task_set.discard(task)

    async def block_till_done(self) -> None:
        """Wait for all active tasks to complete.

        Tasks created while waiting are waited on as well.
        """
        while active_tasks := list(self._active_tasks):
            _LOGGER.debug("Waiting for %d tasks to complete", len(active_tasks))
            await asyncio.gather(*active_tasks, return_exceptions=True)
        await asyncio.sleep(0)

    async def cancel_background_tasks(self) -> None:
        """Cancel every background task and wait for them to exit."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_num_active_tasks(self) -> int:
        """Get the number of active tasks."""
        return len(self._active_tasks)
