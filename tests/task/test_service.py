"""Tests for the TaskServiceImpl."""

import asyncio
from typing import Any

import pytest

from git_source.task import task_service_context, get_task_service
from git_source.task.service import TaskServiceImpl


@pytest.fixture
def task_service() -> TaskServiceImpl:
    """Fixture for creating a TaskServiceImpl instance."""
    return TaskServiceImpl()


async def test_create_and_complete_task(task_service: TaskServiceImpl) -> None:
    """Test creating and completing a task."""

    async def test_task() -> Any:
        await asyncio.sleep(0.01)
        return "done"

    task = task_service.create_task(test_task())
    assert task_service.get_num_active_tasks() == 1

    result = await task
    assert result == "done"
    await asyncio.sleep(0)
    assert task_service.get_num_active_tasks() == 0


async def test_block_till_done(task_service: TaskServiceImpl) -> None:
    """Test blocking until all tasks are done, including ones they start."""
    finished: list[int] = []

    async def child() -> None:
        await asyncio.sleep(0.01)
        finished.append(2)

    async def parent() -> None:
        await asyncio.sleep(0.01)
        task_service.create_task(child())
        finished.append(1)

    task_service.create_task(parent())
    await task_service.block_till_done()
    assert finished == [1, 2]
    assert task_service.get_num_active_tasks() == 0


async def test_task_failure(task_service: TaskServiceImpl) -> None:
    """Test a failed task is logged and not re-raised by block_till_done."""

    async def failing_task() -> Any:
        raise ValueError("Task failed")

    task = task_service.create_task(failing_task())
    await task_service.block_till_done()
    assert task.done()
    assert isinstance(task.exception(), ValueError)


async def test_cancel_background_tasks(task_service: TaskServiceImpl) -> None:
    """Test background tasks are not waited on and can be cancelled."""
    started = asyncio.Event()

    async def forever() -> None:
        started.set()
        await asyncio.Event().wait()

    task = task_service.create_background_task(forever())
    await started.wait()
    await task_service.block_till_done()
    assert not task.done()

    await task_service.cancel_background_tasks()
    assert task.cancelled()


def test_task_service_context() -> None:
    """Test installing a task service for a context."""
    service = TaskServiceImpl()
    with task_service_context(service) as installed:
        assert installed is service
        assert get_task_service() is service
    assert get_task_service() is not service
