"""Task tracking and work scheduling for the source controller.

The task service tracks the asyncio tasks started by the controller so they
can be waited on or cancelled together. The work queue hands resource keys
to reconciliation workers.
"""

from .context import task_service_context, get_task_service
from .queue import QueueShutdown, WorkQueue
from .service import TaskService

__all__ = [
    "get_task_service",
    "task_service_context",
    "TaskService",
    "QueueShutdown",
    "WorkQueue",
]
