"""Helpers for running blocking work from the event loop."""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

__all__ = ["run_blocking"]

R = TypeVar("R")


async def run_blocking(func: Callable[..., R], /, *args: Any, **kwargs: Any) -> R:
    """Run a blocking call in a worker thread.

    A thread cannot be interrupted, so when the caller is cancelled this waits
    for the call to finish before re-raising the cancellation. Callers may then
    release any files or directories the call was using.
    """
    future = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait([future])
        if not future.cancelled():
            future.exception()
        raise
