"""Work queue feeding reconciliation workers.

The queue hands out resource keys to workers with these guarantees:

- A key is never handed to two workers at once. A key re-added while it is
  being processed is marked dirty and queued again once `done` is called.
- A key waiting in the queue is held only once, however often it is added.
- `add_after` schedules a key to be added later, keeping only the earliest
  pending timer per key.
"""

import asyncio
from collections import deque
from collections.abc import Hashable
from datetime import timedelta
import logging
from typing import Generic, TypeVar

__all__ = ["WorkQueue", "QueueShutdown"]

_LOGGER = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


class QueueShutdown(Exception):
    """Raised by `get` once the queue has been shut down."""


class WorkQueue(Generic[K]):
    """Per-key single flight queue with delayed re-enqueue."""

    def __init__(self) -> None:
        """Initialize WorkQueue."""
        self._queue: deque[K] = deque()
        self._queued: set[K] = set()
        self._processing: set[K] = set()
        self._dirty: set[K] = set()
        self._timers: dict[K, asyncio.TimerHandle] = {}
        self._wakeup = asyncio.Event()
        self._shutdown = False

    def __len__(self) -> int:
        """Number of keys waiting to be processed."""
        return len(self._queue)

    def add(self, key: K) -> None:
        """Queue a key for processing."""
        if self._shutdown:
            return
        if key in self._processing:
            _LOGGER.debug("Key %s is being processed, marking dirty", key)
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.append(key)
        self._notify()

    def add_after(self, key: K, delay: timedelta) -> None:
        """Queue a key once `delay` has passed."""
        if self._shutdown:
            return
        seconds = max(delay.total_seconds(), 0)
        if seconds == 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + seconds
        if (existing := self._timers.get(key)) is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        _LOGGER.debug("Requeue %s in %s", key, delay)
        self._timers[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key: K) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def forget(self, key: K) -> None:
        """Drop any pending timer and queued entry for a key."""
        if (timer := self._timers.pop(key, None)) is not None:
            timer.cancel()
        self._dirty.discard(key)
        if key in self._queued:
            self._queued.discard(key)
            self._queue.remove(key)

    async def get(self) -> K:
        """Wait for the next key to process.

        The caller must call `done` with the key once it has been processed.
        """
        while not self._queue and not self._shutdown:
            self._wakeup.clear()
            await self._wakeup.wait()
        if self._shutdown:
            raise QueueShutdown()
        key = self._queue.popleft()
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: K) -> None:
        """Mark a key as processed, requeueing it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def shutdown(self) -> None:
        """Stop handing out keys and cancel every pending timer."""
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._notify()

    def _notify(self) -> None:
        self._wakeup.set()
