"""
The store module holds the desired and observed state of the resources the
controller reconciles.

- Uses NamedResource as the key for all objects.
- Stores objects as dataclass instances from manifest.py.
- Holds one GitRepositoryStatus per resource, written only by the controller.
- Fires events when objects are added, deleted or their status changes.

This abstract interface allows for various implementations (in-memory, backed
by an API server, etc.).
"""

from .store import Store, StoreEvent
from .in_memory import InMemoryStore
from .status import (
    ConditionStatus,
    GitRepositoryStatus,
    Reason,
    SourceCondition,
)

__all__ = [
    "Store",
    "StoreEvent",
    "InMemoryStore",
    "ConditionStatus",
    "GitRepositoryStatus",
    "Reason",
    "SourceCondition",
]
