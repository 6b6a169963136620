"""Store module holding the objects and status the controller reconciles."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from git_source.manifest import BaseManifest, NamedResource

from .status import GitRepositoryStatus

T = TypeVar("T", bound=BaseManifest)


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_DELETED = "object_deleted"
    STATUS_UPDATED = "status_updated"


class Store(ABC):
    """Abstract base class for the control plane object store with listener support.

    The store plays the role of the API server: it owns the desired state of
    each resource and is the only place a reconciliation writes its observed
    status to.
    """

    @abstractmethod
    def add_object(self, obj: BaseManifest) -> None:
        """Add or replace a manifest object in the store."""

    @abstractmethod
    def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve a manifest object by resource identity and type."""

    @abstractmethod
    def delete_object(self, resource_id: NamedResource) -> None:
        """Remove a manifest object and its status from the store."""

    @abstractmethod
    def list_objects(self, kind: str | None = None) -> list[BaseManifest]:
        """List all manifest objects in the store, optionally filtered by kind."""

    @abstractmethod
    def update_status(
        self, resource_id: NamedResource, status: GitRepositoryStatus
    ) -> None:
        """Replace the status of a resource.

        Raises:
            StatusUpdateError: If the status could not be written.
        """

    @abstractmethod
    def get_status(self, resource_id: NamedResource) -> GitRepositoryStatus | None:
        """Retrieve the status for a resource."""

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Any], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a specific event.

        When `flush` is set, OBJECT_ADDED and STATUS_UPDATED callbacks are
        invoked immediately for the current contents of the store.

        Returns a callable that can be called to remove the listener.
        """
