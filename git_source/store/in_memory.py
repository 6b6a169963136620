"""Module for in memory object store."""

import copy
import dataclasses
from collections import defaultdict
from collections.abc import Callable
from typing import Any, TypeVar, DefaultDict

import logging

from git_source.manifest import BaseManifest, NamedResource
from git_source.exceptions import StatusUpdateError

from .status import GitRepositoryStatus
from .store import Store, StoreEvent


_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseManifest)


def _resource_id(obj: BaseManifest) -> NamedResource:
    if (
        not hasattr(obj, "kind")
        or not hasattr(obj, "namespace")
        or not hasattr(obj, "name")
    ):
        raise ValueError("Object must have kind, namespace, and name attributes")
    return NamedResource(obj.kind, getattr(obj, "namespace", None), obj.name)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Stores manifest objects and status keyed by NamedResource. Status values
    are copied on the way in and out so callers cannot mutate stored state
    without going through `update_status`.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, BaseManifest] = {}
        self._status: dict[NamedResource, GitRepositoryStatus] = {}
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )

    def add_object(self, obj: BaseManifest) -> None:
        """Add a manifest object to the store."""
        resource_id = _resource_id(obj)
        _LOGGER.debug("Adding object %s to store", resource_id)
        if (existing := self._objects.get(resource_id)) is not None:
            if dataclasses.asdict(existing) == dataclasses.asdict(obj):
                _LOGGER.debug(
                    "Object %s already exists in store, skipping", resource_id
                )
                return
            _LOGGER.debug("Updating existing object %s in store", resource_id)

        self._objects[resource_id] = obj
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, obj)

    def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve a manifest object by resource identity and type."""
        obj = self._objects.get(resource_id)
        if obj is not None:
            if isinstance(obj, cls):
                return obj
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type {cls.__name__} (was {obj.__class__.__name__})"
            )
        return None

    def delete_object(self, resource_id: NamedResource) -> None:
        """Remove a manifest object and its status from the store."""
        if (obj := self._objects.pop(resource_id, None)) is None:
            _LOGGER.debug("Object %s not in store, nothing to delete", resource_id)
            return
        self._status.pop(resource_id, None)
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, obj)

    def list_objects(self, kind: str | None = None) -> list[BaseManifest]:
        """List all manifest objects in the store, optionally filtered by kind."""
        if kind is None:
            return list(self._objects.values())
        return [
            obj for obj in self._objects.values() if getattr(obj, "kind", None) == kind
        ]

    def update_status(
        self, resource_id: NamedResource, status: GitRepositoryStatus
    ) -> None:
        """Replace the status of a resource."""
        if resource_id not in self._objects:
            raise StatusUpdateError(
                f"Cannot update status of {resource_id}: object not found"
            )
        _LOGGER.debug("Updating status for resource %s to %s", resource_id, status)
        self._status[resource_id] = copy.deepcopy(status)
        self._fire_event(
            StoreEvent.STATUS_UPDATED, resource_id, copy.deepcopy(status)
        )

    def get_status(self, resource_id: NamedResource) -> GitRepositoryStatus | None:
        """Retrieve the status for a resource."""
        if (status := self._status.get(resource_id)) is None:
            return None
        return copy.deepcopy(status)

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Any], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a specific event."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)

        if flush:
            _LOGGER.debug("Flushing objects for event type %s", event)
            for rid, obj in list(self._objects.items()):
                if event == StoreEvent.OBJECT_ADDED:
                    callback(rid, obj)
                elif event == StoreEvent.STATUS_UPDATED:
                    if (status := self.get_status(rid)) is not None:
                        callback(rid, status)

        return remove

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)
