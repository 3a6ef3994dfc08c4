"""Module for in memory object store."""

import asyncio
import copy
import dataclasses
import datetime
from collections import defaultdict
from collections.abc import Callable, AsyncGenerator
from typing import Any, TypeVar, DefaultDict

import logging

from helm_proxy.manifest import KubeObject, NamedResource
from helm_proxy.exceptions import ConflictError, ObjectNotFoundError

from .store import Store, StoreEvent


_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Objects are keyed by NamedResource and copied on every read and write.
    Supports event listeners for object changes.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, KubeObject] = {}
        self._resource_version = 0
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )

    def _next_version(self) -> int:
        self._resource_version += 1
        return self._resource_version

    def _lookup(self, cls: type[T], resource_id: NamedResource) -> T:
        obj = self._objects.get(resource_id)
        if obj is None:
            raise ObjectNotFoundError(f"{resource_id} not found")
        if not isinstance(obj, cls):
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type "
                f"{cls.__name__} (was {obj.__class__.__name__})"
            )
        return obj

    async def get(self, cls: type[T], resource_id: NamedResource) -> T:
        """Retrieve an object by resource identity and type."""
        return copy.deepcopy(self._lookup(cls, resource_id))

    async def list_objects(
        self,
        cls: type[T],
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[T]:
        """List objects of a type, optionally filtered by namespace and labels."""
        result = []
        for resource_id, obj in sorted(
            self._objects.items(), key=lambda item: str(item[0])
        ):
            if resource_id.kind != cls.kind or not isinstance(obj, cls):
                continue
            if namespace is not None and obj.namespace != namespace:
                continue
            if labels and any(obj.labels.get(k) != v for k, v in labels.items()):
                continue
            result.append(copy.deepcopy(obj))
        return result

    async def create(self, obj: T) -> T:
        """Create a new object, returning the stored copy."""
        resource_id = obj.resource_id
        if resource_id in self._objects:
            raise ConflictError(f"{resource_id} already exists")
        _LOGGER.debug("Adding object %s to store", resource_id)
        stored = copy.deepcopy(obj)
        stored.generation = 1
        stored.resource_version = self._next_version()
        self._objects[resource_id] = stored
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, stored)
        return copy.deepcopy(stored)

    async def update(self, obj: T) -> T:
        """Replace an object, excluding its status."""
        resource_id = obj.resource_id
        existing = self._lookup(type(obj), resource_id)
        if obj.resource_version != existing.resource_version:
            raise ConflictError(
                f"{resource_id} was modified (version {obj.resource_version} "
                f"!= {existing.resource_version})"
            )
        updated = copy.deepcopy(obj)
        if hasattr(existing, "status"):
            updated.status = copy.deepcopy(
                existing.status  # type: ignore[attr-defined]
            )
        updated.deletion_timestamp = existing.deletion_timestamp
        updated.generation = existing.generation
        if updated.spec_dict() != existing.spec_dict():
            updated.generation += 1
        if updated == existing:
            _LOGGER.debug("Object %s unchanged, skipping", resource_id)
            return copy.deepcopy(existing)
        updated.resource_version = self._next_version()
        if updated.is_terminating and not updated.finalizers:
            _LOGGER.debug("Finalizers cleared, removing %s from store", resource_id)
            del self._objects[resource_id]
            self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, updated)
            return copy.deepcopy(updated)
        _LOGGER.debug("Updating existing object %s in store", resource_id)
        self._objects[resource_id] = updated
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, updated)
        return copy.deepcopy(updated)

    async def update_status(self, obj: T) -> T:
        """Replace only the status of an object."""
        resource_id = obj.resource_id
        existing = self._lookup(type(obj), resource_id)
        if not hasattr(obj, "status"):
            raise ValueError(
                f"Resource kind {resource_id.kind} does not support status updates"
            )
        updated = copy.deepcopy(existing)
        updated.status = copy.deepcopy(obj.status)  # type: ignore[attr-defined]
        if updated == existing:
            return copy.deepcopy(existing)
        _LOGGER.debug("Updating status for %s", resource_id)
        updated.resource_version = self._next_version()
        self._objects[resource_id] = updated
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, updated)
        return copy.deepcopy(updated)

    async def delete(self, cls: type[T], resource_id: NamedResource) -> None:
        """Request deletion of an object."""
        existing = self._lookup(cls, resource_id)
        if existing.finalizers:
            if existing.is_terminating:
                _LOGGER.debug("Object %s is already being deleted", resource_id)
                return
            _LOGGER.debug(
                "Marking %s for deletion, waiting on finalizers %s",
                resource_id,
                existing.finalizers,
            )
            updated = dataclasses.replace(
                existing,
                deletion_timestamp=datetime.datetime.now(datetime.timezone.utc),
                resource_version=self._next_version(),
            )
            self._objects[resource_id] = updated
            self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, updated)
            return
        _LOGGER.debug("Removing %s from store", resource_id)
        del self._objects[resource_id]
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, existing)

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, KubeObject], None],
    ) -> Callable[[], None]:
        """Register a callback for a specific event."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)
        return remove

    def _fire_event(
        self, event: StoreEvent, resource_id: NamedResource, obj: KubeObject
    ) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(resource_id, copy.deepcopy(obj))
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)

    async def watch(
        self, kind: str
    ) -> AsyncGenerator[tuple[StoreEvent, NamedResource, KubeObject]]:
        """
        Watch for changes to objects of a specific kind.

        Existing objects are yielded first as OBJECT_ADDED events, followed by
        every event for the kind as it happens. Listeners are registered before
        existing objects are replayed so no change is missed in between.
        """
        queue: asyncio.Queue[tuple[StoreEvent, NamedResource, KubeObject]] = (
            asyncio.Queue()
        )
        removers = []
        for event in StoreEvent:

            def callback(
                resource_id: NamedResource, obj: KubeObject, event: Any = event
            ) -> None:
                if resource_id.kind == kind:
                    queue.put_nowait((event, resource_id, obj))

            removers.append(self.add_listener(event, callback))

        try:
            for resource_id, obj in list(self._objects.items()):  # Iterate over a copy
                if resource_id.kind == kind:
                    yield StoreEvent.OBJECT_ADDED, resource_id, copy.deepcopy(obj)
            while True:
                item = await queue.get()
                yield item
                queue.task_done()
        except asyncio.CancelledError:
            _LOGGER.debug("watch for kind '%s' cancelled.", kind)
            raise
        finally:
            _LOGGER.debug("Cleaning up listeners for watch (kind: %s)", kind)
            for remove in removers:
                remove()
