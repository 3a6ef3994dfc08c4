"""Store module for the objects reconciled by helm-proxy."""

from abc import ABC, abstractmethod
from collections.abc import Callable, AsyncGenerator
from enum import Enum
from typing import TypeVar, TYPE_CHECKING

from helm_proxy.manifest import KubeObject, NamedResource

T = TypeVar("T", bound=KubeObject)


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_UPDATED = "object_updated"
    OBJECT_DELETED = "object_deleted"


class Store(ABC):
    """Abstract base class for the object store with listener support.

    Single object reads and writes are linearizable. Writes use optimistic
    concurrency: an update must carry the `resource_version` it was read at.
    Objects returned by the store are copies, mutating them has no effect
    until they are written back.
    """

    @abstractmethod
    async def get(self, cls: type[T], resource_id: NamedResource) -> T:
        """Retrieve an object by resource identity and type.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def list_objects(
        self,
        cls: type[T],
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[T]:
        """List objects of a type, optionally filtered by namespace and labels.

        Every label in `labels` must be present with an equal value.
        """

    @abstractmethod
    async def create(self, obj: T) -> T:
        """Create a new object, returning the stored copy.

        Raises:
            ConflictError: If an object with the same identity exists.
        """

    @abstractmethod
    async def update(self, obj: T) -> T:
        """Replace an object, excluding its status.

        Removing the last finalizer from an object that is being deleted
        removes the object from the store.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            ConflictError: If the object was modified since it was read.
        """

    @abstractmethod
    async def update_status(self, obj: T) -> T:
        """Replace only the status of an object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def delete(self, cls: type[T], resource_id: NamedResource) -> None:
        """Request deletion of an object.

        An object with finalizers is marked with a deletion timestamp and
        removed once its finalizers are cleared.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, KubeObject], None],
    ) -> Callable[[], None]:
        """Register a callback for a specific event.

        Returns a callable that can be called to remove the listener.
        """

    @abstractmethod
    async def watch(
        self, kind: str
    ) -> AsyncGenerator[tuple[StoreEvent, NamedResource, KubeObject]]:
        """
        Watch for changes to objects of a specific kind.

        This is an asynchronous iterator that first yields an OBJECT_ADDED
        event for every existing object of the kind, then every subsequent
        event for the kind as it happens.

        Args:
            kind: The kind of resource to watch for (e.g. "Cluster").
        """
        if TYPE_CHECKING:
            yield None, None, None  # type: ignore[misc]
