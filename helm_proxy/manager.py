"""Runs the helm-proxy controllers against a store.

The manager listens for store events, routes them to the objects that need to
be reconciled and feeds those into work queues. Each queue is drained by a
pool of workers with the guarantee that a given object is never reconciled
by two workers at the same time. Failed attempts are retried with bounded
exponential backoff.

```python
manager = Manager(
    store, router, chart_proxy_controller, release_proxy_controller, ManagerConfig()
)
await manager.start()
await manager.block_till_idle()
await manager.close()
```
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging

from .chart_proxy_controller import EventRouter
from .exceptions import HelmProxyException
from .manifest import (
    HelmChartProxy,
    HelmReleaseProxy,
    KubeObject,
    NamedResource,
    CLUSTER_KIND,
    CLUSTER_NAME_LABEL,
    HELM_CHART_PROXY,
    HELM_RELEASE_PROXY,
)
from .reconcile import Reconciler, ReconcileResult
from .store import Store, StoreEvent
from .task import TaskService, get_task_service

__all__ = [
    "Manager",
    "ManagerConfig",
    "WorkQueue",
]

_LOGGER = logging.getLogger(__name__)

_ROUTED_KINDS = {CLUSTER_KIND, HELM_CHART_PROXY, HELM_RELEASE_PROXY}


@dataclass
class ManagerConfig:
    """Configuration for the Manager."""

    workers: int = 4
    """Number of concurrent workers per object kind."""

    reconcile_timeout: float = 300.0
    """Seconds a single reconcile attempt may run before it is abandoned."""

    backoff_base: float = 1.0
    """Seconds to wait before the first retry of a failed reconcile."""

    backoff_max: float = 300.0
    """Upper bound on the retry delay."""

    max_retries: int | None = None
    """Give up on an object after this many consecutive failures, never if unset."""


class WorkQueue:
    """A queue of object identities with per-key mutual exclusion.

    A key is held at most once in the queue. A key added while it is being
    processed is queued again once processing is done, so the latest state is
    always reconciled without two workers handling the same key.
    """

    def __init__(self, name: str) -> None:
        """Initialize WorkQueue."""
        self._name = name
        self._queue: asyncio.Queue[NamedResource] = asyncio.Queue()
        self._queued: set[NamedResource] = set()
        self._processing: set[NamedResource] = set()
        self._dirty: set[NamedResource] = set()
        self._timers: dict[NamedResource, asyncio.TimerHandle] = {}
        self._failures: dict[NamedResource, int] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def idle(self) -> bool:
        """Return True if no key is queued, in progress or waiting on a timer."""
        return not (self._queued or self._processing or self._timers)

    def _update_idle(self) -> None:
        if self.idle:
            self._idle.set()
        else:
            self._idle.clear()

    def add(self, key: NamedResource) -> None:
        """Queue the key unless it is already queued."""
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)
        self._update_idle()

    def add_after(self, key: NamedResource, delay: float) -> None:
        """Queue the key after a delay, keeping the earliest pending timer."""
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        if (timer := self._timers.get(key)) is not None:
            if timer.when() <= when:
                return
            timer.cancel()
        self._timers[key] = loop.call_at(when, self._timer_fired, key)
        self._update_idle()

    def _timer_fired(self, key: NamedResource) -> None:
        self._timers.pop(key, None)
        self.add(key)
        self._update_idle()

    async def get(self) -> NamedResource:
        """Wait for the next key and mark it as being processed."""
        key = await self._queue.get()
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: NamedResource) -> None:
        """Mark processing of the key as finished."""
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)
        self._update_idle()

    def record_failure(self, key: NamedResource) -> int:
        """Count a failed attempt for the key, returning the consecutive failures."""
        self._failures[key] = self._failures.get(key, 0) + 1
        return self._failures[key]

    def forget(self, key: NamedResource) -> None:
        """Reset the failure count of the key."""
        self._failures.pop(key, None)

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def shutdown(self) -> None:
        """Cancel all pending timers."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._update_idle()


class Manager:
    """Drives the HelmChartProxy and HelmReleaseProxy controllers."""

    def __init__(
        self,
        store: Store,
        router: EventRouter,
        chart_proxy_controller: Reconciler,
        release_proxy_controller: Reconciler,
        config: ManagerConfig,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize the Manager.

        Args:
            store: The store to watch for changes
            router: Maps store events to the HelmChartProxy objects to reconcile
            chart_proxy_controller: Reconciles HelmChartProxy objects
            release_proxy_controller: Reconciles HelmReleaseProxy objects
            config: The configuration for the manager
            task_service: Tracks the tasks created by the manager
        """
        self._store = store
        self._router = router
        self._config = config
        self._task_service = task_service or get_task_service()
        self._chart_proxy_queue = WorkQueue(HELM_CHART_PROXY)
        self._release_proxy_queue = WorkQueue(HELM_RELEASE_PROXY)
        self._reconcilers = {
            HELM_CHART_PROXY: (self._chart_proxy_queue, chart_proxy_controller),
            HELM_RELEASE_PROXY: (self._release_proxy_queue, release_proxy_controller),
        }
        self._removers: list[Callable[[], None]] = []

    @property
    def queues(self) -> list[WorkQueue]:
        return [self._chart_proxy_queue, self._release_proxy_queue]

    async def start(self) -> None:
        """Register store listeners, start the workers and queue existing objects."""
        for event in StoreEvent:
            self._removers.append(self._store.add_listener(event, self._on_event))
        for kind, (queue, reconciler) in self._reconcilers.items():
            for i in range(self._config.workers):
                self._task_service.create_background_task(
                    self._worker(queue, reconciler), name=f"{kind}-worker-{i}"
                )
        for proxy in await self._store.list_objects(HelmChartProxy):
            self._chart_proxy_queue.add(proxy.resource_id)
        for release_proxy in await self._store.list_objects(HelmReleaseProxy):
            self._release_proxy_queue.add(release_proxy.resource_id)
        _LOGGER.info(
            "Manager started with %d workers per kind", self._config.workers
        )

    async def close(self) -> None:
        """Stop listening for events and cancel the workers."""
        for remove in self._removers:
            remove()
        self._removers.clear()
        for queue in self.queues:
            queue.shutdown()
        await self._task_service.cancel_background_tasks()

    async def block_till_idle(self) -> None:
        """Wait until no event is being routed and every queue is idle."""
        while True:
            await self._task_service.block_till_done()
            await asyncio.gather(*(queue.wait_idle() for queue in self.queues))
            if self._task_service.get_num_active_tasks() == 0 and all(
                queue.idle for queue in self.queues
            ):
                return

    def _on_event(self, resource_id: NamedResource, obj: KubeObject) -> None:
        if resource_id.kind not in _ROUTED_KINDS:
            return
        self._task_service.create_task(
            self._route(resource_id, obj), name=f"route {resource_id}"
        )

    async def _route(self, resource_id: NamedResource, obj: KubeObject) -> None:
        for request in await self._router.map_event(resource_id, obj):
            self._chart_proxy_queue.add(request)
        if resource_id.kind == HELM_RELEASE_PROXY:
            self._release_proxy_queue.add(resource_id)
        elif resource_id.kind == CLUSTER_KIND:
            # Releases are uninstalled or kept based on the state of their Cluster
            try:
                release_proxies = await self._store.list_objects(
                    HelmReleaseProxy,
                    namespace=resource_id.namespace,
                    labels={CLUSTER_NAME_LABEL: resource_id.name},
                )
            except HelmProxyException as err:
                _LOGGER.error("Unable to map event for %s: %s", resource_id, err)
                return
            for release_proxy in release_proxies:
                self._release_proxy_queue.add(release_proxy.resource_id)

    async def _worker(self, queue: WorkQueue, reconciler: Reconciler) -> None:
        while True:
            key = await queue.get()
            try:
                result = await self._reconcile(reconciler, key)
            except (HelmProxyException, TimeoutError) as err:
                self._retry(queue, key, err)
            except Exception as err:  # pylint: disable=broad-except
                _LOGGER.exception("Unexpected error reconciling %s", key)
                self._retry(queue, key, err)
            else:
                queue.forget(key)
                if result.requeue_after is not None:
                    _LOGGER.debug(
                        "Requeue %s in %.1fs", key, result.requeue_after
                    )
                    queue.add_after(key, result.requeue_after)
            finally:
                queue.done(key)

    async def _reconcile(
        self, reconciler: Reconciler, key: NamedResource
    ) -> ReconcileResult:
        async with asyncio.timeout(self._config.reconcile_timeout):
            return await reconciler.reconcile(key)

    def _retry(self, queue: WorkQueue, key: NamedResource, err: Exception) -> None:
        """Schedule a retry after a failed attempt with bounded exponential backoff."""
        attempt = queue.record_failure(key)
        if self._config.max_retries is not None and attempt > self._config.max_retries:
            _LOGGER.error(
                "Giving up on %s after %d failed attempts: %s", key, attempt, err
            )
            queue.forget(key)
            return
        delay = min(
            self._config.backoff_max, self._config.backoff_base * 2 ** (attempt - 1)
        )
        _LOGGER.warning(
            "Reconcile of %s failed; scheduling retry attempt %d in %.1fs: %s",
            key,
            attempt,
            delay,
            err,
        )
        queue.add_after(key, delay)
