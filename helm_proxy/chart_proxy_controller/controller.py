"""HelmChartProxy controller implementation.

Each reconcile re-derives the desired HelmReleaseProxy set from scratch:

1. A terminating HelmChartProxy has its HelmReleaseProxy objects torn down
   before its finalizer is removed.
2. An active HelmChartProxy gets its finalizer, then the Clusters matched by
   its selector are diffed against the existing HelmReleaseProxy objects and
   the resulting actions are applied.
3. The conditions of the HelmReleaseProxy objects are rolled up into the
   HelmChartProxy status, which is only written when it changed.

Failures are recorded on the HelmChartProxy status and re-raised so that the
caller can retry.
"""

from dataclasses import replace
import logging

from helm_proxy.conditions import (
    Condition,
    Severity,
    READY_CONDITION,
    RELEASE_PROXY_SPECS_UP_TO_DATE_CONDITION,
    CLUSTER_SELECTION_FAILED_REASON,
    FINALIZER_UPDATE_FAILED_REASON,
    RELEASE_PROXY_DELETION_FAILED_REASON,
    RELEASE_PROXY_RECONCILE_FAILED_REASON,
    ConditionStatus,
    false_condition,
    get_condition,
    set_condition,
    true_condition,
)
from helm_proxy.exceptions import HelmProxyException, ObjectNotFoundError
from helm_proxy.manifest import (
    Cluster,
    HelmChartProxy,
    HelmReleaseProxy,
    NamedResource,
)
from helm_proxy.reconcile import ControllerConfig, ReconcileResult, Reconciler
from helm_proxy.selector import ClusterSelectorEngine
from helm_proxy.store import Store
from helm_proxy.values import TemplateResolver

from .aggregator import StatusAggregator
from .lifecycle import LifecycleCoordinator
from .reconciler import ChildSetReconciler

_LOGGER = logging.getLogger(__name__)


class HelmChartProxyController(Reconciler):
    """Controller for reconciling HelmChartProxy objects."""

    def __init__(
        self,
        store: Store,
        config: ControllerConfig,
        selector: ClusterSelectorEngine | None = None,
        reconciler: ChildSetReconciler | None = None,
        lifecycle: LifecycleCoordinator | None = None,
        aggregator: StatusAggregator | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            store: The store holding HelmChartProxy, HelmReleaseProxy and
                Cluster objects
            config: The configuration for the controller
            selector: Resolves cluster selectors, built from the store if unset
            reconciler: Plans and applies HelmReleaseProxy changes
            lifecycle: Manages the HelmChartProxy finalizer
            aggregator: Rolls up HelmReleaseProxy conditions
        """
        self._store = store
        self._config = config
        self._selector = selector or ClusterSelectorEngine(store)
        self._reconciler = reconciler or ChildSetReconciler(store, TemplateResolver())
        self._lifecycle = lifecycle or LifecycleCoordinator(store)
        self._aggregator = aggregator or StatusAggregator()

    async def reconcile(self, resource_id: NamedResource) -> ReconcileResult:
        """Reconcile the HelmChartProxy with the given identity."""
        try:
            parent = await self._store.get(HelmChartProxy, resource_id)
        except ObjectNotFoundError:
            _LOGGER.debug("HelmChartProxy %s no longer exists", resource_id)
            return ReconcileResult()

        if parent.is_terminating:
            return await self._reconcile_delete(parent)
        return await self._reconcile_normal(parent)

    async def _reconcile_delete(self, parent: HelmChartProxy) -> ReconcileResult:
        _LOGGER.info(
            "Reconciling deletion of HelmChartProxy %s", parent.namespaced_name
        )
        try:
            if await self._lifecycle.reconcile_delete(parent):
                return ReconcileResult()
        except HelmProxyException as err:
            await self._record_failure(
                parent, RELEASE_PROXY_DELETION_FAILED_REASON, err
            )
            raise
        return ReconcileResult(requeue_after=self._config.requeue_after)

    async def _reconcile_normal(self, parent: HelmChartProxy) -> ReconcileResult:
        _LOGGER.info("Reconciling HelmChartProxy %s", parent.namespaced_name)
        try:
            parent = await self._lifecycle.ensure_finalizer(parent)
        except HelmProxyException as err:
            await self._record_failure(parent, FINALIZER_UPDATE_FAILED_REASON, err)
            raise

        try:
            clusters = await self._selector.select(
                parent.cluster_selector, parent.namespace
            )
        except HelmProxyException as err:
            await self._record_failure(parent, CLUSTER_SELECTION_FAILED_REASON, err)
            raise
        _LOGGER.debug(
            "HelmChartProxy %s matches clusters %s",
            parent.namespaced_name,
            [cluster.name for cluster in clusters],
        )

        try:
            children = await self._lifecycle.list_children(parent)
            actions = self._reconciler.plan(parent, clusters, children)
            await self._reconciler.apply(actions)
            if actions:
                children = await self._lifecycle.list_children(parent)
        except HelmProxyException as err:
            await self._record_failure(
                parent, RELEASE_PROXY_RECONCILE_FAILED_REASON, err, clusters
            )
            raise

        conditions = self._status_conditions(parent, children)
        await self._write_status(parent, conditions, clusters)
        return ReconcileResult()

    def _status_conditions(
        self, parent: HelmChartProxy, children: list[HelmReleaseProxy]
    ) -> list[Condition]:
        generation = parent.generation
        active = [child for child in children if not child.is_terminating]
        conditions = set_condition(
            parent.status.conditions,
            true_condition(RELEASE_PROXY_SPECS_UP_TO_DATE_CONDITION, generation),
        )
        conditions = set_condition(
            conditions, self._aggregator.release_proxies_ready(active, generation)
        )
        return set_condition(conditions, self._aggregator.ready(conditions, generation))

    async def _record_failure(
        self,
        parent: HelmChartProxy,
        reason: str,
        err: Exception,
        clusters: list[Cluster] | None = None,
    ) -> None:
        """Record the error on the HelmChartProxy status."""
        _LOGGER.warning(
            "Failed to reconcile HelmChartProxy %s: %s", parent.namespaced_name, err
        )
        generation = parent.generation
        conditions = parent.status.conditions
        for condition_type in (
            RELEASE_PROXY_SPECS_UP_TO_DATE_CONDITION,
            READY_CONDITION,
        ):
            conditions = set_condition(
                conditions,
                false_condition(
                    condition_type,
                    reason,
                    Severity.ERROR,
                    message=str(err),
                    observed_generation=generation,
                ),
            )
        await self._write_status(parent, conditions, clusters, failure_reason=str(err))

    async def _write_status(
        self,
        parent: HelmChartProxy,
        conditions: list[Condition],
        clusters: list[Cluster] | None,
        failure_reason: str | None = None,
    ) -> None:
        ready = get_condition(conditions, READY_CONDITION)
        status = replace(
            parent.status,
            ready=ready is not None and ready.status == ConditionStatus.TRUE,
            conditions=conditions,
            failure_reason=failure_reason,
            observed_generation=parent.generation,
        )
        if clusters is not None:
            status.matching_clusters = [cluster.reference for cluster in clusters]
        if status == parent.status:
            _LOGGER.debug("Status of %s unchanged", parent.namespaced_name)
            return
        parent.status = status
        try:
            await self._store.update_status(parent)
        except ObjectNotFoundError:
            _LOGGER.debug(
                "HelmChartProxy %s removed before status update", parent.namespaced_name
            )
