"""Maps store events to the HelmChartProxy objects that need to be reconciled."""

from collections.abc import Awaitable, Callable
import logging

from helm_proxy.exceptions import HelmProxyException
from helm_proxy.manifest import (
    Cluster,
    HelmChartProxy,
    HelmReleaseProxy,
    KubeObject,
    NamedResource,
    CLUSTER_KIND,
    CLUSTER_NAME_LABEL,
    HELM_CHART_PROXY,
    HELM_RELEASE_PROXY,
)
from helm_proxy.store import Store

_LOGGER = logging.getLogger(__name__)

Mapper = Callable[[NamedResource, KubeObject], Awaitable[list[NamedResource]]]


class EventRouter:
    """Finds the HelmChartProxy objects affected by a change to an object."""

    def __init__(self, store: Store) -> None:
        """Initialize EventRouter."""
        self._store = store
        self._mappers: dict[str, Mapper] = {
            CLUSTER_KIND: self._map_cluster,
            HELM_RELEASE_PROXY: self._map_release_proxy,
            HELM_CHART_PROXY: self._map_chart_proxy,
        }

    async def map_event(
        self, resource_id: NamedResource, obj: KubeObject
    ) -> list[NamedResource]:
        """Return the HelmChartProxy objects to reconcile, sorted and unique.

        Errors while looking up related objects are logged and no work is
        returned.
        """
        if not (mapper := self._mappers.get(resource_id.kind)):
            return []
        try:
            requests = await mapper(resource_id, obj)
        except HelmProxyException as err:
            _LOGGER.error("Unable to map event for %s: %s", resource_id, err)
            return []
        return sorted(set(requests))

    async def _map_cluster(
        self, resource_id: NamedResource, obj: KubeObject
    ) -> list[NamedResource]:
        requests = []
        children = await self._store.list_objects(
            HelmReleaseProxy,
            namespace=resource_id.namespace,
            labels={CLUSTER_NAME_LABEL: resource_id.name},
        )
        for child in children:
            if name := child.chart_proxy_name:
                requests.append(
                    NamedResource(HELM_CHART_PROXY, child.namespace, name)
                )
        if isinstance(obj, Cluster):
            for parent in await self._store.list_objects(
                HelmChartProxy, namespace=resource_id.namespace
            ):
                if parent.cluster_selector.matches(obj.labels):
                    requests.append(parent.resource_id)
        _LOGGER.debug("Cluster %s maps to %s", resource_id, requests)
        return requests

    async def _map_release_proxy(
        self, resource_id: NamedResource, obj: KubeObject
    ) -> list[NamedResource]:
        ref = obj.controller_reference()
        if ref is None or ref.kind != HELM_CHART_PROXY:
            return []
        return [NamedResource(HELM_CHART_PROXY, resource_id.namespace, ref.name)]

    async def _map_chart_proxy(
        self, resource_id: NamedResource, obj: KubeObject
    ) -> list[NamedResource]:
        return [resource_id]
