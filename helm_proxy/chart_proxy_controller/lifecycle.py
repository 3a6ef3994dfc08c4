"""Finalizer handling for HelmChartProxy objects.

A HelmChartProxy carries a finalizer while it is active. Once deletion is
requested the finalizer is only removed after every HelmReleaseProxy bound to
it has been deleted, so no HelmReleaseProxy outlives its HelmChartProxy.
"""

import logging

from helm_proxy.exceptions import (
    ChildDeletionError,
    HelmProxyException,
    ObjectNotFoundError,
)
from helm_proxy.manifest import (
    HelmChartProxy,
    HelmReleaseProxy,
    CHART_PROXY_LABEL,
    HELM_CHART_PROXY_FINALIZER,
)
from helm_proxy.store import Store

_LOGGER = logging.getLogger(__name__)


class LifecycleCoordinator:
    """Drives a HelmChartProxy through the active and terminating states."""

    def __init__(self, store: Store) -> None:
        """Initialize LifecycleCoordinator."""
        self._store = store

    async def list_children(self, parent: HelmChartProxy) -> list[HelmReleaseProxy]:
        """Return every HelmReleaseProxy bound to the HelmChartProxy."""
        return await self._store.list_objects(
            HelmReleaseProxy,
            namespace=parent.namespace,
            labels={CHART_PROXY_LABEL: parent.name},
        )

    async def ensure_finalizer(self, parent: HelmChartProxy) -> HelmChartProxy:
        """Add the finalizer to an active HelmChartProxy if missing."""
        if not parent.add_finalizer(HELM_CHART_PROXY_FINALIZER):
            return parent
        _LOGGER.debug("Adding finalizer to %s", parent.namespaced_name)
        return await self._store.update(parent)

    async def reconcile_delete(self, parent: HelmChartProxy) -> bool:
        """Tear down the children of a terminating HelmChartProxy.

        Returns True once the finalizer has been removed, or False when
        children are still being deleted and the caller should check again.
        Children that are already terminating are not deleted again, their
        own finalizers complete the deletion.

        Raises:
            ChildDeletionError: If any HelmReleaseProxy could not be deleted.
        """
        children = await self.list_children(parent)
        errors: dict[str, Exception] = {}
        for child in children:
            if child.is_terminating:
                continue
            _LOGGER.info(
                "Deleting HelmReleaseProxy %s for terminating %s",
                child.namespaced_name,
                parent.namespaced_name,
            )
            try:
                await self._store.delete(HelmReleaseProxy, child.resource_id)
            except ObjectNotFoundError:
                _LOGGER.debug("%s already deleted", child.resource_id)
            except HelmProxyException as err:
                _LOGGER.warning("Failed to delete %s: %s", child.resource_id, err)
                errors[child.name] = err
        if errors:
            raise ChildDeletionError(parent.namespaced_name, errors)

        if children and (remaining := await self.list_children(parent)):
            _LOGGER.info(
                "Waiting for %d HelmReleaseProxy objects of %s to be deleted",
                len(remaining),
                parent.namespaced_name,
            )
            return False

        if parent.remove_finalizer(HELM_CHART_PROXY_FINALIZER):
            _LOGGER.info("Removing finalizer from %s", parent.namespaced_name)
            try:
                await self._store.update(parent)
            except ObjectNotFoundError:
                _LOGGER.debug("%s already removed", parent.namespaced_name)
        return True
