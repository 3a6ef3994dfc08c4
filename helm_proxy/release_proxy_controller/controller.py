"""HelmReleaseProxy controller implementation.

This controller installs the release described by a HelmReleaseProxy on its
target Cluster and keeps it at the desired chart version and values. The
HelmReleaseProxy carries a finalizer so the release is uninstalled before the
object is removed, unless the Cluster itself is already gone.
"""

from dataclasses import replace
import logging

from helm_proxy.conditions import (
    Condition,
    Severity,
    READY_CONDITION,
    CLUSTER_NOT_FOUND_REASON,
    GET_KUBECONFIG_FAILED_REASON,
    HELM_INSTALL_OR_UPGRADE_FAILED_REASON,
    HELM_RELEASE_DELETION_FAILED_REASON,
    HELM_RELEASE_GET_FAILED_REASON,
    HELM_RELEASE_PENDING_REASON,
    false_condition,
    set_condition,
    true_condition,
    unknown_condition,
)
from helm_proxy.credentials import CredentialProvider
from helm_proxy.exceptions import (
    HelmProxyException,
    ObjectNotFoundError,
    ReleaseNotFoundError,
)
from helm_proxy.helm import ReleaseExecutor, ReleaseInfo, needs_upgrade
from helm_proxy.manifest import (
    Cluster,
    HelmReleaseProxy,
    HelmReleaseProxyStatus,
    NamedResource,
    HELM_RELEASE_PROXY_FINALIZER,
)
from helm_proxy.reconcile import ControllerConfig, ReconcileResult, Reconciler
from helm_proxy.store import Store

_LOGGER = logging.getLogger(__name__)

_PENDING_PREFIX = "pending"


def _release_condition(release: ReleaseInfo, generation: int) -> Condition:
    """Return the Ready condition for the observed release."""
    if release.deployed:
        return true_condition(READY_CONDITION, generation)
    if release.status.startswith(_PENDING_PREFIX):
        return unknown_condition(
            READY_CONDITION,
            HELM_RELEASE_PENDING_REASON,
            message=f"Release {release.name} is {release.status}",
            observed_generation=generation,
        )
    return false_condition(
        READY_CONDITION,
        HELM_INSTALL_OR_UPGRADE_FAILED_REASON,
        Severity.ERROR,
        message=f"Release {release.name} is {release.status}",
        observed_generation=generation,
    )


class HelmReleaseProxyController(Reconciler):
    """Controller for reconciling HelmReleaseProxy objects."""

    def __init__(
        self,
        store: Store,
        executor: ReleaseExecutor,
        credentials: CredentialProvider,
        config: ControllerConfig,
    ) -> None:
        """Initialize the controller.

        Args:
            store: The store holding HelmReleaseProxy and Cluster objects
            executor: Runs release operations against the target cluster
            credentials: Provides connections to the target cluster
            config: The configuration for the controller
        """
        self._store = store
        self._executor = executor
        self._credentials = credentials
        self._config = config

    async def reconcile(self, resource_id: NamedResource) -> ReconcileResult:
        """Reconcile the HelmReleaseProxy with the given identity."""
        try:
            proxy = await self._store.get(HelmReleaseProxy, resource_id)
        except ObjectNotFoundError:
            _LOGGER.debug("HelmReleaseProxy %s no longer exists", resource_id)
            return ReconcileResult()

        if proxy.is_terminating:
            await self._reconcile_delete(proxy)
            return ReconcileResult()
        return await self._reconcile_normal(proxy)

    async def _get_cluster(self, proxy: HelmReleaseProxy) -> Cluster:
        cluster_id = proxy.cluster_ref.resource_id
        if cluster_id.namespace is None:
            cluster_id = replace(cluster_id, namespace=proxy.namespace)
        return await self._store.get(Cluster, cluster_id)

    async def _reconcile_normal(self, proxy: HelmReleaseProxy) -> ReconcileResult:
        _LOGGER.info("Reconciling HelmReleaseProxy %s", proxy.namespaced_name)
        if proxy.add_finalizer(HELM_RELEASE_PROXY_FINALIZER):
            proxy = await self._store.update(proxy)

        try:
            cluster = await self._get_cluster(proxy)
        except ObjectNotFoundError as err:
            await self._record_failure(proxy, CLUSTER_NOT_FOUND_REASON, err)
            raise

        reason = GET_KUBECONFIG_FAILED_REASON
        try:
            async with self._credentials.connection(cluster) as conn:
                reason = HELM_RELEASE_GET_FAILED_REASON
                try:
                    release: ReleaseInfo | None = await self._executor.get_release(
                        conn, proxy.release_name, proxy.release_namespace
                    )
                except ReleaseNotFoundError:
                    release = None
                reason = HELM_INSTALL_OR_UPGRADE_FAILED_REASON
                if release is None:
                    release = await self._executor.install(conn, proxy)
                elif needs_upgrade(release, proxy):
                    release = await self._executor.upgrade(conn, proxy)
                else:
                    _LOGGER.debug(
                        "Release %s on %s is up to date",
                        release.name,
                        cluster.namespaced_name,
                    )
        except HelmProxyException as err:
            await self._record_failure(proxy, reason, err)
            raise

        condition = _release_condition(release, proxy.generation)
        await self._write_status(
            proxy,
            replace(
                proxy.status,
                ready=release.deployed,
                phase=release.status,
                revision=release.revision,
                release_namespace=release.namespace,
                failure_reason=None,
                conditions=set_condition(proxy.status.conditions, condition),
                observed_generation=proxy.generation,
            ),
        )
        if release.status.startswith(_PENDING_PREFIX):
            return ReconcileResult(requeue_after=self._config.requeue_after)
        return ReconcileResult()

    async def _reconcile_delete(self, proxy: HelmReleaseProxy) -> None:
        if not proxy.has_finalizer(HELM_RELEASE_PROXY_FINALIZER):
            return
        _LOGGER.info(
            "Reconciling deletion of HelmReleaseProxy %s", proxy.namespaced_name
        )
        try:
            cluster: Cluster | None = await self._get_cluster(proxy)
        except ObjectNotFoundError:
            cluster = None

        if cluster is None or cluster.is_terminating:
            _LOGGER.info(
                "Cluster %s is gone, skipping uninstall of %s",
                proxy.cluster_ref.name,
                proxy.release_name,
            )
        else:
            try:
                async with self._credentials.connection(cluster) as conn:
                    await self._executor.uninstall(
                        conn, proxy.release_name, proxy.release_namespace
                    )
            except ReleaseNotFoundError:
                _LOGGER.debug("Release %s already uninstalled", proxy.release_name)
            except HelmProxyException as err:
                await self._record_failure(
                    proxy, HELM_RELEASE_DELETION_FAILED_REASON, err
                )
                raise

        proxy.remove_finalizer(HELM_RELEASE_PROXY_FINALIZER)
        try:
            await self._store.update(proxy)
        except ObjectNotFoundError:
            _LOGGER.debug("HelmReleaseProxy %s already removed", proxy.namespaced_name)

    async def _record_failure(
        self, proxy: HelmReleaseProxy, reason: str, err: Exception
    ) -> None:
        """Record the error on the HelmReleaseProxy status."""
        _LOGGER.warning(
            "Failed to reconcile HelmReleaseProxy %s: %s", proxy.namespaced_name, err
        )
        condition = false_condition(
            READY_CONDITION,
            reason,
            Severity.ERROR,
            message=str(err),
            observed_generation=proxy.generation,
        )
        await self._write_status(
            proxy,
            replace(
                proxy.status,
                ready=False,
                failure_reason=str(err),
                conditions=set_condition(proxy.status.conditions, condition),
                observed_generation=proxy.generation,
            ),
        )

    async def _write_status(
        self, proxy: HelmReleaseProxy, status: HelmReleaseProxyStatus
    ) -> None:
        if status == proxy.status:
            return
        proxy.status = status
        try:
            await self._store.update_status(proxy)
        except ObjectNotFoundError:
            _LOGGER.debug(
                "HelmReleaseProxy %s removed before status update",
                proxy.namespaced_name,
            )
