"""Computes and applies the HelmReleaseProxy changes for a HelmChartProxy.

Planning is a pure function of the HelmChartProxy, the Clusters matched by its
selector and the HelmReleaseProxy objects that currently exist for it. The plan
is a list of `ChildAction` objects that `apply` then executes in order:

- `DELETE` a HelmReleaseProxy bound to a Cluster that is no longer matched.
- `REINSTALL` a HelmReleaseProxy whose immutable fields no longer match the
  HelmChartProxy. This is executed as a delete and the replacement is created
  by a later pass once the delete has completed.
- `UPDATE` the version or values of a HelmReleaseProxy in place.
- `CREATE` a HelmReleaseProxy for a matched Cluster that has none.

Running the plan for unchanged inputs again yields an empty plan.
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum
import hashlib
import logging
import random

from slugify import slugify

from helm_proxy.exceptions import ConsistencyError, ObjectNotFoundError
from helm_proxy.manifest import (
    BaseManifest,
    Cluster,
    HelmChartProxy,
    HelmReleaseProxy,
    NamedResource,
    OwnerReference,
    CHART_PROXY_LABEL,
    CLUSTER_NAME_LABEL,
    HELM_CHART_PROXY,
    RELEASE_NAME_GENERATED_ANNOTATION,
)
from helm_proxy.store import Store
from helm_proxy.values import TemplateResolver

__all__ = [
    "ActionKind",
    "ChildAction",
    "ChildSetReconciler",
]

_LOGGER = logging.getLogger(__name__)

# Characters used by kubernetes for generated name suffixes
_SUFFIX_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
_SUFFIX_LENGTH = 5
# Helm release names are limited to 53 characters
_RELEASE_NAME_PREFIX_LENGTH = 53 - _SUFFIX_LENGTH - 1
_MAX_NAME_LENGTH = 253
_NAME_HASH_LENGTH = 8
_DEFAULT_RELEASE_PREFIX = "release"


def generate_release_name(chart_name: str) -> str:
    """Return a release name for the chart with a random suffix."""
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=_SUFFIX_LENGTH))
    prefix = slugify(chart_name, max_length=_RELEASE_NAME_PREFIX_LENGTH, separator="-")
    return f"{prefix or _DEFAULT_RELEASE_PREFIX}-{suffix}"


def release_proxy_name(parent: HelmChartProxy, cluster: Cluster) -> str:
    """Return the name of the HelmReleaseProxy for the cluster.

    The slug of both names is followed by a hash of the namespace, parent and
    cluster, which is unique for each pair even when the slugs collide.
    """
    key = hashlib.sha256()
    key.update(f"{parent.namespace}/{parent.name}/{cluster.name}".encode("utf-8"))
    slug = slugify(
        f"{parent.name}-{cluster.name}",
        max_length=_MAX_NAME_LENGTH - _NAME_HASH_LENGTH - 1,
    )
    return f"{slug}-{key.hexdigest()[:_NAME_HASH_LENGTH]}"


class ActionKind(StrEnum):
    """The change to make to a HelmReleaseProxy."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REINSTALL = "reinstall"


@dataclass
class ChildAction(BaseManifest):
    """A single planned change to a HelmReleaseProxy."""

    action: ActionKind
    """The kind of change."""

    name: str
    """The name of the HelmReleaseProxy."""

    namespace: str | None
    """The namespace of the HelmReleaseProxy."""

    cluster: str | None = None
    """The Cluster the HelmReleaseProxy is bound to."""

    reason: str | None = None
    """Why the change is needed."""

    child: HelmReleaseProxy | None = field(
        metadata={"serialize": "omit"}, default=None, compare=False
    )
    """The object to write for create and update actions."""

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(HelmReleaseProxy.kind, self.namespace, self.name)


def _reinstall_reason(parent: HelmChartProxy, child: HelmReleaseProxy) -> str | None:
    """Return why the child must be recreated, or None if it can be kept."""
    if child.chart_name != parent.chart_name:
        return f"chart name changed from {child.chart_name} to {parent.chart_name}"
    if child.repo_url != parent.repo_url:
        return f"repository changed from {child.repo_url} to {parent.repo_url}"
    if child.release_namespace != parent.release_namespace:
        return (
            f"namespace changed from {child.release_namespace} "
            f"to {parent.release_namespace}"
        )
    if child.release_name_generated:
        if parent.release_name:
            return f"release name set to {parent.release_name}"
        return None
    if child.release_name != parent.release_name:
        return (
            f"release name changed from {child.release_name} "
            f"to {parent.release_name or '<generated>'}"
        )
    return None


class ChildSetReconciler:
    """Diffs the HelmReleaseProxy set of a HelmChartProxy against its Clusters."""

    def __init__(
        self,
        store: Store,
        resolver: TemplateResolver,
        name_generator: Callable[[str], str] = generate_release_name,
    ) -> None:
        """Initialize ChildSetReconciler."""
        self._store = store
        self._resolver = resolver
        self._name_generator = name_generator

    def plan(
        self,
        parent: HelmChartProxy,
        clusters: list[Cluster],
        children: list[HelmReleaseProxy],
    ) -> list[ChildAction]:
        """Return the actions needed to converge the children of the parent.

        Raises:
            ConsistencyError: If more than one HelmReleaseProxy is bound to
                the same Cluster.
            ValuesTemplateError: If the values can't be rendered for a Cluster.
        """
        actions: list[ChildAction] = []
        matched = {cluster.name for cluster in clusters}

        by_cluster: dict[str | None, list[HelmReleaseProxy]] = {}
        for child in sorted(children, key=lambda c: c.name):
            by_cluster.setdefault(child.cluster_name, []).append(child)
            if child.cluster_name in matched or child.is_terminating:
                continue
            actions.append(
                ChildAction(
                    action=ActionKind.DELETE,
                    name=child.name,
                    namespace=child.namespace,
                    cluster=child.cluster_name,
                    reason="cluster no longer matches selector",
                )
            )

        for cluster in sorted(clusters, key=lambda c: c.name):
            if cluster.is_terminating:
                _LOGGER.debug(
                    "Skipping terminating cluster %s", cluster.namespaced_name
                )
                continue
            bound = by_cluster.get(cluster.name, [])
            if len(bound) > 1:
                names = ", ".join(c.name for c in bound)
                raise ConsistencyError(
                    f"Cluster {cluster.namespaced_name} has {len(bound)} "
                    f"HelmReleaseProxy objects for {parent.namespaced_name}: {names}"
                )
            if bound:
                if action := self._plan_existing(parent, cluster, bound[0]):
                    actions.append(action)
                continue
            actions.append(self._plan_create(parent, cluster))
        return actions

    def _plan_existing(
        self, parent: HelmChartProxy, cluster: Cluster, child: HelmReleaseProxy
    ) -> ChildAction | None:
        if child.is_terminating:
            _LOGGER.debug("Waiting for %s to finish deleting", child.namespaced_name)
            return None
        if reason := _reinstall_reason(parent, child):
            return ChildAction(
                action=ActionKind.REINSTALL,
                name=child.name,
                namespace=child.namespace,
                cluster=cluster.name,
                reason=reason,
            )
        values = self._resolver.resolve(parent.values, cluster)
        changes = []
        if child.version != parent.version:
            changes.append(f"version changed from {child.version} to {parent.version}")
        if child.values != values:
            changes.append("values changed")
        if not changes:
            return None
        return ChildAction(
            action=ActionKind.UPDATE,
            name=child.name,
            namespace=child.namespace,
            cluster=cluster.name,
            reason=", ".join(changes),
            child=replace(child, version=parent.version, values=values),
        )

    def _plan_create(self, parent: HelmChartProxy, cluster: Cluster) -> ChildAction:
        annotations = {}
        if parent.release_name:
            release_name = parent.release_name
        else:
            release_name = self._name_generator(parent.chart_name)
            annotations[RELEASE_NAME_GENERATED_ANNOTATION] = "true"
        child = HelmReleaseProxy(
            name=release_proxy_name(parent, cluster),
            namespace=parent.namespace,
            labels={
                CHART_PROXY_LABEL: parent.name,
                CLUSTER_NAME_LABEL: cluster.name,
            },
            annotations=annotations,
            owner_references=[
                OwnerReference(
                    kind=HELM_CHART_PROXY,
                    name=parent.name,
                    controller=True,
                    block_owner_deletion=True,
                )
            ],
            cluster_ref=cluster.reference,
            chart_name=parent.chart_name,
            repo_url=parent.repo_url,
            release_name=release_name,
            version=parent.version,
            release_namespace=parent.release_namespace,
            values=self._resolver.resolve(parent.values, cluster),
        )
        return ChildAction(
            action=ActionKind.CREATE,
            name=child.name,
            namespace=child.namespace,
            cluster=cluster.name,
            reason="cluster matches selector",
            child=child,
        )

    async def apply(self, actions: list[ChildAction]) -> None:
        """Execute the actions in order, stopping at the first failure."""
        for action in actions:
            _LOGGER.info(
                "%s HelmReleaseProxy %s (%s)",
                action.action.capitalize(),
                action.resource_id.namespaced_name,
                action.reason,
            )
            if action.action in (ActionKind.DELETE, ActionKind.REINSTALL):
                try:
                    await self._store.delete(HelmReleaseProxy, action.resource_id)
                except ObjectNotFoundError:
                    _LOGGER.debug("%s already deleted", action.resource_id)
                continue
            if action.child is None:
                raise ValueError(f"Action {action.action} requires an object")
            if action.action == ActionKind.CREATE:
                await self._store.create(action.child)
            else:
                await self._store.update(action.child)
