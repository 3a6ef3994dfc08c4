"""Tests for the HelmChartProxy finalizer lifecycle."""

from typing import Any

import pytest

from helm_proxy.chart_proxy_controller import ChildSetReconciler, LifecycleCoordinator
from helm_proxy.exceptions import ChildDeletionError
from helm_proxy.manifest import (
    HelmChartProxy,
    HelmReleaseProxy,
    HELM_CHART_PROXY_FINALIZER,
)
from helm_proxy.store import InMemoryStore
from helm_proxy.values import TemplateResolver

from .. import FailingDeleteStore, make_chart_proxy, make_cluster

CHILD_FINALIZER = "example.com/finalizer"


async def create_family(
    store: InMemoryStore, *clusters: str, **kwargs: Any
) -> HelmChartProxy:
    """Create a terminating HelmChartProxy with a child per cluster."""
    parent = make_chart_proxy()
    parent.add_finalizer(HELM_CHART_PROXY_FINALIZER)
    parent = await store.create(parent)
    reconciler = ChildSetReconciler(store, TemplateResolver())
    actions = reconciler.plan(parent, [make_cluster(name) for name in clusters], [])
    for action in actions:
        assert action.child
        action.child.finalizers.extend(kwargs.get("finalizers", []))
    await reconciler.apply(actions)
    await store.delete(HelmChartProxy, parent.resource_id)
    return await store.get(HelmChartProxy, parent.resource_id)


@pytest.fixture(name="lifecycle")
def lifecycle_fixture(store: InMemoryStore) -> LifecycleCoordinator:
    return LifecycleCoordinator(store)


async def test_ensure_finalizer(
    store: InMemoryStore, lifecycle: LifecycleCoordinator
) -> None:
    """Test the finalizer is added once."""
    parent = await store.create(make_chart_proxy())
    parent = await lifecycle.ensure_finalizer(parent)
    assert parent.finalizers == [HELM_CHART_PROXY_FINALIZER]
    version = parent.resource_version

    parent = await lifecycle.ensure_finalizer(parent)
    assert parent.resource_version == version


async def test_list_children(
    store: InMemoryStore, lifecycle: LifecycleCoordinator
) -> None:
    """Test only children bound to the parent are listed."""
    parent = await store.create(make_chart_proxy())
    other = await store.create(make_chart_proxy("other"))
    reconciler = ChildSetReconciler(store, TemplateResolver())
    clusters = [make_cluster("workload-1")]
    await reconciler.apply(reconciler.plan(parent, clusters, []))
    await reconciler.apply(reconciler.plan(other, clusters, []))

    children = await lifecycle.list_children(parent)
    assert [c.name for c in children] == ["nginx-ingress-workload-1-73818bed"]


async def test_delete_without_children(
    store: InMemoryStore, lifecycle: LifecycleCoordinator
) -> None:
    """Test the finalizer is removed immediately when there are no children."""
    parent = await create_family(store)
    assert await lifecycle.reconcile_delete(parent)
    assert await store.list_objects(HelmChartProxy) == []


async def test_delete_children(
    store: InMemoryStore, lifecycle: LifecycleCoordinator
) -> None:
    """Test children without finalizers are removed in a single pass."""
    parent = await create_family(store, "workload-1", "workload-2")
    assert await lifecycle.reconcile_delete(parent)
    assert await store.list_objects(HelmReleaseProxy) == []
    assert await store.list_objects(HelmChartProxy) == []


async def test_delete_waits_for_children() -> None:
    """Test the finalizer stays until every child is gone."""
    store = FailingDeleteStore()
    lifecycle = LifecycleCoordinator(store)
    parent = await create_family(
        store, "workload-1", "workload-2", finalizers=[CHILD_FINALIZER]
    )
    assert not await lifecycle.reconcile_delete(parent)
    children = await store.list_objects(HelmReleaseProxy)
    assert [c.is_terminating for c in children] == [True, True]
    parent = await store.get(HelmChartProxy, parent.resource_id)
    assert parent.has_finalizer(HELM_CHART_PROXY_FINALIZER)

    # Deletion is only requested once for each child
    store.failing.update(child.name for child in children)
    assert not await lifecycle.reconcile_delete(parent)
    store.failing.clear()

    for child in children:
        child.remove_finalizer(CHILD_FINALIZER)
        await store.update(child)

    assert await lifecycle.reconcile_delete(parent)
    assert await store.list_objects(HelmChartProxy) == []


async def test_delete_failures() -> None:
    """Test failed child deletes are collected and the finalizer is kept."""
    store = FailingDeleteStore("nginx-ingress-workload-1-73818bed")
    lifecycle = LifecycleCoordinator(store)
    parent = await create_family(store, "workload-1", "workload-2")

    with pytest.raises(
        ChildDeletionError, match="nginx-ingress-workload-1-73818bed"
    ) as exc:
        await lifecycle.reconcile_delete(parent)
    assert list(exc.value.errors) == ["nginx-ingress-workload-1-73818bed"]
    assert exc.value.parent_name == "default/nginx-ingress"

    # The other child is still deleted
    children = await store.list_objects(HelmReleaseProxy)
    assert [c.name for c in children] == ["nginx-ingress-workload-1-73818bed"]
    parent = await store.get(HelmChartProxy, parent.resource_id)
    assert parent.has_finalizer(HELM_CHART_PROXY_FINALIZER)

    store.failing.clear()
    assert await lifecycle.reconcile_delete(parent)
    assert await store.list_objects(HelmChartProxy) == []
