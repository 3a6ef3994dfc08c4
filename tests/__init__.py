"""Test helpers and fakes shared by helm-proxy tests."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

from helm_proxy.credentials import ClusterConnection, CredentialProvider
from helm_proxy.exceptions import CredentialsError, ReleaseNotFoundError, RemoteError
from helm_proxy.helm import ReleaseExecutor, ReleaseInfo, parse_values
from helm_proxy.manifest import (
    Cluster,
    ClusterSelector,
    HelmChartProxy,
    HelmReleaseProxy,
    KubeObject,
    NamedResource,
)
from helm_proxy.store import InMemoryStore

T = TypeVar("T", bound=KubeObject)

NAMESPACE = "default"
SELECTOR_KEY = "nginxIngressChart"
SELECTOR_VALUE = "enabled"


def make_cluster(
    name: str, labels: dict[str, str] | None = None, **kwargs: Any
) -> Cluster:
    """Return a Cluster in the test namespace."""
    if labels is None:
        labels = {SELECTOR_KEY: SELECTOR_VALUE}
    return Cluster(name=name, namespace=NAMESPACE, labels=labels, **kwargs)


def make_chart_proxy(name: str = "nginx-ingress", **kwargs: Any) -> HelmChartProxy:
    """Return a HelmChartProxy selecting clusters with the test label."""
    args: dict[str, Any] = {
        "cluster_selector": ClusterSelector(key=SELECTOR_KEY, value=SELECTOR_VALUE),
        "chart_name": "nginx-ingress",
        "repo_url": "https://helm.nginx.com/stable",
        "version": "0.17.1",
        "release_name": "nginx-ingress",
        "values": "controller:\n  name: {{ .Cluster.metadata.name }}-nginx\n",
    }
    args.update(kwargs)
    return HelmChartProxy(name=name, namespace=NAMESPACE, **args)


class FakeReleaseExecutor(ReleaseExecutor):
    """A release executor holding releases in memory."""

    def __init__(self) -> None:
        self.releases: dict[tuple[str, str, str], ReleaseInfo] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.errors: dict[str, Exception] = {}
        self.install_status = "deployed"

    def _check(self, method: str) -> None:
        if (err := self.errors.get(method)) is not None:
            raise err

    async def list_releases(
        self, conn: ClusterConnection, namespace: str | None = None
    ) -> list[ReleaseInfo]:
        self._check("list_releases")
        return [
            release
            for (cluster, ns, _), release in sorted(self.releases.items())
            if cluster == conn.cluster.name and namespace in (None, ns)
        ]

    async def get_release(
        self, conn: ClusterConnection, name: str, namespace: str
    ) -> ReleaseInfo:
        self._check("get_release")
        if (release := self.releases.get((conn.cluster.name, namespace, name))) is None:
            raise ReleaseNotFoundError(f"Release {namespace}/{name} not found")
        return release

    def _store_release(
        self, conn: ClusterConnection, proxy: HelmReleaseProxy, revision: int
    ) -> ReleaseInfo:
        release = ReleaseInfo(
            name=proxy.release_name,
            namespace=proxy.release_namespace,
            revision=revision,
            status=self.install_status,
            chart=f"{proxy.chart_name}-{proxy.version or '1.0.0'}",
            values=parse_values(proxy.values),
        )
        self.releases[(conn.cluster.name, release.namespace, release.name)] = release
        return release

    async def install(
        self, conn: ClusterConnection, proxy: HelmReleaseProxy
    ) -> ReleaseInfo:
        self.calls.append(("install", conn.cluster.name, proxy.release_name))
        self._check("install")
        return self._store_release(conn, proxy, 1)

    async def upgrade(
        self, conn: ClusterConnection, proxy: HelmReleaseProxy
    ) -> ReleaseInfo:
        self.calls.append(("upgrade", conn.cluster.name, proxy.release_name))
        self._check("upgrade")
        existing = await self.get_release(conn, proxy.release_name, proxy.release_namespace)
        return self._store_release(conn, proxy, existing.revision + 1)

    async def uninstall(
        self, conn: ClusterConnection, name: str, namespace: str
    ) -> None:
        self.calls.append(("uninstall", conn.cluster.name, name))
        self._check("uninstall")
        if self.releases.pop((conn.cluster.name, namespace, name), None) is None:
            raise ReleaseNotFoundError(f"Release {namespace}/{name} not found")


class FakeCredentialProvider(CredentialProvider):
    """A credential provider that hands out connections without a kubeconfig."""

    def __init__(self) -> None:
        self.unavailable: set[str] = set()

    @asynccontextmanager
    async def connection(  # type: ignore[override]
        self, cluster: Cluster
    ) -> AsyncGenerator[ClusterConnection, None]:
        if cluster.name in self.unavailable:
            raise CredentialsError(f"No kubeconfig for {cluster.name}")
        yield ClusterConnection(cluster=cluster.resource_id, kubeconfig=Path("/dev/null"))


class FailingDeleteStore(InMemoryStore):
    """A store that fails to delete the objects with the given names."""

    def __init__(self, *failing: str) -> None:
        super().__init__()
        self.failing = set(failing)

    async def delete(self, cls: type[T], resource_id: NamedResource) -> None:
        if resource_id.name in self.failing:
            raise RemoteError(f"Unable to delete {resource_id.name}")
        await super().delete(cls, resource_id)
