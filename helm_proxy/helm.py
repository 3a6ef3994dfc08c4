"""Library for managing helm releases on target clusters.

The `ReleaseExecutor` interface installs, upgrades and uninstalls the release
described by a `HelmReleaseProxy`. The `HelmCli` implementation runs the
`helm` binary against the kubeconfig of a `ClusterConnection`:

```python
from helm_proxy.helm import HelmCli

helm = HelmCli(Path("/tmp/path/helm"))
async with credentials.connection(cluster) as conn:
    try:
        release = await helm.get_release(conn, "nginx", "default")
    except ReleaseNotFoundError:
        release = await helm.install(conn, proxy)
```
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from . import command
from .credentials import ClusterConnection
from .exceptions import HelmException, ReleaseNotFoundError
from .manifest import HelmReleaseProxy

__all__ = [
    "ReleaseInfo",
    "ReleaseExecutor",
    "HelmCli",
    "needs_upgrade",
    "parse_values",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"

RELEASE_STATUS_DEPLOYED = "deployed"


@dataclass(frozen=True, kw_only=True)
class ReleaseInfo:
    """A helm release installed on a cluster."""

    name: str
    """The release name."""

    namespace: str
    """The namespace the release is installed into."""

    revision: int
    """The release revision, incremented on every upgrade."""

    status: str
    """The helm status e.g. deployed, failed, pending-install."""

    chart: str
    """The chart name and version e.g. nginx-15.1.0."""

    app_version: str | None = None
    """The application version of the chart."""

    values: dict[str, Any] = field(default_factory=dict)
    """The user supplied values of the release."""

    def chart_version(self, chart_name: str) -> str | None:
        """Return the version of the chart, given the chart name."""
        prefix = f"{chart_name}-"
        if self.chart.startswith(prefix):
            return self.chart[len(prefix) :]
        return None

    @property
    def deployed(self) -> bool:
        return self.status == RELEASE_STATUS_DEPLOYED

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ReleaseInfo":
        """Parse an entry of `helm list -o json`."""
        return cls(
            name=doc["name"],
            namespace=doc["namespace"],
            revision=int(doc.get("revision", 0)),
            status=doc.get("status", ""),
            chart=doc.get("chart", ""),
            app_version=doc.get("app_version") or None,
        )


def parse_values(values: str) -> dict[str, Any]:
    """Parse a rendered values document into a mapping."""
    if not values:
        return {}
    try:
        parsed = yaml.safe_load(values)
    except yaml.YAMLError as err:
        raise HelmException(f"Unable to parse values: {err}") from err
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise HelmException(f"Values must be a mapping, got {type(parsed).__name__}")
    return parsed


class ReleaseExecutor(ABC):
    """Performs helm release operations on a target cluster."""

    @abstractmethod
    async def list_releases(
        self, conn: ClusterConnection, namespace: str | None = None
    ) -> list[ReleaseInfo]:
        """List releases in the namespace, or all namespaces when unset."""

    @abstractmethod
    async def get_release(
        self, conn: ClusterConnection, name: str, namespace: str
    ) -> ReleaseInfo:
        """Return the release with the given name.

        Raises:
            ReleaseNotFoundError: If the release is not installed.
        """

    @abstractmethod
    async def install(
        self, conn: ClusterConnection, proxy: HelmReleaseProxy
    ) -> ReleaseInfo:
        """Install the chart described by the HelmReleaseProxy."""

    @abstractmethod
    async def upgrade(
        self, conn: ClusterConnection, proxy: HelmReleaseProxy
    ) -> ReleaseInfo:
        """Upgrade an existing release to the HelmReleaseProxy version and values."""

    @abstractmethod
    async def uninstall(
        self, conn: ClusterConnection, name: str, namespace: str
    ) -> None:
        """Uninstall the release.

        Raises:
            ReleaseNotFoundError: If the release is not installed.
        """


def needs_upgrade(release: ReleaseInfo, proxy: HelmReleaseProxy) -> bool:
    """Return True if the installed release differs from the desired state."""
    if proxy.version and release.chart_version(proxy.chart_name) != proxy.version:
        return True
    return release.values != parse_values(proxy.values)


class HelmCli(ReleaseExecutor):
    """Manages releases by running the helm command line tool."""

    def __init__(self, tmp_dir: Path, extra_flags: list[str] | None = None) -> None:
        """Initialize HelmCli."""
        self._tmp_dir = tmp_dir
        self._flags = extra_flags or []

    def _args(self, conn: ClusterConnection, *args: str) -> list[str]:
        return [HELM_BIN, *args, "--kubeconfig", str(conn.kubeconfig), *self._flags]

    async def _run(self, args: list[str]) -> str:
        return await command.run(command.Command(args, exc=HelmException))

    async def list_releases(
        self, conn: ClusterConnection, namespace: str | None = None
    ) -> list[ReleaseInfo]:
        """List releases in the namespace, or all namespaces when unset."""
        args = self._args(conn, "list", "--all", "--output", "json")
        args.extend(["--namespace", namespace] if namespace else ["--all-namespaces"])
        out = await self._run(args)
        try:
            docs = json.loads(out or "[]")
        except json.JSONDecodeError as err:
            raise HelmException(f"Unable to parse helm list output: {err}") from err
        return [ReleaseInfo.parse_doc(doc) for doc in docs]

    async def get_release(
        self, conn: ClusterConnection, name: str, namespace: str
    ) -> ReleaseInfo:
        """Return the release with the given name."""
        releases = [
            release
            for release in await self.list_releases(conn, namespace)
            if release.name == name
        ]
        if not releases:
            raise ReleaseNotFoundError(
                f"Release {namespace}/{name} not found on "
                f"{conn.cluster.namespaced_name}"
            )
        out = await self._run(
            self._args(
                conn,
                "get",
                "values",
                name,
                "--namespace",
                namespace,
                "--output",
                "yaml",
            )
        )
        values = yaml.safe_load(out) or {}
        release = releases[0]
        return ReleaseInfo(
            name=release.name,
            namespace=release.namespace,
            revision=release.revision,
            status=release.status,
            chart=release.chart,
            app_version=release.app_version,
            values=values,
        )

    async def _chart_args(self, proxy: HelmReleaseProxy) -> list[str]:
        args = [
            proxy.release_name,
            proxy.chart_name,
            "--repo",
            proxy.repo_url,
            "--namespace",
            proxy.release_namespace,
        ]
        if proxy.version:
            args.extend(["--version", proxy.version])
        if proxy.values:
            values_path = self._tmp_dir / f"{proxy.namespace}-{proxy.name}-values.yaml"
            async with aiofiles.open(values_path, mode="w") as values_file:
                await values_file.write(proxy.values)
            args.extend(["--values", str(values_path)])
        return args

    async def install(
        self, conn: ClusterConnection, proxy: HelmReleaseProxy
    ) -> ReleaseInfo:
        """Install the chart described by the HelmReleaseProxy."""
        _LOGGER.info(
            "Installing release %s on %s",
            proxy.release_name,
            conn.cluster.namespaced_name,
        )
        args = self._args(conn, "install", *await self._chart_args(proxy))
        args.append("--create-namespace")
        await self._run(args)
        return await self.get_release(conn, proxy.release_name, proxy.release_namespace)

    async def upgrade(
        self, conn: ClusterConnection, proxy: HelmReleaseProxy
    ) -> ReleaseInfo:
        """Upgrade an existing release to the HelmReleaseProxy version and values."""
        _LOGGER.info(
            "Upgrading release %s on %s",
            proxy.release_name,
            conn.cluster.namespaced_name,
        )
        args = self._args(conn, "upgrade", *await self._chart_args(proxy))
        args.append("--reset-values")
        await self._run(args)
        return await self.get_release(conn, proxy.release_name, proxy.release_namespace)

    async def uninstall(
        self, conn: ClusterConnection, name: str, namespace: str
    ) -> None:
        """Uninstall the release."""
        _LOGGER.info(
            "Uninstalling release %s on %s", name, conn.cluster.namespaced_name
        )
        try:
            await self._run(
                self._args(conn, "uninstall", name, "--namespace", namespace)
            )
        except HelmException as err:
            if "not found" in str(err):
                raise ReleaseNotFoundError(
                    f"Release {namespace}/{name} not found on "
                    f"{conn.cluster.namespaced_name}"
                ) from err
            raise
