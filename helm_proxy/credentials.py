"""Library for obtaining connection details for a target cluster.

Kubeconfigs follow the Cluster API convention of a Secret named
`<cluster>-kubeconfig` in the namespace of the Cluster, holding the kubeconfig
under the `value` key.
"""

from abc import ABC, abstractmethod
import base64
import binascii
from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import tempfile

import aiofiles

from .exceptions import CredentialsError, ObjectNotFoundError
from .manifest import Cluster, NamedResource, Secret, SECRET_KIND
from .store import Store

__all__ = [
    "ClusterConnection",
    "CredentialProvider",
    "KubeconfigSecretProvider",
]

_LOGGER = logging.getLogger(__name__)

KUBECONFIG_SECRET_SUFFIX = "-kubeconfig"
KUBECONFIG_SECRET_KEY = "value"


@dataclass(frozen=True, kw_only=True)
class ClusterConnection:
    """A handle used to run commands against a target cluster."""

    cluster: NamedResource
    """The Cluster the connection is for."""

    kubeconfig: Path
    """Path to a kubeconfig file for the cluster."""


class CredentialProvider(ABC):
    """Provides connections to target clusters."""

    @abstractmethod
    def connection(
        self, cluster: Cluster
    ) -> AbstractAsyncContextManager[ClusterConnection]:
        """Return an async context manager yielding a connection to the cluster.

        Raises:
            CredentialsError: If connection details are not available.
        """


class KubeconfigSecretProvider(CredentialProvider):
    """Reads cluster kubeconfigs from Secrets in the store."""

    def __init__(self, store: Store, tmp_dir: Path | None = None) -> None:
        """Initialize KubeconfigSecretProvider."""
        self._store = store
        self._tmp_dir = tmp_dir

    async def _read_kubeconfig(self, cluster: Cluster) -> str:
        secret_id = NamedResource(
            SECRET_KIND, cluster.namespace, f"{cluster.name}{KUBECONFIG_SECRET_SUFFIX}"
        )
        try:
            secret = await self._store.get(Secret, secret_id)
        except ObjectNotFoundError as err:
            raise CredentialsError(
                f"Kubeconfig secret {secret_id.namespaced_name} not found"
            ) from err
        if secret.string_data and KUBECONFIG_SECRET_KEY in secret.string_data:
            return secret.string_data[KUBECONFIG_SECRET_KEY]
        if not secret.data or KUBECONFIG_SECRET_KEY not in secret.data:
            raise CredentialsError(
                f"Kubeconfig secret {secret_id.namespaced_name} "
                f"missing key '{KUBECONFIG_SECRET_KEY}'"
            )
        try:
            return base64.b64decode(secret.data[KUBECONFIG_SECRET_KEY]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as err:
            raise CredentialsError(
                f"Unable to decode kubeconfig secret {secret_id.namespaced_name}"
            ) from err

    @asynccontextmanager
    async def connection(  # type: ignore[override]
        self, cluster: Cluster
    ) -> AsyncGenerator[ClusterConnection, None]:
        """Write the cluster kubeconfig to a temporary file for the connection."""
        kubeconfig = await self._read_kubeconfig(cluster)
        with tempfile.TemporaryDirectory(dir=self._tmp_dir) as tmp_dir:
            path = Path(tmp_dir) / "kubeconfig"
            async with aiofiles.open(str(path), mode="w") as fd:
                await fd.write(kubeconfig)
            _LOGGER.debug("Wrote kubeconfig for %s", cluster.namespaced_name)
            yield ClusterConnection(cluster=cluster.resource_id, kubeconfig=path)
