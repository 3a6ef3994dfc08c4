"""Tests for the kubeconfig credential provider."""

import base64
from pathlib import Path

import pytest

from helm_proxy.credentials import KubeconfigSecretProvider
from helm_proxy.exceptions import CredentialsError
from helm_proxy.manifest import Secret
from helm_proxy.store import InMemoryStore

from . import make_cluster

KUBECONFIG = "apiVersion: v1\nkind: Config\nclusters: []\n"


async def test_connection_from_data(store: InMemoryStore, tmp_path: Path) -> None:
    """Test the kubeconfig is decoded and written for the connection."""
    await store.create(
        Secret(
            name="workload-1-kubeconfig",
            namespace="default",
            data={"value": base64.b64encode(KUBECONFIG.encode()).decode()},
        )
    )
    cluster = make_cluster("workload-1")
    provider = KubeconfigSecretProvider(store, tmp_path)
    async with provider.connection(cluster) as conn:
        assert conn.cluster == cluster.resource_id
        assert conn.kubeconfig.read_text() == KUBECONFIG
        kubeconfig = conn.kubeconfig
    assert not kubeconfig.exists()


async def test_connection_from_string_data(store: InMemoryStore) -> None:
    """Test a kubeconfig stored as string data."""
    await store.create(
        Secret(
            name="workload-1-kubeconfig",
            namespace="default",
            string_data={"value": KUBECONFIG},
        )
    )
    provider = KubeconfigSecretProvider(store)
    async with provider.connection(make_cluster("workload-1")) as conn:
        assert conn.kubeconfig.read_text() == KUBECONFIG


async def test_missing_secret(store: InMemoryStore) -> None:
    """Test a cluster without a kubeconfig secret."""
    provider = KubeconfigSecretProvider(store)
    with pytest.raises(CredentialsError, match="default/workload-1-kubeconfig not found"):
        async with provider.connection(make_cluster("workload-1")):
            pass


async def test_missing_key(store: InMemoryStore) -> None:
    """Test a kubeconfig secret without the expected key."""
    await store.create(
        Secret(name="workload-1-kubeconfig", namespace="default", data={"other": ""})
    )
    provider = KubeconfigSecretProvider(store)
    with pytest.raises(CredentialsError, match="missing key 'value'"):
        async with provider.connection(make_cluster("workload-1")):
            pass


async def test_invalid_data(store: InMemoryStore) -> None:
    """Test a kubeconfig secret that does not decode to text."""
    await store.create(
        Secret(
            name="workload-1-kubeconfig",
            namespace="default",
            data={"value": base64.b64encode(b"\xff\xfe").decode()},
        )
    )
    provider = KubeconfigSecretProvider(store)
    with pytest.raises(CredentialsError, match="Unable to decode"):
        async with provider.connection(make_cluster("workload-1")):
            pass
