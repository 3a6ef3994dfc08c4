"""Tests for helm library."""

from pathlib import Path
import stat

import pytest

from helm_proxy import helm
from helm_proxy.credentials import ClusterConnection
from helm_proxy.exceptions import HelmException, ReleaseNotFoundError
from helm_proxy.helm import HelmCli, ReleaseInfo, needs_upgrade, parse_values
from helm_proxy.manifest import ClusterReference, HelmReleaseProxy, NamedResource

FAKE_HELM = """\
#!/bin/sh
echo "$@" >> "$HELM_LOG"
case "$1" in
  list)
    echo '[{"name":"nginx-ingress","namespace":"default","revision":"2","status":"deployed","chart":"nginx-ingress-0.17.1","app_version":"3.0.1"}]'
    ;;
  get)
    printf 'controller:\\n  name: workload-1-nginx\\n'
    ;;
  uninstall)
    echo 'Error: uninstall: Release not loaded: nginx: release: not found' >&2
    exit 1
    ;;
esac
"""


def make_release_proxy(**kwargs: str) -> HelmReleaseProxy:
    args = {
        "chart_name": "nginx-ingress",
        "repo_url": "https://helm.nginx.com/stable",
        "release_name": "nginx-ingress",
        "version": "0.17.1",
        "values": "controller:\n  name: workload-1-nginx\n",
    }
    args.update(kwargs)
    return HelmReleaseProxy(
        name="nginx-ingress-workload-1",
        namespace="default",
        cluster_ref=ClusterReference(name="workload-1", namespace="default"),
        **args,
    )


@pytest.fixture(name="release")
def release_fixture() -> ReleaseInfo:
    return ReleaseInfo(
        name="nginx-ingress",
        namespace="default",
        revision=1,
        status="deployed",
        chart="nginx-ingress-0.17.1",
        values={"controller": {"name": "workload-1-nginx"}},
    )


def test_chart_version(release: ReleaseInfo) -> None:
    """Test extracting the chart version from the chart field."""
    assert release.chart_version("nginx-ingress") == "0.17.1"
    assert release.chart_version("other") is None
    assert release.deployed


def test_parse_values() -> None:
    """Test parsing rendered values."""
    assert parse_values("") == {}
    assert parse_values("null\n") == {}
    assert parse_values("a: 1") == {"a": 1}
    with pytest.raises(HelmException, match="must be a mapping"):
        parse_values("- a")


def test_needs_upgrade(release: ReleaseInfo) -> None:
    """Test detecting a release that differs from the desired state."""
    assert not needs_upgrade(release, make_release_proxy())
    assert needs_upgrade(release, make_release_proxy(version="0.18.0"))
    assert needs_upgrade(release, make_release_proxy(values="replicaCount: 2"))
    # An unpinned version never forces an upgrade
    assert not needs_upgrade(release, make_release_proxy(version=""))


@pytest.fixture(name="helm_log")
def helm_log_fixture(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Path:
    """Fixture that replaces the helm binary with a script logging its arguments."""
    script = tmp_path / "helm"
    script.write_text(FAKE_HELM)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    log = tmp_path / "helm.log"
    log.touch()
    monkeypatch.setattr(helm, "HELM_BIN", str(script))
    monkeypatch.setenv("HELM_LOG", str(log))
    return log


@pytest.fixture(name="conn")
def conn_fixture(tmp_path: Path) -> ClusterConnection:
    return ClusterConnection(
        cluster=NamedResource("Cluster", "default", "workload-1"),
        kubeconfig=tmp_path / "kubeconfig",
    )


async def test_helm_cli_get_release(
    helm_log: Path, conn: ClusterConnection, tmp_path: Path
) -> None:
    """Test reading a release and its values."""
    cli = HelmCli(tmp_path)
    release = await cli.get_release(conn, "nginx-ingress", "default")
    assert release.revision == 2
    assert release.app_version == "3.0.1"
    assert release.values == {"controller": {"name": "workload-1-nginx"}}

    with pytest.raises(ReleaseNotFoundError):
        await cli.get_release(conn, "other", "default")

    commands = helm_log.read_text().splitlines()
    assert commands[0] == (
        f"list --all --output json --kubeconfig {conn.kubeconfig} --namespace default"
    )
    assert commands[1].startswith("get values nginx-ingress --namespace default")


async def test_helm_cli_install(
    helm_log: Path, conn: ClusterConnection, tmp_path: Path
) -> None:
    """Test installing a release passes the chart and values."""
    cli = HelmCli(tmp_path)
    release = await cli.install(conn, make_release_proxy())
    assert release.name == "nginx-ingress"

    values_file = tmp_path / "default-nginx-ingress-workload-1-values.yaml"
    assert values_file.read_text() == "controller:\n  name: workload-1-nginx\n"
    install = helm_log.read_text().splitlines()[0]
    assert install == (
        "install nginx-ingress nginx-ingress --repo https://helm.nginx.com/stable "
        "--namespace default --version 0.17.1 "
        f"--values {values_file} --kubeconfig {conn.kubeconfig} --create-namespace"
    )


async def test_helm_cli_uninstall_not_found(
    helm_log: Path, conn: ClusterConnection, tmp_path: Path
) -> None:
    """Test uninstalling a missing release raises not found."""
    cli = HelmCli(tmp_path)
    with pytest.raises(ReleaseNotFoundError):
        await cli.uninstall(conn, "nginx", "default")
