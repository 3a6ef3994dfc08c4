"""Tests for the helm-proxy `apply` command."""

import os
from pathlib import Path
import stat

import pytest
from syrupy.assertion import SnapshotAssertion
import yaml

from helm_proxy.exceptions import CommandException

from . import TESTDATA, run_command

# Tracks installed releases as files in $HELM_STATE
FAKE_HELM = """\
#!/bin/sh
echo "$@" >> "$HELM_STATE/helm.log"
case "$1" in
  install)
    touch "$HELM_STATE/$2"
    ;;
  list)
    if [ -f "$HELM_STATE/nginx-ingress" ]; then
      echo '[{"name":"nginx-ingress","namespace":"default","revision":"1","status":"deployed","chart":"nginx-ingress-0.17.1"}]'
    else
      echo '[]'
    fi
    ;;
  get)
    printf 'controller:\\n  name: workload-1-nginx\\n'
    ;;
esac
"""


@pytest.fixture(name="helm_env")
def helm_env_fixture(tmp_path: Path) -> dict[str, str]:
    """Fixture for an environment with a fake helm binary on the path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "helm"
    script.write_text(FAKE_HELM)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return {
        "PATH": f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}",
        "HELM_STATE": str(tmp_path),
    }


async def test_apply(
    helm_env: dict[str, str], tmp_path: Path, snapshot: SnapshotAssertion
) -> None:
    """Test installing the release on the selected cluster."""
    result = await run_command(
        ["apply", "--path", str(TESTDATA / "single"), "-o", "yaml"], env=helm_env
    )
    [status] = list(yaml.safe_load_all(result))
    # Conditions carry transition times
    del status["status"]
    assert status == snapshot

    commands = (tmp_path / "helm.log").read_text().splitlines()
    installs = [command for command in commands if command.startswith("install")]
    assert len(installs) == 1
    assert installs[0].startswith(
        "install nginx-ingress nginx-ingress --repo https://helm.nginx.com/stable"
    )


async def test_apply_missing_credentials(helm_env: dict[str, str]) -> None:
    """Test a cluster without a kubeconfig is reported as not ready."""
    result = await run_command(
        [
            "apply",
            "--path",
            str(TESTDATA / "fleet"),
            "--max-retries",
            "0",
        ],
        env=helm_env,
    )
    lines = result.splitlines()
    assert lines[0].split() == ["NAMESPACE", "NAME", "READY", "CLUSTERS", "REASON"]
    assert lines[1].split()[:4] == ["default", "nginx-ingress", "False", "2"]


async def test_apply_invalid_path() -> None:
    """Test the error reported for a path without valid objects."""
    with pytest.raises(CommandException, match="helm-proxy error"):
        await run_command(["apply", "--path", str(TESTDATA / "missing.yaml")])
