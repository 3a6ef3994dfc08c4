"""Test helpers for the helm-proxy command line tool."""

from pathlib import Path
import sys

from helm_proxy.command import Command, run

HELM_PROXY_CMD = [sys.executable, "-m", "helm_proxy"]
TESTDATA = Path(__file__).parent.parent / "testdata"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command(HELM_PROXY_CMD + args, env=env))
