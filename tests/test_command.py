"""Tests for command library."""

import pytest

from helm_proxy.command import Command, run
from helm_proxy.exceptions import CommandException, HelmException


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_command_env() -> None:
    """Test environment variables are passed to the command."""
    result = await run(Command(["sh", "-c", "echo $GREETING"], env={"GREETING": "Hi"}))
    assert result == "Hi\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_command_custom_exception() -> None:
    """Test a failing command raises the configured exception."""
    with pytest.raises(HelmException, match="return code 1"):
        await run(Command(["/bin/false"], exc=HelmException))


async def test_command_timeout() -> None:
    """Test a command that does not finish in time is killed."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "10"], timeout=0.1))
