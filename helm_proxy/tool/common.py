"""Common utilities for helm-proxy commands."""

from argparse import ArgumentParser
import logging
import pathlib

from helm_proxy.exceptions import InputException
from helm_proxy.manifest import read_objects
from helm_proxy.store import InMemoryStore

_LOGGER = logging.getLogger(__name__)


def add_common_flags(args: ArgumentParser) -> None:
    """Add flags shared by all commands."""
    args.add_argument(
        "--path",
        help=(
            "Path to a yaml file or directory of HelmChartProxy, HelmReleaseProxy, "
            "Cluster and Secret objects"
        ),
        type=pathlib.Path,
        default=pathlib.Path("."),
    )
    args.add_argument(
        "--output",
        "-o",
        choices=["yaml", "json"],
        default=None,
        help="Output format of the command",
    )


async def load_store(path: pathlib.Path) -> InMemoryStore:
    """Return a store populated with the objects found in the path."""
    if not path.exists():
        raise InputException(f"Path {path} does not exist")
    store = InMemoryStore()
    objects = await read_objects(path)
    for obj in objects:
        await store.create(obj)
    _LOGGER.info("Loaded %d objects from %s", len(objects), path)
    return store
