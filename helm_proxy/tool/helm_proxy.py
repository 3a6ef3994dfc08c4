"""Command line tool for distributing helm charts across clusters."""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any

import yaml

from helm_proxy.exceptions import HelmProxyException
from . import apply, plan

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Command line utility for installing helm charts on selected clusters."
        ),
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    plan.PlanAction.register(subparsers)
    apply.ApplyAction.register(subparsers)
    return parser


def main() -> None:
    """helm-proxy command line tool main entry point."""

    def str_presenter(dumper: yaml.Dumper, data: Any) -> Any:
        """Represent multi-line yaml strings as you'd expect.

        See https://github.com/yaml/pyyaml/issues/240
        """
        return dumper.represent_scalar(
            "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
        )

    yaml.add_representer(str, str_presenter)

    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except HelmProxyException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("helm-proxy error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
