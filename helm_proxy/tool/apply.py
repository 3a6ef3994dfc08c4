"""helm-proxy apply action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import asyncio
import logging
import pathlib
import tempfile
from typing import Any, cast

from helm_proxy.chart_proxy_controller import EventRouter, HelmChartProxyController
from helm_proxy.credentials import KubeconfigSecretProvider
from helm_proxy.exceptions import HelmProxyException
from helm_proxy.helm import HelmCli
from helm_proxy.manager import Manager, ManagerConfig
from helm_proxy.manifest import HelmChartProxy
from helm_proxy.reconcile import ControllerConfig
from helm_proxy.release_proxy_controller import HelmReleaseProxyController
from helm_proxy.task import task_service_context

from . import common
from .format import formatter

_LOGGER = logging.getLogger(__name__)


class ApplyAction:
    """Install the releases for every HelmChartProxy on its matched clusters."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "apply",
                help="Install releases on the clusters matched by each HelmChartProxy",
                description=(
                    "Load objects from local yaml files, run the controllers until "
                    "there is no more work and print the resulting status."
                ),
            ),
        )
        common.add_common_flags(args)
        args.add_argument(
            "--workers",
            type=int,
            default=ManagerConfig.workers,
            help="Number of concurrent reconciles per object kind",
        )
        args.add_argument(
            "--max-retries",
            type=int,
            default=3,
            help="Number of times to retry a failed reconcile",
        )
        args.add_argument(
            "--timeout",
            type=float,
            default=600.0,
            help="Seconds to wait for all work to finish",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        output: str | None,
        workers: int,
        max_retries: int,
        timeout: float,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        store = await common.load_store(path)
        controller_config = ControllerConfig()
        config = ManagerConfig(workers=workers, max_retries=max_retries)

        with tempfile.TemporaryDirectory() as tmp_dir, task_service_context():
            manager = Manager(
                store,
                EventRouter(store),
                HelmChartProxyController(store, controller_config),
                HelmReleaseProxyController(
                    store,
                    HelmCli(pathlib.Path(tmp_dir)),
                    KubeconfigSecretProvider(store, pathlib.Path(tmp_dir)),
                    controller_config,
                ),
                config,
            )
            await manager.start()
            try:
                async with asyncio.timeout(timeout):
                    await manager.block_till_idle()
            except TimeoutError as err:
                raise HelmProxyException(
                    f"Timed out after {timeout}s waiting for reconcile to finish"
                ) from err
            finally:
                await manager.close()

        results: list[dict[str, Any]] = []
        for parent in await store.list_objects(HelmChartProxy):
            results.append(
                {
                    "namespace": parent.namespace,
                    "name": parent.name,
                    "ready": parent.status.ready,
                    "clusters": len(parent.status.matching_clusters),
                    "reason": parent.status.failure_reason,
                    "status": parent.status.to_dict(),
                }
            )
        formatter(output, ["namespace", "name", "ready", "clusters", "reason"]).print(
            results
        )
