"""helm-proxy plan action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import Any, cast

from helm_proxy.chart_proxy_controller import ChildSetReconciler, LifecycleCoordinator
from helm_proxy.manifest import HelmChartProxy
from helm_proxy.selector import ClusterSelectorEngine
from helm_proxy.values import TemplateResolver

from . import common
from .format import formatter

_LOGGER = logging.getLogger(__name__)


class PlanAction:
    """Print the HelmReleaseProxy changes needed for each HelmChartProxy."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "plan",
                help="Print the HelmReleaseProxy changes for each HelmChartProxy",
                description=(
                    "Load objects from local yaml files and print the create, update, "
                    "delete and reinstall actions needed to converge each "
                    "HelmChartProxy."
                ),
            ),
        )
        common.add_common_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        output: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        store = await common.load_store(path)
        selector = ClusterSelectorEngine(store)
        reconciler = ChildSetReconciler(store, TemplateResolver())
        lifecycle = LifecycleCoordinator(store)

        results: list[dict[str, Any]] = []
        for parent in await store.list_objects(HelmChartProxy):
            if parent.is_terminating:
                _LOGGER.info("Skipping terminating %s", parent.namespaced_name)
                continue
            clusters = await selector.select(parent.cluster_selector, parent.namespace)
            children = await lifecycle.list_children(parent)
            for action in reconciler.plan(parent, clusters, children):
                results.append({"helmchartproxy": parent.name, **action.to_dict()})

        if not results and output is None:
            print("No changes")
            return
        cols = ["namespace", "helmchartproxy", "action", "name", "cluster", "reason"]
        formatter(output, cols).print(results)
