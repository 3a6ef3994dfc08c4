"""HelmChartProxy controller package.

This package contains the HelmChartProxy controller, which maintains one
HelmReleaseProxy per Cluster matched by a HelmChartProxy selector.
"""

from .aggregator import StatusAggregator
from .controller import HelmChartProxyController
from .events import EventRouter
from .lifecycle import LifecycleCoordinator
from .reconciler import ActionKind, ChildAction, ChildSetReconciler

__all__ = [
    "ActionKind",
    "ChildAction",
    "ChildSetReconciler",
    "EventRouter",
    "HelmChartProxyController",
    "LifecycleCoordinator",
    "StatusAggregator",
]
