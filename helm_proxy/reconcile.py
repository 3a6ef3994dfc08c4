"""Types shared by the helm-proxy controllers and the manager that drives them."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from .manifest import NamedResource

__all__ = [
    "ControllerConfig",
    "ReconcileResult",
    "Reconciler",
]


@dataclass
class ControllerConfig:
    """Configuration for the HelmChartProxy and HelmReleaseProxy controllers."""

    requeue_after: float = 5.0
    """Seconds to wait before checking again on work waiting on another object."""


@dataclass(frozen=True)
class ReconcileResult:
    """The outcome of a successful reconcile attempt."""

    requeue_after: float | None = None
    """When set, reconcile the object again after this many seconds."""


class Reconciler(ABC):
    """Converges a single object towards its desired state."""

    @abstractmethod
    async def reconcile(self, resource_id: NamedResource) -> ReconcileResult:
        """Reconcile the object, raising on failure so the caller may retry."""
