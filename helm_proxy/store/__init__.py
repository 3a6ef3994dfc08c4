"""
The store module provides the resource store that helm-proxy controllers read
and write HelmChartProxy, HelmReleaseProxy, Cluster and Secret objects through.

- Uses NamedResource as the key for all objects.
- Stores values as dataclass instances from manifest.py for type safety.
- Delivers change events to listeners, which drive re-reconciliation.

This abstract interface allows for various implementations (in-memory, a
kubernetes API server, etc.).
"""

from .store import Store, StoreEvent
from .in_memory import InMemoryStore

__all__ = [
    "Store",
    "StoreEvent",
    "InMemoryStore",
]
