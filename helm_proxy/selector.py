"""Library for selecting the target clusters of a HelmChartProxy."""

import logging

from .manifest import Cluster, ClusterSelector
from .store import Store

_LOGGER = logging.getLogger(__name__)


class ClusterSelectorEngine:
    """Resolves a cluster selector to the set of matching Cluster objects."""

    def __init__(self, store: Store) -> None:
        """Initialize ClusterSelectorEngine."""
        self._store = store

    async def select(
        self, selector: ClusterSelector, namespace: str | None
    ) -> list[Cluster]:
        """Return every Cluster in the namespace carrying the selector label.

        An empty selector matches nothing rather than everything. Errors
        listing clusters are propagated, a partial result is never returned.
        """
        if selector.is_empty:
            _LOGGER.debug("Empty cluster selector matches no clusters")
            return []
        clusters = await self._store.list_objects(
            Cluster, namespace=namespace, labels={selector.key: selector.value}
        )
        _LOGGER.debug(
            "Selector %s matched clusters %s", selector, [c.name for c in clusters]
        )
        return clusters
