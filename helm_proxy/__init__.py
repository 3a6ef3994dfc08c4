"""
helm-proxy installs a helm chart on every cluster matched by a label selector.

A `HelmChartProxy` declares the chart and the selector. For every matched
`Cluster` the controller maintains a `HelmReleaseProxy` that records the
release to install on that cluster, and rolls their status back up into the
`HelmChartProxy`.
"""

__all__ = [
    "manifest",
    "store",
    "helm",
    "exceptions",
    "manager",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
