"""HelmReleaseProxy controller package.

This package contains the HelmReleaseProxy controller, which installs and
removes the helm release for a single Cluster.
"""

from .controller import HelmReleaseProxyController

__all__ = ["HelmReleaseProxyController"]
