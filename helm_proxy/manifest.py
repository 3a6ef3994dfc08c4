"""Representation of the objects managed by helm-proxy.

A HelmChartProxy declares a chart that should be installed on every Cluster
matched by its selector. For each matched Cluster the controller maintains a
HelmReleaseProxy child that records the release to install on that cluster.

Objects may be built directly from kubernetes style documents (see
`parse_raw_obj`) or created programmatically.
"""

import datetime
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, ClassVar

import aiofiles
import yaml
from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_encode
from mashumaro.config import BaseConfig

from .conditions import Condition
from .exceptions import InputException

__all__ = [
    "read_objects",
    "parse_raw_obj",
    "NamedResource",
    "KubeObject",
    "Cluster",
    "ClusterSelector",
    "HelmChartProxy",
    "HelmReleaseProxy",
    "Secret",
]

_LOGGER = logging.getLogger(__name__)


# Match a prefix of apiVersion to ensure we have the right type of object.
# We don't check specific versions for forward compatibility on upgrade.
ADDONS_DOMAIN = "addons.cluster.x-k8s.io"
CLUSTER_DOMAIN = "cluster.x-k8s.io"
CLUSTER_KIND = "Cluster"
SECRET_KIND = "Secret"
HELM_CHART_PROXY = "HelmChartProxy"
HELM_RELEASE_PROXY = "HelmReleaseProxy"
DEFAULT_NAMESPACE = "default"

# Label on a HelmReleaseProxy naming the HelmChartProxy it belongs to
CHART_PROXY_LABEL = "helmreleaseproxy.addons.cluster.x-k8s.io/helmchartproxy-name"
# Label on a HelmReleaseProxy naming the Cluster it targets
CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
# Annotation on a HelmReleaseProxy set when the release name was generated
RELEASE_NAME_GENERATED_ANNOTATION = (
    "helmreleaseproxy.addons.cluster.x-k8s.io/is-release-name-generated"
)

HELM_CHART_PROXY_FINALIZER = "helmchartproxy.addons.cluster.x-k8s.io"
HELM_RELEASE_PROXY_FINALIZER = "helmreleaseproxy.addons.cluster.x-k8s.io"

# Fields managed by the store or describing object identity rather than spec
_METADATA_FIELDS = (
    "name",
    "namespace",
    "labels",
    "annotations",
    "finalizers",
    "owner_references",
    "deletion_timestamp",
    "generation",
    "resource_version",
    "status",
)


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


def _parse_timestamp(value: Any) -> datetime.datetime | None:
    """Parse a timestamp that may already have been converted by the yaml loader."""
    if value is None or isinstance(value, datetime.datetime):
        return value
    try:
        return datetime.datetime.fromisoformat(str(value))
    except ValueError as err:
        raise InputException(f"Invalid timestamp '{value}'") from err


def _parse_metadata(cls: type, doc: dict[str, Any]) -> dict[str, Any]:
    """Return the common metadata fields of a kubernetes document."""
    if not (metadata := doc.get("metadata")):
        raise InputException(f"Invalid {cls} missing metadata: {doc}")
    if not (name := metadata.get("name")):
        raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
    return {
        "name": name,
        "namespace": metadata.get("namespace", DEFAULT_NAMESPACE),
        "labels": dict(metadata.get("labels") or {}),
        "annotations": dict(metadata.get("annotations") or {}),
        "finalizers": list(metadata.get("finalizers") or []),
        "deletion_timestamp": _parse_timestamp(metadata.get("deletionTimestamp")),
    }


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml_encode(self, self.__class__)  # type: ignore[return-value]

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes resource."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass
class OwnerReference(BaseManifest):
    """A reference from a dependent object to the object that owns it."""

    kind: str
    """The kind of the owner."""

    name: str
    """The name of the owner, always in the same namespace as the dependent."""

    controller: bool = False
    """True if the owner is the managing controller of the dependent."""

    block_owner_deletion: bool = False
    """True if the owner can't be removed before the dependent is."""


@dataclass
class ClusterReference(BaseManifest):
    """A reference to a Cluster."""

    name: str
    """The name of the Cluster."""

    namespace: str | None = None
    """The namespace of the Cluster."""

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(CLUSTER_KIND, self.namespace, self.name)


@dataclass(kw_only=True)
class KubeObject(BaseManifest):
    """Fields common to every object held in the store."""

    kind: ClassVar[str]
    """The kind of the object."""

    name: str
    """The name of the object."""

    namespace: str | None = None
    """The namespace of the object."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels used to select and bind objects."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Free form annotations."""

    finalizers: list[str] = field(default_factory=list)
    """Markers that must be cleared before a deleted object is removed."""

    owner_references: list[OwnerReference] = field(default_factory=list)
    """The objects this object depends on."""

    deletion_timestamp: datetime.datetime | None = None
    """Set once deletion has been requested."""

    generation: int = 0
    """Incremented by the store whenever the spec changes."""

    resource_version: int = 0
    """Incremented by the store on every write."""

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(self.kind, self.namespace, self.name)

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return self.resource_id.namespaced_name

    @property
    def is_terminating(self) -> bool:
        """Return True if deletion of the object has been requested."""
        return self.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Add the finalizer, returning True if the object changed."""
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove the finalizer, returning True if the object changed."""
        if finalizer not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != finalizer]
        return True

    def controller_reference(self) -> OwnerReference | None:
        """Return the owner reference of the managing controller, if any."""
        for ref in self.owner_references:
            if ref.controller:
                return ref
        return None

    def spec_dict(self) -> dict[str, Any]:
        """Return the desired state of the object without metadata or status."""
        result = self.to_dict()
        for key in _METADATA_FIELDS:
            result.pop(key, None)
        return result


@dataclass
class ClusterSelector(BaseManifest):
    """A single label that a Cluster must carry to be selected."""

    key: str = ""
    """The label key."""

    value: str = ""
    """The label value."""

    @property
    def is_empty(self) -> bool:
        return not self.key

    def matches(self, labels: dict[str, str]) -> bool:
        """Return True if the labels satisfy the selector."""
        if self.is_empty:
            return False
        return self.key in labels and labels[self.key] == self.value

    def __str__(self) -> str:
        return f"{self.key}={self.value}"


@dataclass(kw_only=True)
class Cluster(KubeObject):
    """A target cluster that charts are installed on."""

    kind: ClassVar[str] = CLUSTER_KIND

    spec: dict[str, Any] | None = None
    """The raw spec of the Cluster, available to values templates."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Cluster":
        """Parse a Cluster from a kubernetes resource object."""
        _check_version(doc, CLUSTER_DOMAIN)
        return cls(spec=doc.get("spec"), **_parse_metadata(cls, doc))

    @property
    def template_context(self) -> dict[str, Any]:
        """Return the document exposed to values templates as `.Cluster`."""
        return {
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": dict(self.labels),
                "annotations": dict(self.annotations),
            },
            "spec": self.spec or {},
        }

    @property
    def reference(self) -> ClusterReference:
        return ClusterReference(name=self.name, namespace=self.namespace)


@dataclass
class HelmChartProxyStatus(BaseManifest):
    """Observed state of a HelmChartProxy."""

    ready: bool = False
    """True when every HelmReleaseProxy is ready and up to date."""

    matching_clusters: list[ClusterReference] = field(default_factory=list)
    """Clusters matched by the selector on the last reconcile."""

    conditions: list[Condition] = field(default_factory=list)
    """Conditions summarising the HelmReleaseProxy objects."""

    failure_reason: str | None = None
    """The error from the last failed reconcile."""

    observed_generation: int | None = None
    """The generation the status was computed from."""


@dataclass(kw_only=True)
class HelmChartProxy(KubeObject):
    """A chart to install on every Cluster matched by a selector."""

    kind: ClassVar[str] = HELM_CHART_PROXY

    cluster_selector: ClusterSelector = field(default_factory=ClusterSelector)
    """Selects the clusters to install the chart on."""

    chart_name: str
    """The name of the chart in the repository."""

    repo_url: str
    """The URL of the helm repository holding the chart."""

    release_name: str | None = None
    """The release name, generated per cluster when unset."""

    version: str | None = None
    """The chart version, latest when unset."""

    release_namespace: str = DEFAULT_NAMESPACE
    """The namespace on the target cluster to install the release into."""

    values: str = ""
    """A values template rendered per cluster."""

    status: HelmChartProxyStatus = field(default_factory=HelmChartProxyStatus)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "HelmChartProxy":
        """Parse a HelmChartProxy from a kubernetes resource object."""
        _check_version(doc, ADDONS_DOMAIN)
        if not (spec := doc.get("spec")):
            raise InputException(f"Invalid {cls} missing spec: {doc}")
        if not (chart_name := spec.get("chartName")):
            raise InputException(f"Invalid {cls} missing spec.chartName: {doc}")
        if not (repo_url := spec.get("repoURL")):
            raise InputException(f"Invalid {cls} missing spec.repoURL: {doc}")
        selector = spec.get("clusterSelector") or {}
        return cls(
            cluster_selector=ClusterSelector(
                key=selector.get("key", ""), value=selector.get("value", "")
            ),
            chart_name=chart_name,
            repo_url=repo_url,
            release_name=spec.get("releaseName") or None,
            version=spec.get("version"),
            release_namespace=spec.get("namespace") or DEFAULT_NAMESPACE,
            values=spec.get("values") or "",
            **_parse_metadata(cls, doc),
        )


@dataclass
class HelmReleaseProxyStatus(BaseManifest):
    """Observed state of a HelmReleaseProxy."""

    ready: bool = False
    """True when the release is deployed at the desired version and values."""

    phase: str | None = None
    """The helm release status e.g. deployed, failed, pending-install."""

    revision: int | None = None
    """The helm release revision."""

    release_namespace: str | None = None
    """The namespace the release was installed into."""

    failure_reason: str | None = None
    """The error from the last failed reconcile."""

    conditions: list[Condition] = field(default_factory=list)

    observed_generation: int | None = None
    """The generation the status was computed from."""


@dataclass(kw_only=True)
class HelmReleaseProxy(KubeObject):
    """A chart release on a single Cluster, owned by a HelmChartProxy."""

    kind: ClassVar[str] = HELM_RELEASE_PROXY

    cluster_ref: ClusterReference
    """The Cluster to install the release on."""

    chart_name: str
    """The name of the chart in the repository."""

    repo_url: str
    """The URL of the helm repository holding the chart."""

    release_name: str
    """The release name on the target cluster."""

    version: str | None = None
    """The chart version, latest when unset."""

    release_namespace: str = DEFAULT_NAMESPACE
    """The namespace on the target cluster to install the release into."""

    values: str = ""
    """Values rendered for the target cluster."""

    status: HelmReleaseProxyStatus = field(default_factory=HelmReleaseProxyStatus)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "HelmReleaseProxy":
        """Parse a HelmReleaseProxy from a kubernetes resource object."""
        _check_version(doc, ADDONS_DOMAIN)
        if not (spec := doc.get("spec")):
            raise InputException(f"Invalid {cls} missing spec: {doc}")
        if not (cluster_ref := spec.get("clusterRef")) or "name" not in cluster_ref:
            raise InputException(f"Invalid {cls} missing spec.clusterRef: {doc}")
        for key in ("chartName", "repoURL", "releaseName"):
            if not spec.get(key):
                raise InputException(f"Invalid {cls} missing spec.{key}: {doc}")
        metadata = _parse_metadata(cls, doc)
        owner_references = [
            OwnerReference(
                kind=ref["kind"],
                name=ref["name"],
                controller=bool(ref.get("controller")),
                block_owner_deletion=bool(ref.get("blockOwnerDeletion")),
            )
            for ref in (doc["metadata"].get("ownerReferences") or [])
        ]
        return cls(
            cluster_ref=ClusterReference(
                name=cluster_ref["name"],
                namespace=cluster_ref.get("namespace", metadata["namespace"]),
            ),
            chart_name=spec["chartName"],
            repo_url=spec["repoURL"],
            release_name=spec["releaseName"],
            version=spec.get("version"),
            release_namespace=spec.get("namespace") or DEFAULT_NAMESPACE,
            values=spec.get("values") or "",
            owner_references=owner_references,
            **metadata,
        )

    @property
    def cluster_name(self) -> str | None:
        """The name of the Cluster this object is bound to."""
        return self.labels.get(CLUSTER_NAME_LABEL)

    @property
    def chart_proxy_name(self) -> str | None:
        """The name of the HelmChartProxy this object is bound to."""
        return self.labels.get(CHART_PROXY_LABEL)

    @property
    def release_name_generated(self) -> bool:
        return self.annotations.get(RELEASE_NAME_GENERATED_ANNOTATION) == "true"


@dataclass(kw_only=True)
class Secret(KubeObject):
    """A Secret contains a small amount of sensitive data."""

    kind: ClassVar[str] = SECRET_KIND

    data: dict[str, str] | None = field(metadata={"serialize": "omit"}, default=None)
    """Base64 encoded data in the Secret."""

    string_data: dict[str, str] | None = field(
        metadata={"serialize": "omit"}, default=None
    )
    """The string data in the Secret."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Secret":
        """Parse a secret object from a kubernetes resource."""
        _check_version(doc, "v1")
        return cls(
            data=doc.get("data"),
            string_data=doc.get("stringData"),
            **_parse_metadata(cls, doc),
        )


_PARSERS = {
    CLUSTER_KIND: Cluster.parse_doc,
    HELM_CHART_PROXY: HelmChartProxy.parse_doc,
    HELM_RELEASE_PROXY: HelmReleaseProxy.parse_doc,
    SECRET_KIND: Secret.parse_doc,
}


def parse_raw_obj(obj: dict[str, Any]) -> KubeObject:
    """Parse a raw kubernetes object into a KubeObject."""
    if not (kind := obj.get("kind")):
        raise InputException(f"Invalid object missing kind: {obj}")
    if not (parser := _PARSERS.get(kind)):
        raise InputException(f"Unsupported object kind '{kind}'")
    return parser(obj)


async def read_objects(path: Path) -> list[KubeObject]:
    """Read all supported objects from a yaml file or a directory of yaml files.

    Documents of kinds that helm-proxy does not manage are skipped.
    """
    if path.is_dir():
        files = sorted(
            p for p in path.rglob("*") if p.suffix in (".yaml", ".yml") and p.is_file()
        )
    else:
        files = [path]
    objects: list[KubeObject] = []
    for file in files:
        async with aiofiles.open(str(file)) as fd:
            content = await fd.read()
        try:
            docs = list(yaml.safe_load_all(content))
        except yaml.YAMLError as err:
            raise InputException(f"Unable to parse yaml in {file}: {err}") from err
        for doc in docs:
            if not doc:
                continue
            if doc.get("kind") not in _PARSERS:
                _LOGGER.debug("Skipping %s in %s", doc.get("kind"), file)
                continue
            objects.append(parse_raw_obj(doc))
    return objects
