"""Tests for rendering values templates."""

import pytest
import yaml

from helm_proxy.exceptions import ValuesTemplateError
from helm_proxy.values import TemplateResolver

from . import make_cluster


@pytest.fixture(name="resolver")
def resolver_fixture() -> TemplateResolver:
    return TemplateResolver()


def test_resolve_metadata(resolver: TemplateResolver) -> None:
    """Test rendering cluster metadata into values."""
    cluster = make_cluster("workload-1")
    rendered = resolver.resolve(
        "controller:\n  name: {{ .Cluster.metadata.name }}-nginx\n"
        "  label: {{ .Cluster.metadata.labels.nginxIngressChart }}\n",
        cluster,
    )
    assert yaml.safe_load(rendered) == {
        "controller": {"name": "workload-1-nginx", "label": "enabled"}
    }


def test_resolve_spec(resolver: TemplateResolver) -> None:
    """Test rendering scalar and list fields of the cluster spec."""
    cluster = make_cluster(
        "workload-1",
        spec={
            "clusterNetwork": {"pods": {"cidrBlocks": ["192.168.0.0/16"]}},
            "paused": False,
        },
    )
    rendered = resolver.resolve(
        "cidrs: {{ .Cluster.spec.clusterNetwork.pods.cidrBlocks }}\n"
        "paused: {{- .Cluster.spec.paused -}}\n",
        cluster,
    )
    assert yaml.safe_load(rendered) == {"cidrs": ["192.168.0.0/16"], "paused": False}


def test_resolve_empty(resolver: TemplateResolver) -> None:
    """Test an empty template renders to an empty string."""
    assert resolver.resolve("", make_cluster("workload-1")) == ""


def test_resolve_without_placeholders(resolver: TemplateResolver) -> None:
    """Test a template without placeholders is returned unchanged."""
    template = "replicaCount: 2\n"
    assert resolver.resolve(template, make_cluster("workload-1")) == template


def test_resolve_missing_field(resolver: TemplateResolver) -> None:
    """Test a reference to a missing field is an error."""
    with pytest.raises(ValuesTemplateError, match=r"'\.Cluster\.spec\.missing' not found"):
        resolver.resolve("value: {{ .Cluster.spec.missing }}", make_cluster("workload-1"))


def test_resolve_invalid_yaml(resolver: TemplateResolver) -> None:
    """Test rendered output that is not valid yaml is an error."""
    with pytest.raises(ValuesTemplateError, match="not valid YAML"):
        resolver.resolve(
            "key: [{{ .Cluster.metadata.name }}", make_cluster("workload-1")
        )
