"""Module for rendering HelmChartProxy values templates for a cluster.

Values templates use Go template style placeholders referencing the target
Cluster, for example:

```yaml
clusterName: {{ .Cluster.metadata.name }}
podCIDR: {{ .Cluster.spec.clusterNetwork.pods.cidrBlocks }}
```

Scalars are substituted as-is and lists or mappings are rendered as inline
YAML, so the rendered document remains valid YAML.
"""

import logging
import re
from typing import Any

import yaml

from .exceptions import ValuesTemplateError
from .manifest import Cluster

_LOGGER = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"{{-?\s*\.([A-Za-z_][\w.-]*)\s*-?}}")


def _lookup(context: dict[str, Any], path: str) -> Any:
    """Find the value at the dotted path in the template context."""
    value: Any = context
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            raise ValuesTemplateError(f"Template reference '.{path}' not found")
        value = value[part]
    return value


def _format_value(value: Any) -> str:
    """Render a template value the way it should appear in a YAML document."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return yaml.dump(value, default_flow_style=True, sort_keys=True).strip()
    return str(value)


class TemplateResolver:
    """Renders values templates against a cluster context."""

    def resolve(self, template: str, cluster: Cluster) -> str:
        """Return the template rendered for the cluster.

        Raises:
            ValuesTemplateError: If a placeholder references a missing field or
                the rendered output is not valid YAML.
        """
        if not template:
            return ""
        context = {"Cluster": cluster.template_context}

        def replace(match: re.Match[str]) -> str:
            return _format_value(_lookup(context, match.group(1)))

        rendered = _PLACEHOLDER.sub(replace, template)
        try:
            yaml.safe_load(rendered)
        except yaml.YAMLError as err:
            raise ValuesTemplateError(
                f"Values rendered for cluster {cluster.namespaced_name} "
                f"are not valid YAML: {err}"
            ) from err
        _LOGGER.debug("Rendered values for cluster %s", cluster.namespaced_name)
        return rendered
