"""Typed status conditions shared by HelmChartProxy and HelmReleaseProxy.

A condition is a single observation about an object, e.g. whether it is ready,
with a machine readable reason and a severity used to pick the most important
failure when conditions are rolled up.
"""

import datetime
from dataclasses import dataclass, field, replace
from enum import StrEnum

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

__all__ = [
    "ConditionStatus",
    "Severity",
    "Condition",
    "get_condition",
    "set_condition",
    "true_condition",
    "false_condition",
    "unknown_condition",
]

READY_CONDITION = "Ready"
RELEASE_PROXIES_READY_CONDITION = "ReleaseProxiesReady"
RELEASE_PROXY_SPECS_UP_TO_DATE_CONDITION = "ReleaseProxySpecsUpToDate"

# Reasons used on HelmChartProxy conditions
FINALIZER_UPDATE_FAILED_REASON = "FinalizerUpdateFailed"
CLUSTER_SELECTION_FAILED_REASON = "ClusterSelectionFailed"
RELEASE_PROXY_RECONCILE_FAILED_REASON = "ReleaseProxyReconcileFailed"
RELEASE_PROXY_DELETION_FAILED_REASON = "ReleaseProxyDeletionFailed"
RELEASE_PROXIES_NOT_READY_REASON = "ReleaseProxiesNotReady"
NO_RELEASE_PROXIES_REASON = "NoReleaseProxies"
WAITING_FOR_RELEASE_PROXIES_REASON = "WaitingForReleaseProxies"

# Reasons used on HelmReleaseProxy conditions
CLUSTER_NOT_FOUND_REASON = "ClusterNotFound"
GET_KUBECONFIG_FAILED_REASON = "GetKubeconfigFailed"
HELM_RELEASE_GET_FAILED_REASON = "HelmReleaseGetFailed"
HELM_INSTALL_OR_UPGRADE_FAILED_REASON = "HelmInstallOrUpgradeFailed"
HELM_RELEASE_DELETION_FAILED_REASON = "HelmReleaseDeletionFailed"
HELM_RELEASE_PENDING_REASON = "HelmReleasePending"


class ConditionStatus(StrEnum):
    """Tri-state status of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Severity(StrEnum):
    """How important a condition that is not True is."""

    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"

    @property
    def rank(self) -> int:
        """Lower rank is more severe."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.ERROR: 0,
    Severity.WARNING: 1,
    Severity.INFO: 2,
}


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


@dataclass
class Condition(DataClassDictMixin):
    """An observation of the state of an object."""

    type: str
    """The type of the condition e.g. Ready."""

    status: ConditionStatus
    """The status of the condition."""

    reason: str | None = None
    """A CamelCase reason for the last transition."""

    message: str | None = None
    """A human readable message with details about the transition."""

    severity: Severity | None = None
    """Severity of the condition, only meaningful when status is not True."""

    observed_generation: int | None = field(
        metadata=field_options(alias="observedGeneration"), default=None
    )
    """The generation of the object this condition was computed from."""

    last_transition_time: datetime.datetime | None = field(
        metadata=field_options(alias="lastTransitionTime"), default=None
    )
    """When the status last changed."""

    def same_state(self, other: "Condition") -> bool:
        """Return True if both conditions report the same observation."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
            and self.severity == other.severity
            and self.observed_generation == other.observed_generation
        )

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


def true_condition(
    condition_type: str, observed_generation: int | None = None
) -> Condition:
    """Return a condition with status True."""
    return Condition(
        type=condition_type,
        status=ConditionStatus.TRUE,
        observed_generation=observed_generation,
    )


def false_condition(
    condition_type: str,
    reason: str,
    severity: Severity,
    message: str | None = None,
    observed_generation: int | None = None,
) -> Condition:
    """Return a condition with status False."""
    return Condition(
        type=condition_type,
        status=ConditionStatus.FALSE,
        reason=reason,
        severity=severity,
        message=message,
        observed_generation=observed_generation,
    )


def unknown_condition(
    condition_type: str,
    reason: str,
    message: str | None = None,
    observed_generation: int | None = None,
) -> Condition:
    """Return a condition with status Unknown."""
    return Condition(
        type=condition_type,
        status=ConditionStatus.UNKNOWN,
        reason=reason,
        severity=Severity.INFO,
        message=message,
        observed_generation=observed_generation,
    )


def get_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    """Return the condition of the specified type, if present."""
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(conditions: list[Condition], condition: Condition) -> list[Condition]:
    """Return a new condition list with the condition added or replaced.

    The transition time is only moved forward when the status changes, so
    setting an identical condition again leaves the list unchanged.
    """
    existing = get_condition(conditions, condition.type)
    if existing is not None and existing.status == condition.status:
        transition_time = existing.last_transition_time
    else:
        transition_time = condition.last_transition_time or _now()
    if existing is not None and existing.same_state(condition):
        updated = existing
    else:
        updated = replace(condition, last_transition_time=transition_time)
    result = [c for c in conditions if c.type != condition.type]
    result.append(updated)
    return sorted(result, key=lambda c: c.type)
