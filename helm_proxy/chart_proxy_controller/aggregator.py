"""Rolls up HelmReleaseProxy conditions into HelmChartProxy conditions."""

from collections.abc import Iterable
import logging

from helm_proxy.conditions import (
    Condition,
    ConditionStatus,
    Severity,
    READY_CONDITION,
    RELEASE_PROXIES_READY_CONDITION,
    RELEASE_PROXY_SPECS_UP_TO_DATE_CONDITION,
    NO_RELEASE_PROXIES_REASON,
    RELEASE_PROXIES_NOT_READY_REASON,
    WAITING_FOR_RELEASE_PROXIES_REASON,
    get_condition,
    unknown_condition,
)
from helm_proxy.manifest import HelmReleaseProxy

_LOGGER = logging.getLogger(__name__)


def _severity_key(item: tuple[str, Condition]) -> tuple[int, str, str]:
    """Order failing conditions most severe first, then by type and source."""
    source, condition = item
    severity = condition.severity or Severity.ERROR
    return (severity.rank, condition.type, source)


class StatusAggregator:
    """Computes summary conditions from a set of contributing conditions.

    The summary is True only when every contributing condition is True. Any
    False condition makes the summary False, taking the reason of the most
    severe one. Otherwise a missing, Unknown, or empty set of conditions makes
    the summary Unknown.
    """

    def aggregate(
        self,
        condition_type: str,
        contributions: Iterable[tuple[str, Condition | None]],
        observed_generation: int | None = None,
        empty_reason: str = NO_RELEASE_PROXIES_REASON,
    ) -> Condition:
        """Aggregate (source name, condition) pairs into one condition."""
        items = list(contributions)
        if not items:
            return unknown_condition(
                condition_type,
                empty_reason,
                message="No conditions to aggregate",
                observed_generation=observed_generation,
            )
        failed: list[tuple[str, Condition]] = []
        unknown: list[str] = []
        for source, condition in items:
            if condition is None or condition.status == ConditionStatus.UNKNOWN:
                unknown.append(source)
            elif condition.status == ConditionStatus.FALSE:
                failed.append((source, condition))

        if failed:
            source, worst = min(failed, key=_severity_key)
            message = f"{len(failed)} of {len(items)} not ready"
            if worst.message:
                message = f"{message}, {source}: {worst.message}"
            return Condition(
                type=condition_type,
                status=ConditionStatus.FALSE,
                reason=worst.reason or RELEASE_PROXIES_NOT_READY_REASON,
                message=message,
                severity=worst.severity or Severity.ERROR,
                observed_generation=observed_generation,
            )
        if unknown:
            return unknown_condition(
                condition_type,
                WAITING_FOR_RELEASE_PROXIES_REASON,
                message=f"Waiting on {', '.join(sorted(unknown))}",
                observed_generation=observed_generation,
            )
        return Condition(
            type=condition_type,
            status=ConditionStatus.TRUE,
            observed_generation=observed_generation,
        )

    def release_proxies_ready(
        self,
        proxies: Iterable[HelmReleaseProxy],
        observed_generation: int | None = None,
    ) -> Condition:
        """Return the ReleaseProxiesReady condition for the HelmReleaseProxy set."""
        contributions = [
            (proxy.name, get_condition(proxy.status.conditions, READY_CONDITION))
            for proxy in proxies
        ]
        condition = self.aggregate(
            RELEASE_PROXIES_READY_CONDITION,
            contributions,
            observed_generation=observed_generation,
        )
        _LOGGER.debug(
            "Aggregated %d HelmReleaseProxy objects to %s",
            len(contributions),
            condition.status,
        )
        return condition

    def ready(
        self, conditions: list[Condition], observed_generation: int | None = None
    ) -> Condition:
        """Return the Ready summary of the HelmChartProxy's own conditions."""
        contributions = [
            (condition_type, get_condition(conditions, condition_type))
            for condition_type in (
                RELEASE_PROXIES_READY_CONDITION,
                RELEASE_PROXY_SPECS_UP_TO_DATE_CONDITION,
            )
        ]
        return self.aggregate(
            READY_CONDITION, contributions, observed_generation=observed_generation
        )
