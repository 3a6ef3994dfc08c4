"""Tests for rolling up HelmReleaseProxy conditions."""

import pytest

from helm_proxy.chart_proxy_controller import StatusAggregator
from helm_proxy.conditions import (
    Condition,
    ConditionStatus,
    Severity,
    false_condition,
    true_condition,
    unknown_condition,
)


@pytest.fixture(name="aggregator")
def aggregator_fixture() -> StatusAggregator:
    return StatusAggregator()


def test_all_true(aggregator: StatusAggregator) -> None:
    """Test the summary is True when every condition is True."""
    result = aggregator.aggregate(
        "ReleaseProxiesReady",
        [("a", true_condition("Ready")), ("b", true_condition("Ready"))],
        observed_generation=3,
    )
    assert result.status == ConditionStatus.TRUE
    assert result.observed_generation == 3


def test_empty_is_unknown(aggregator: StatusAggregator) -> None:
    """Test the summary of no conditions is Unknown."""
    result = aggregator.aggregate("ReleaseProxiesReady", [])
    assert result.status == ConditionStatus.UNKNOWN
    assert result.reason == "NoReleaseProxies"


def test_missing_is_unknown(aggregator: StatusAggregator) -> None:
    """Test a missing condition counts as Unknown."""
    result = aggregator.aggregate(
        "ReleaseProxiesReady", [("a", true_condition("Ready")), ("b", None)]
    )
    assert result.status == ConditionStatus.UNKNOWN
    assert result.message == "Waiting on b"


def test_false_beats_unknown(aggregator: StatusAggregator) -> None:
    """Test any False condition makes the summary False."""
    result = aggregator.aggregate(
        "ReleaseProxiesReady",
        [
            ("a", unknown_condition("Ready", "Pending")),
            ("b", false_condition("Ready", "InstallFailed", Severity.WARNING, "boom")),
            ("c", true_condition("Ready")),
        ],
    )
    assert result.status == ConditionStatus.FALSE
    assert result.reason == "InstallFailed"
    assert result.severity == Severity.WARNING
    assert result.message == "1 of 3 not ready, b: boom"


@pytest.mark.parametrize(
    ("contributions", "expected_reason"),
    [
        (
            [
                ("a", false_condition("Ready", "Info", Severity.INFO)),
                ("b", false_condition("Ready", "Error", Severity.ERROR)),
                ("c", false_condition("Ready", "Warning", Severity.WARNING)),
            ],
            "Error",
        ),
        (
            [
                ("b", false_condition("Ready", "FromB", Severity.ERROR)),
                ("a", false_condition("Ready", "FromA", Severity.ERROR)),
            ],
            "FromA",
        ),
        (
            [
                ("a", false_condition("Zeta", "FromZeta", Severity.ERROR)),
                ("b", false_condition("Alpha", "FromAlpha", Severity.ERROR)),
            ],
            "FromAlpha",
        ),
    ],
    ids=["severity", "source-name", "condition-type"],
)
def test_most_severe_reason(
    aggregator: StatusAggregator,
    contributions: list[tuple[str, Condition]],
    expected_reason: str,
) -> None:
    """Test the reason comes from the most severe False condition."""
    result = aggregator.aggregate("ReleaseProxiesReady", contributions)
    assert result.status == ConditionStatus.FALSE
    assert result.reason == expected_reason


def test_ready_summary(aggregator: StatusAggregator) -> None:
    """Test the Ready summary of the HelmChartProxy conditions."""
    result = aggregator.ready(
        [
            true_condition("ReleaseProxiesReady"),
            true_condition("ReleaseProxySpecsUpToDate"),
        ]
    )
    assert result.type == "Ready"
    assert result.status == ConditionStatus.TRUE

    result = aggregator.ready([true_condition("ReleaseProxiesReady")])
    assert result.status == ConditionStatus.UNKNOWN

    result = aggregator.ready(
        [
            unknown_condition("ReleaseProxiesReady", "WaitingForReleaseProxies"),
            false_condition(
                "ReleaseProxySpecsUpToDate", "ClusterSelectionFailed", Severity.ERROR
            ),
        ]
    )
    assert result.status == ConditionStatus.FALSE
    assert result.reason == "ClusterSelectionFailed"
