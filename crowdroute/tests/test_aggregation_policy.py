"""
Unit tests for the aggregation policy.

Weighting, ring buffer eviction, recency, fare rating bands and the
published estimate update rule. No database involved.
"""

import random
from datetime import date, datetime, timedelta

import pytest

from crowdroute.app.domain.aggregation.policy import AggregationPolicy, fare_rating, weighted_average
from crowdroute.app.domain.aggregation.snapshot import (
    AvailabilityObservation,
    ConditionObservation,
    FareObservation,
    ReportEntry,
    RouteAggregate,
    StepAggregate,
)
from crowdroute.app.models.report_enums import RouteCondition

NOW = datetime(2026, 3, 10, 12, 0, 0)
TODAY = NOW.date()


def entry(report_id, fare, confidence=3, reputation=100, contributor_id=None, observed_on=TODAY, duration=None):
    return ReportEntry(
        report_id=report_id,
        contributor_id=contributor_id if contributor_id is not None else report_id,
        fare=fare,
        duration=duration,
        confidence=confidence,
        reputation=reputation,
        observed_on=observed_on,
        recorded_at=NOW,
    )


def fold_all(policy, entries):
    aggregate = StepAggregate()
    for item in entries:
        aggregate = policy.fold_report(aggregate, item, NOW)
    return aggregate


# TEST 1: Weighting
def test_report_weight_uses_reputation_floor():
    policy = AggregationPolicy()
    assert policy.report_weight(5, 100) == 5
    assert policy.report_weight(1, 10) == pytest.approx(0.1)
    # anonymous reporters still count at the floor
    assert policy.report_weight(3, 0) == pytest.approx(0.3)


def test_weighted_average_resists_low_trust_outlier():
    """Two trusted reports and one low-trust outlier."""
    policy = AggregationPolicy()
    aggregate = fold_all(policy, [
        entry(1, 300, confidence=5, reputation=100),
        entry(2, 320, confidence=5, reputation=100),
        entry(3, 500, confidence=1, reputation=10),
    ])

    assert aggregate.average_fare == pytest.approx(3150 / 10.1, abs=0.01)
    assert aggregate.average_fare < 320
    assert aggregate.report_count == 3
    assert aggregate.contributor_count == 3


def test_weighted_average_empty_is_none():
    assert weighted_average([]) is None
    assert StepAggregate().average_fare is None


# TEST 2: Ring buffer
def test_ring_buffer_evicts_oldest_first():
    policy = AggregationPolicy(step_window=3)
    aggregate = fold_all(policy, [entry(i, 100 * i) for i in range(1, 6)])

    assert [e.report_id for e in aggregate.entries] == [3, 4, 5]
    assert aggregate.report_count == 5
    assert aggregate.average_fare == pytest.approx(400)


def test_aggregate_is_order_independent_within_window():
    policy = AggregationPolicy()
    entries = [entry(i, 150 + 37 * i, confidence=1 + i % 5, reputation=20 * i) for i in range(1, 9)]
    shuffled = entries[:]
    random.Random(7).shuffle(shuffled)

    first = fold_all(policy, entries)
    second = fold_all(policy, shuffled)

    assert first.average_fare == pytest.approx(second.average_fare, abs=0.01)
    assert first.overall_confidence == pytest.approx(second.overall_confidence, abs=0.01)


def test_fold_does_not_mutate_input():
    policy = AggregationPolicy()
    before = fold_all(policy, [entry(1, 200)])
    after = policy.fold_report(before, entry(2, 400), NOW)

    assert len(before.entries) == 1
    assert len(after.entries) == 2


# TEST 3: Recency
def test_old_reports_are_retained_but_not_averaged():
    policy = AggregationPolicy()
    aggregate = fold_all(policy, [
        entry(1, 1000, observed_on=TODAY - timedelta(days=45)),
        entry(2, 200),
    ])

    assert len(aggregate.entries) == 2
    assert aggregate.average_fare == pytest.approx(200)


def test_all_stale_reports_give_no_average():
    policy = AggregationPolicy()
    aggregate = fold_all(policy, [entry(1, 300, observed_on=TODAY - timedelta(days=31))])
    assert aggregate.average_fare is None
    assert aggregate.overall_confidence is None


def test_overall_confidence_is_clamped():
    policy = AggregationPolicy()
    aggregate = fold_all(policy, [entry(1, 300, confidence=5), entry(2, 300, confidence=4, reputation=0)])
    assert 1 <= aggregate.overall_confidence <= 5


# TEST 4: Fare rating bands
@pytest.mark.parametrize("actual,expected", [
    (200, 5),  # well below midpoint
    (250, 4),  # at midpoint
    (290, 3),  # upper part of the range
    (300, 3),  # exactly the max
    (360, 2),  # within 20% over
    (361, 1),  # beyond 20% over
])
def test_fare_rating_bands(actual, expected):
    assert fare_rating(actual, 200, 300) == expected


def test_fare_rating_without_estimate():
    assert fare_rating(500, None, None) == 3


# TEST 5: Estimate update rule
def test_estimate_needs_minimum_reports():
    policy = AggregationPolicy()
    entries = [entry(1, 300), entry(2, 500)]
    assert policy.propose_fare_range(entries, 250, 400, TODAY) is None


def test_estimate_moves_on_large_width_change():
    policy = AggregationPolicy()
    entries = [entry(1, 300), entry(2, 320), entry(3, 500)]
    # width 150 -> 200 is a change of 50, more than 20% of 150
    assert policy.propose_fare_range(entries, 250, 400, TODAY) == (300, 500)


def test_estimate_kept_on_small_width_change():
    policy = AggregationPolicy()
    entries = [entry(1, 300), entry(2, 320), entry(3, 500)]
    # width 190 -> 200 is within 20%
    assert policy.propose_fare_range(entries, 300, 490, TODAY) is None


def test_estimate_ignores_stale_reports():
    policy = AggregationPolicy()
    old = TODAY - timedelta(days=40)
    entries = [entry(1, 300, observed_on=old), entry(2, 320, observed_on=old), entry(3, 500)]
    assert policy.propose_fare_range(entries, 250, 400, TODAY) is None


# TEST 6: Route observations
def test_route_observations_are_typed_and_bounded():
    policy = AggregationPolicy(route_window=2)
    aggregate = RouteAggregate(feedback_count=4)
    observations = [
        FareObservation(value=600, confidence=4, reputation=100, recorded_at=NOW),
        ConditionObservation(condition=RouteCondition.POOR, confidence=3, reputation=50, recorded_at=NOW),
        AvailabilityObservation(available=True, confidence=5, reputation=100, recorded_at=NOW),
    ]
    for observation in observations:
        aggregate = policy.fold_observation(aggregate, observation, NOW)

    assert [o.kind for o in aggregate.observations] == ["condition", "availability"]
    assert aggregate.latest_condition == RouteCondition.POOR
    assert aggregate.availability_ratio == 1.0
    assert aggregate.average_fare is None
    assert aggregate.feedback_count == 4


def test_route_aggregate_survives_json_roundtrip():
    policy = AggregationPolicy()
    aggregate = policy.fold_observation(
        RouteAggregate(),
        FareObservation(value=700, confidence=3, reputation=0, recorded_at=NOW),
        NOW,
    )
    restored = RouteAggregate.from_column(aggregate.model_dump(mode="json"))
    assert isinstance(restored.observations[0], FareObservation)
    assert restored.average_fare == pytest.approx(700)
