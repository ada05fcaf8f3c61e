"""
Aggregation Policy (Domain Logic).

Pure functions that turn a stream of untrusted fare/duration
observations into a published estimate:

1. Weight each report by self-declared confidence times normalized
   reporter reputation (never below the floor).
2. Keep a bounded ring buffer per target, evicting the oldest first.
3. Average only the entries inside the recency window.
4. Move the published fare range only on enough evidence and a
   large enough change.

Nothing here touches the database; the report aggregator service owns
persistence and locking.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from crowdroute.app.core.config import settings
from crowdroute.app.domain.aggregation.snapshot import (
    AvailabilityObservation,
    ConditionObservation,
    DurationObservation,
    FareObservation,
    ReportEntry,
    RouteAggregate,
    StepAggregate,
)


class AggregationPolicy:
    """
    Tunable aggregation parameters.

    Defaults come from settings; tests build their own instances to
    exercise small windows.
    """

    def __init__(
        self,
        step_window: int = None,
        route_window: int = None,
        recency_days: int = None,
        reputation_floor: float = None,
        min_reports: int = None,
        change_ratio: float = None,
    ):
        self.step_window = step_window or settings.step_report_window
        self.route_window = route_window or settings.route_observation_window
        self.recency_days = recency_days or settings.recency_window_days
        self.reputation_floor = reputation_floor if reputation_floor is not None else settings.reputation_weight_floor
        self.min_reports = min_reports or settings.estimate_min_reports
        self.change_ratio = change_ratio if change_ratio is not None else settings.estimate_change_ratio

    # Weighting

    def reputation_factor(self, reputation: int) -> float:
        return max(reputation / 100, self.reputation_floor)

    def report_weight(self, confidence: int, reputation: int) -> float:
        """weight = confidence * max(reputation / 100, floor)"""
        return confidence * self.reputation_factor(reputation)

    def is_recent(self, observed_on: date, today: date) -> bool:
        return observed_on >= today - timedelta(days=self.recency_days)

    # Step aggregate

    def fold_report(self, aggregate: StepAggregate, entry: ReportEntry, now: datetime) -> StepAggregate:
        """
        Append a report to the ring buffer and recompute the summary.

        Returns a new StepAggregate; the input is left untouched.
        """
        entries = list(aggregate.entries) + [entry]
        if len(entries) > self.step_window:
            entries = entries[len(entries) - self.step_window:]
        return self.summarize_step(entries, now, report_count=aggregate.report_count + 1)

    def summarize_step(self, entries: List[ReportEntry], now: datetime, report_count: int = None) -> StepAggregate:
        today = now.date()
        recent = [e for e in entries if self.is_recent(e.observed_on, today)]

        average_fare = weighted_average(
            (e.fare, self.report_weight(e.confidence, e.reputation)) for e in recent
        )
        average_duration = weighted_average(
            (e.duration, self.report_weight(e.confidence, e.reputation))
            for e in recent if e.duration is not None
        )

        return StepAggregate(
            entries=entries,
            average_fare=average_fare,
            average_duration=average_duration,
            overall_confidence=self.overall_confidence((e.confidence, e.reputation) for e in recent),
            contributor_count=count_contributors(e.contributor_id for e in entries),
            report_count=report_count if report_count is not None else len(entries),
            last_updated=now,
        )

    def overall_confidence(self, items: Iterable[Tuple[int, int]]) -> Optional[float]:
        """Reputation-weighted mean of self-declared confidence, clamped to 1-5."""
        value = weighted_average(
            (confidence, self.reputation_factor(reputation)) for confidence, reputation in items
        )
        if value is None:
            return None
        return round(min(5.0, max(1.0, value)), 2)

    def propose_fare_range(
        self,
        entries: Sequence[ReportEntry],
        current_min: int,
        current_max: int,
        today: date,
    ) -> Optional[Tuple[int, int]]:
        """
        New [min, max] for the published estimate, or None to keep it.

        Needs at least ``min_reports`` recent entries, and the width of the
        new range must differ from the current width by more than
        ``change_ratio`` of the current width.
        """
        fares = [e.fare for e in entries if self.is_recent(e.observed_on, today)]
        if len(fares) < self.min_reports:
            return None

        new_min, new_max = min(fares), max(fares)
        current_width = current_max - current_min
        new_width = new_max - new_min

        if abs(new_width - current_width) > current_width * self.change_ratio:
            return new_min, new_max
        return None

    # Route aggregate

    def fold_observation(self, aggregate: RouteAggregate, observation, now: datetime) -> RouteAggregate:
        observations = list(aggregate.observations) + [observation]
        if len(observations) > self.route_window:
            observations = observations[len(observations) - self.route_window:]
        return self.summarize_route(aggregate, observations, now)

    def summarize_route(self, previous: RouteAggregate, observations: list, now: datetime) -> RouteAggregate:
        today = now.date()
        recent = [o for o in observations if self.is_recent(o.recorded_at.date(), today)]

        fares = [o for o in recent if isinstance(o, FareObservation)]
        durations = [o for o in recent if isinstance(o, DurationObservation)]
        conditions = [o for o in observations if isinstance(o, ConditionObservation)]
        availability = [o for o in recent if isinstance(o, AvailabilityObservation)]

        return RouteAggregate(
            observations=observations,
            average_fare=weighted_average(
                (o.value, self.report_weight(o.confidence, o.reputation)) for o in fares
            ),
            average_duration=weighted_average(
                (o.minutes, self.report_weight(o.confidence, o.reputation)) for o in durations
            ),
            latest_condition=conditions[-1].condition if conditions else None,
            availability_ratio=(
                round(sum(1 for o in availability if o.available) / len(availability), 2)
                if availability else None
            ),
            overall_confidence=self.overall_confidence((o.confidence, o.reputation) for o in recent),
            contributor_count=count_contributors(o.contributor_id for o in observations),
            feedback_count=previous.feedback_count,
            last_feedback_at=previous.last_feedback_at,
            last_updated=now,
        )


def weighted_average(pairs: Iterable[Tuple[float, float]]) -> Optional[float]:
    """sum(value * weight) / sum(weight), or None when there is no weight."""
    total = 0.0
    total_weight = 0.0
    for value, weight in pairs:
        total += value * weight
        total_weight += weight
    if total_weight <= 0:
        return None
    return round(total / total_weight, 2)


def count_contributors(contributor_ids: Iterable[Optional[int]]) -> int:
    """Distinct identified contributors; each anonymous entry counts once."""
    known = set()
    anonymous = 0
    for contributor_id in contributor_ids:
        if contributor_id is None:
            anonymous += 1
        else:
            known.add(contributor_id)
    return len(known) + anonymous


def fare_rating(actual: int, fare_min: Optional[int], fare_max: Optional[int]) -> int:
    """
    Classify a paid fare against the published [min, max] estimate.

    Returns:
        5 great value, 4 around the midpoint, 3 within range,
        2 up to 20% over the max, 1 beyond that. 3 when there is no estimate.
    """
    if fare_min is None or fare_max is None:
        return 3

    midpoint = (fare_min + fare_max) / 2
    tolerance = (fare_max - fare_min) / 4

    if actual <= midpoint - tolerance:
        return 5
    if actual <= midpoint + tolerance:
        return 4
    if actual <= fare_max:
        return 3
    if actual <= fare_max * 1.2:
        return 2
    return 1


default_policy = AggregationPolicy()
