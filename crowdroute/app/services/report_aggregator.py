"""
Report aggregator service.

Folds accepted fare reports into the per-step aggregate (and the
feedback counters of the per-route aggregate), moves the published fare
estimate when the evidence supports it, and folds typed route-level
observations into the route aggregate.

Callers serialize writers per step with ``step_locks`` (per route with
``route_locks``) and hold the lock until commit. Across processes the
``aggregate_version`` column makes the losing writer fail with
ConcurrentUpdateError instead of silently overwriting.
"""

import logging
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from crowdroute.app.core.config import settings
from crowdroute.app.core.exceptions import ConcurrentUpdateError, CooldownActiveError, NotFoundError
from crowdroute.app.core.keyed_lock import route_locks
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.domain.aggregation.policy import AggregationPolicy, default_policy
from crowdroute.app.domain.aggregation.snapshot import (
    AvailabilityObservation,
    ConditionObservation,
    DurationObservation,
    FareObservation,
    ReportEntry,
    RouteAggregate,
    StepAggregate,
)
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.fare_report import FareReport
from crowdroute.app.models.route import Route
from crowdroute.app.models.route_step import RouteStep
from crowdroute.app.schemas.route import RouteObservationCreate
from crowdroute.app.services.audit import AuditAction, log_event
from crowdroute.app.services.reputation_ledger import ReputationLedger

logger = logging.getLogger(__name__)


class StepOutcome(NamedTuple):
    step_aggregate: StepAggregate
    route_aggregate: RouteAggregate
    fare_estimate_updated: bool


async def flush_or_conflict(db: AsyncSession, resource: str, resource_id: int):
    """Flush pending writes; a version mismatch becomes a retryable conflict."""
    try:
        await db.flush()
    except StaleDataError:
        await db.rollback()
        logger.warning("Concurrent aggregate update", extra={"resource": resource, "resource_id": resource_id})
        raise ConcurrentUpdateError(resource, resource_id)


async def commit_or_conflict(db: AsyncSession, resource: str, resource_id: int):
    await flush_or_conflict(db, resource, resource_id)
    await db.commit()


class ReportAggregator:

    policy: AggregationPolicy = default_policy

    @staticmethod
    def entry_for(report: FareReport) -> ReportEntry:
        return ReportEntry(
            report_id=report.id,
            contributor_id=report.contributor_id,
            fare=report.actual_fare_paid,
            duration=report.actual_duration,
            confidence=report.confidence,
            reputation=report.reporter_reputation,
            observed_on=report.date_of_travel,
            recorded_at=report.created_at,
        )

    @staticmethod
    async def load_step(db: AsyncSession, step_id: int) -> RouteStep:
        """Fresh read of a step row, locked FOR UPDATE where the backend supports it."""
        result = await db.execute(
            select(RouteStep).where(RouteStep.id == step_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        step = result.scalar_one_or_none()
        if step is None:
            raise NotFoundError("Route step", step_id)
        return step

    @staticmethod
    async def load_route(db: AsyncSession, route_id: int) -> Route:
        result = await db.execute(
            select(Route).where(Route.id == route_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        route = result.scalar_one_or_none()
        if route is None:
            raise NotFoundError("Route", route_id)
        return route

    @staticmethod
    async def apply_to_step(
        db: AsyncSession,
        step: RouteStep,
        route: Route,
        entry: ReportEntry,
        now: datetime = None
    ) -> StepOutcome:
        """
        Fold one report into an already-loaded step and its route.

        Raises:
            ConcurrentUpdateError: The step or route row changed since it was loaded
        """
        now = now or utcnow()
        policy = ReportAggregator.policy

        step_aggregate = policy.fold_report(StepAggregate.from_column(step.aggregate), entry, now)
        step.aggregate = step_aggregate.model_dump(mode="json")

        fare_estimate_updated = ReportAggregator.apply_estimate_rule(step, step_aggregate, now)

        route_aggregate = RouteAggregate.from_column(route.aggregate)
        route_aggregate = route_aggregate.model_copy(update={
            "feedback_count": route_aggregate.feedback_count + 1,
            "last_feedback_at": now,
            "last_updated": now,
        })
        route.aggregate = route_aggregate.model_dump(mode="json")

        await flush_or_conflict(db, "Route step", step.id)

        if fare_estimate_updated:
            await ReportAggregator.refresh_route_estimate(db, route)
            await flush_or_conflict(db, "Route", route.id)

        return StepOutcome(step_aggregate, route_aggregate, fare_estimate_updated)

    @staticmethod
    def apply_estimate_rule(step: RouteStep, aggregate: StepAggregate, now: datetime) -> bool:
        """Move the step's published fare range when the retained entries support it."""
        proposal = ReportAggregator.policy.propose_fare_range(
            aggregate.entries, step.fare_min, step.fare_max, now.date()
        )
        if proposal is None or proposal == (step.fare_min, step.fare_max):
            return False
        logger.info(
            "Fare estimate moved",
            extra={"step_id": step.id, "before": [step.fare_min, step.fare_max], "after": list(proposal)}
        )
        step.fare_min, step.fare_max = proposal
        return True

    @staticmethod
    async def refresh_route_estimate(db: AsyncSession, route: Route):
        """Re-derive the route's published fare range from its steps."""
        result = await db.execute(select(RouteStep).where(RouteStep.route_id == route.id))
        steps = result.scalars().all()
        route.estimated_fare_min = sum(step.fare_min for step in steps)
        route.estimated_fare_max = sum(step.fare_max for step in steps)

    @staticmethod
    async def record_step_report(db: AsyncSession, report: FareReport, now: datetime = None) -> StepOutcome:
        """Fold a freshly inserted report into its step. Caller holds the step lock."""
        step = await ReportAggregator.load_step(db, report.route_step_id)
        route = await ReportAggregator.load_route(db, step.route_id)
        return await ReportAggregator.apply_to_step(db, step, route, ReportAggregator.entry_for(report), now)

    @staticmethod
    async def rebuild_step_aggregate(db: AsyncSession, step_id: int, now: datetime = None) -> StepAggregate:
        """
        Recompute a step aggregate from report history.

        Uses the newest K active, unflagged reports, then re-applies the
        estimate rule so a range widened by a report that has since left
        the window is narrowed again. Caller holds the step lock.
        """
        now = now or utcnow()
        step = await ReportAggregator.load_step(db, step_id)
        previous = StepAggregate.from_column(step.aggregate)

        result = await db.execute(
            select(FareReport).where(
                FareReport.route_step_id == step_id,
                FareReport.is_active == True,
                FareReport.is_flagged == False,
            ).order_by(FareReport.created_at.desc(), FareReport.id.desc())
            .limit(ReportAggregator.policy.step_window)
        )
        reports: List[FareReport] = list(reversed(result.scalars().all()))

        aggregate = ReportAggregator.policy.summarize_step(
            [ReportAggregator.entry_for(report) for report in reports],
            now,
            report_count=previous.report_count,
        )
        step.aggregate = aggregate.model_dump(mode="json")
        estimate_moved = ReportAggregator.apply_estimate_rule(step, aggregate, now)
        await flush_or_conflict(db, "Route step", step.id)

        if estimate_moved:
            route = await ReportAggregator.load_route(db, step.route_id)
            await ReportAggregator.refresh_route_estimate(db, route)
            await flush_or_conflict(db, "Route", route.id)
        return aggregate

    @staticmethod
    def build_observation(data: RouteObservationCreate, contributor: Optional[Contributor], now: datetime):
        common = {
            "contributor_id": contributor.id if contributor else None,
            "reputation": contributor.reputation_score if contributor else 0,
            "confidence": data.confidence,
            "comments": data.comments,
            "recorded_at": now,
        }
        if data.kind == "fare":
            return FareObservation(value=data.value, **common)
        if data.kind == "duration":
            return DurationObservation(minutes=data.value, **common)
        if data.kind == "condition":
            return ConditionObservation(condition=data.condition, **common)
        return AvailabilityObservation(available=data.available, **common)

    @staticmethod
    async def submit_route_update(
        db: AsyncSession,
        route_id: int,
        data: RouteObservationCreate,
        contributor: Optional[Contributor],
        now: datetime = None
    ) -> tuple[RouteAggregate, int]:
        """
        Fold a route-level observation into the route aggregate.

        Identified contributors may send one update of each kind per route
        per cooldown window.

        Returns:
            (new aggregate, reputation points awarded)

        Raises:
            NotFoundError: Unknown or inactive route
            CooldownActiveError: Same contributor, same kind, inside the window
            ConcurrentUpdateError: Lost an optimistic race on the route row
        """
        now = now or utcnow()
        async with route_locks.hold(route_id):
            route = await ReportAggregator.load_route(db, route_id)
            if not route.is_active:
                raise NotFoundError("Route", route_id)

            aggregate = RouteAggregate.from_column(route.aggregate)
            if contributor is not None:
                window = timedelta(hours=settings.route_update_cooldown_hours)
                for previous in aggregate.observations:
                    if (
                        previous.contributor_id == contributor.id
                        and previous.kind == data.kind
                        and previous.recorded_at > now - window
                    ):
                        retry_after = previous.recorded_at + window - now
                        raise CooldownActiveError(
                            f"You already submitted a {data.kind} update for this route recently",
                            retry_after_seconds=int(retry_after.total_seconds()),
                        )

            observation = ReportAggregator.build_observation(data, contributor, now)
            aggregate = ReportAggregator.policy.fold_observation(aggregate, observation, now)
            route.aggregate = aggregate.model_dump(mode="json")

            awarded = 0
            if contributor is not None:
                awarded = (
                    settings.reputation_grant_route_update_confident
                    if data.confidence >= 4 else settings.reputation_grant_route_update
                )
                await flush_or_conflict(db, "Route", route.id)
                await ReputationLedger.grant(db, contributor.id, awarded, "route_update_submitted")
            await commit_or_conflict(db, "Route", route.id)

        await log_event(
            db=db,
            action=AuditAction.ROUTE_UPDATE_SUBMITTED,
            actor_id=contributor.id if contributor else None,
            actor_username=contributor.username if contributor else None,
            target_type="route",
            target_id=route_id,
            metadata={
                "kind": data.kind,
                "confidence": data.confidence,
                "overall_confidence": aggregate.overall_confidence,
            }
        )
        return aggregate, awarded
