"""
Submission guard service.

Admission control and moderation for fare reports:

- cooldowns: one report per contributor per step per window
  (24h on the route feedback path, 6h on the standalone fare report path),
  checked by looking up the previous report rather than a token bucket
- flag / verify / unflag, which move a report's confidence score and
  take flagged reports out of the aggregate
- retention cleanup, which deactivates old reports without erasing them
"""

import logging
from datetime import date, datetime, timedelta
from typing import NamedTuple, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crowdroute.app.core.config import settings
from crowdroute.app.core.exceptions import ConflictError, CooldownActiveError, NotFoundError, ValidationError
from crowdroute.app.core.keyed_lock import step_locks
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.domain.aggregation.policy import fare_rating
from crowdroute.app.domain.aggregation.snapshot import RouteAggregate, StepAggregate
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.fare_report import FareReport
from crowdroute.app.models.report_enums import ReportSource
from crowdroute.app.models.route import Route
from crowdroute.app.models.route_step import RouteStep
from crowdroute.app.schemas.report import FareReportCreate
from crowdroute.app.services.audit import AuditAction, AuditSeverity, log_event
from crowdroute.app.services.report_aggregator import ReportAggregator, commit_or_conflict
from crowdroute.app.services.reputation_ledger import REVIEWER_ROLES, ReputationLedger

logger = logging.getLogger(__name__)


class SubmissionResult(NamedTuple):
    report: FareReport
    step_aggregate: StepAggregate
    route_aggregate: RouteAggregate
    fare_estimate_updated: bool
    fare_min: int
    fare_max: int
    reputation_awarded: int


def cooldown_for(source: ReportSource) -> timedelta:
    if source == ReportSource.ROUTE_FEEDBACK:
        return timedelta(hours=settings.route_feedback_cooldown_hours)
    return timedelta(hours=settings.fare_report_cooldown_hours)


def validate_travel_date(date_of_travel: date, today: date) -> None:
    """
    Raises:
        ValidationError: Travel date in the future or beyond the look-back window
    """
    if date_of_travel > today:
        raise ValidationError("Date of travel cannot be in the future", details={"date_of_travel": str(date_of_travel)})
    if date_of_travel < today - timedelta(days=settings.travel_lookback_days):
        raise ValidationError(
            f"Date of travel must be within the last {settings.travel_lookback_days} days",
            details={"date_of_travel": str(date_of_travel)}
        )


async def check_and_admit(
    db: AsyncSession,
    contributor_id: Optional[int],
    step_id: int,
    source: ReportSource,
    now: datetime = None
) -> None:
    """
    Reject a report when the same contributor reported on the same step
    inside the cooldown window. Anonymous reports are not rate limited here.

    Raises:
        CooldownActiveError: With the seconds left until the window closes
    """
    if contributor_id is None:
        return
    now = now or utcnow()
    window = cooldown_for(source)

    result = await db.execute(
        select(FareReport.created_at).where(
            FareReport.contributor_id == contributor_id,
            FareReport.route_step_id == step_id,
            FareReport.created_at >= now - window,
            FareReport.created_at <= now,
        ).order_by(FareReport.created_at.desc()).limit(1)
    )
    previous_at = result.scalar_one_or_none()
    if previous_at is not None:
        retry_after = previous_at + window - now
        raise CooldownActiveError(
            "You have already reported on this route step recently",
            retry_after_seconds=max(1, int(retry_after.total_seconds())),
        )


async def submit_fare_report(
    db: AsyncSession,
    data: FareReportCreate,
    contributor: Optional[Contributor],
    source: ReportSource = ReportSource.FARE_REPORT,
    route_id: Optional[int] = None,
    now: datetime = None
) -> SubmissionResult:
    """
    Full write path for a fare report.

    admit (cooldown) -> validate step/route/date -> insert -> fold into
    aggregate -> reputation grant -> commit -> audit event.

    Args:
        route_id: When given (route feedback path), the step must belong to it

    Raises:
        NotFoundError: Unknown step, or inactive route
        ValidationError: Step not on the given route, bad travel date
        CooldownActiveError / ConflictError: Duplicate submission
        ConcurrentUpdateError: Lost an optimistic race on the aggregate
    """
    now = now or utcnow()
    contributor_id = contributor.id if contributor else None

    step = await db.get(RouteStep, data.route_step_id)
    if step is None:
        raise NotFoundError("Route step", data.route_step_id)
    if route_id is not None and step.route_id != route_id:
        raise ValidationError(
            "Route step does not belong to this route",
            details={"route_id": route_id, "route_step_id": step.id}
        )
    route = await db.get(Route, step.route_id)
    if route is None or not route.is_active:
        raise NotFoundError("Route", step.route_id)

    validate_travel_date(data.date_of_travel, now.date())

    async with step_locks.hold(step.id):
        await check_and_admit(db, contributor_id, step.id, source, now)

        report = FareReport(
            contributor_id=contributor_id,
            route_id=step.route_id,
            route_step_id=step.id,
            source=source,
            fare_rating=fare_rating(data.actual_fare_paid, step.fare_min, step.fare_max),
            day_of_week=data.date_of_travel.strftime("%A").lower(),
            reporter_reputation=contributor.reputation_score if contributor else 0,
            confidence_score=100,
            created_at=now,
            updated_at=now,
            **data.model_dump(exclude={"route_step_id"}),
        )
        db.add(report)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(
                "You have already reported this step for that travel date",
                details={"route_step_id": step.id, "date_of_travel": str(data.date_of_travel)}
            )

        outcome = await ReportAggregator.record_step_report(db, report, now)

        awarded = 0
        if contributor is not None:
            awarded = (
                settings.reputation_grant_route_feedback
                if source == ReportSource.ROUTE_FEEDBACK else settings.reputation_grant_fare_report
            )
            await ReputationLedger.grant(db, contributor.id, awarded, f"{source.value}_submitted")

        await commit_or_conflict(db, "Route step", step.id)
        await db.refresh(step)

    await log_event(
        db=db,
        action=AuditAction.REPORT_SUBMITTED,
        actor_id=contributor_id,
        actor_username=contributor.username if contributor else None,
        target_type="fare_report",
        target_id=report.id,
        metadata={
            "route_id": report.route_id,
            "route_step_id": report.route_step_id,
            "source": source.value,
            "fare": report.actual_fare_paid,
            "confidence": report.confidence,
            "average_fare": outcome.step_aggregate.average_fare,
            "fare_estimate_updated": outcome.fare_estimate_updated,
        }
    )

    return SubmissionResult(
        report=report,
        step_aggregate=outcome.step_aggregate,
        route_aggregate=outcome.route_aggregate,
        fare_estimate_updated=outcome.fare_estimate_updated,
        fare_min=step.fare_min,
        fare_max=step.fare_max,
        reputation_awarded=awarded,
    )


async def get_report(db: AsyncSession, report_id: int) -> FareReport:
    report = await db.get(FareReport, report_id)
    if report is None or not report.is_active:
        raise NotFoundError("Fare report", report_id)
    return report


async def _moderate(
    db: AsyncSession,
    report: FareReport,
    actor: Contributor,
    action: str,
    metadata: dict,
    severity: str = AuditSeverity.INFO,
    rebuild: bool = True
) -> StepAggregate:
    if rebuild:
        aggregate = await ReportAggregator.rebuild_step_aggregate(db, report.route_step_id)
    else:
        step = await db.get(RouteStep, report.route_step_id)
        aggregate = StepAggregate.from_column(step.aggregate)
    await commit_or_conflict(db, "Route step", report.route_step_id)
    await db.refresh(report)

    await log_event(
        db=db,
        action=action,
        actor_id=actor.id,
        actor_username=actor.username,
        target_type="fare_report",
        target_id=report.id,
        metadata={**metadata, "confidence_score": report.confidence_score},
        severity=severity,
    )
    return aggregate


async def flag_report(
    db: AsyncSession,
    report_id: int,
    reason: str,
    actor: Optional[Contributor]
) -> tuple[FareReport, StepAggregate]:
    """
    Flag a report as abusive or wrong.

    Lowers its confidence score by the flag penalty (floor 0) and removes
    it from the step aggregate. The report stays stored.

    Raises:
        AuthenticationError: Anonymous caller
        NotFoundError: Unknown report
        ConflictError: Already flagged
    """
    actor = ReputationLedger.require_identity(actor, "flag a report")
    report = await get_report(db, report_id)

    async with step_locks.hold(report.route_step_id):
        await db.refresh(report)
        if report.is_flagged:
            raise ConflictError("Report is already flagged", details={"report_id": report.id})

        before = report.confidence_score
        report.is_flagged = True
        report.flag_reason = reason
        report.flagged_by = actor.id
        report.flagged_at = utcnow()
        report.confidence_score = max(0, before - settings.flag_confidence_penalty)

        aggregate = await _moderate(
            db, report, actor, AuditAction.REPORT_FLAGGED,
            {"reason": reason, "confidence_before": before},
            severity=AuditSeverity.WARNING,
        )
    return report, aggregate


async def verify_report(
    db: AsyncSession,
    report_id: int,
    actor: Optional[Contributor]
) -> tuple[FareReport, StepAggregate]:
    """
    Mark a report as verified and raise its confidence score (ceiling 100).

    Raises:
        AuthorizationError: Below the review threshold without a reviewer role
    """
    actor = ReputationLedger.require(actor, settings.reputation_review, "verify reports", allow_roles=REVIEWER_ROLES)
    report = await get_report(db, report_id)

    async with step_locks.hold(report.route_step_id):
        before = report.confidence_score
        report.is_verified = True
        report.verified_by = actor.id
        report.verified_at = utcnow()
        report.confidence_score = min(100, before + settings.verify_confidence_bonus)

        aggregate = await _moderate(
            db, report, actor, AuditAction.REPORT_VERIFIED,
            {"confidence_before": before}, rebuild=False,
        )
    return report, aggregate


async def unflag_report(
    db: AsyncSession,
    report_id: int,
    actor: Optional[Contributor]
) -> tuple[FareReport, StepAggregate]:
    """
    Reverse a flag: clear it, restore confidence (+25, ceiling 100) and
    put the report back into the aggregate.

    Raises:
        ValidationError: Report is not flagged
    """
    actor = ReputationLedger.require(actor, settings.reputation_review, "unflag reports", allow_roles=REVIEWER_ROLES)
    report = await get_report(db, report_id)

    async with step_locks.hold(report.route_step_id):
        await db.refresh(report)
        if not report.is_flagged:
            raise ValidationError("Report is not flagged", details={"report_id": report.id})

        before = report.confidence_score
        previous_reason = report.flag_reason
        report.is_flagged = False
        report.flag_reason = None
        report.flagged_by = None
        report.flagged_at = None
        report.confidence_score = min(100, before + settings.unflag_confidence_bonus)

        aggregate = await _moderate(
            db, report, actor, AuditAction.REPORT_UNFLAGGED,
            {"confidence_before": before, "previous_reason": previous_reason},
        )
    return report, aggregate


async def cleanup_old_reports(
    db: AsyncSession,
    days_old: int = None,
    actor: Optional[Contributor] = None,
    now: datetime = None
) -> int:
    """
    Deactivate reports created more than ``days_old`` days ago.

    The aggregates of the affected steps are rebuilt so the deactivated
    reports leave their windows and contributor counts.

    Returns:
        Number of reports deactivated
    """
    days_old = days_old or settings.report_retention_days
    now = now or utcnow()
    cutoff = now - timedelta(days=days_old)
    expired = (FareReport.is_active == True, FareReport.created_at < cutoff)

    step_ids = (await db.execute(
        select(FareReport.route_step_id).where(*expired).distinct()
    )).scalars().all()

    result = await db.execute(
        update(FareReport)
        .where(*expired)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    deactivated = result.rowcount or 0

    for step_id in sorted(step_ids):
        async with step_locks.hold(step_id):
            await ReportAggregator.rebuild_step_aggregate(db, step_id, now)
            await commit_or_conflict(db, "Route step", step_id)

    logger.info("Retention cleanup finished", extra={"deactivated": deactivated, "days_old": days_old})
    await log_event(
        db=db,
        action=AuditAction.REPORTS_CLEANED_UP,
        actor_id=actor.id if actor else None,
        actor_username=actor.username if actor else None,
        target_type="fare_report",
        metadata={
            "deactivated": deactivated,
            "days_old": days_old,
            "cutoff": cutoff.isoformat(),
            "steps_rebuilt": len(step_ids),
        }
    )
    return deactivated
