"""
Suggestion workflow service.

Contributors propose routes; reviewers approve or reject them.

Lifecycle:
    pending_approval -> approved (route becomes active)
    pending_approval -> rejected (route stays inactive)

A suggestion is an ordinary Route row stored inactive with
``needs_approval`` set, so approval is a state change rather than a copy.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession

from crowdroute.app.core.config import settings
from crowdroute.app.core.exceptions import ConcurrentUpdateError, ConflictError, NotFoundError, ValidationError
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.fare_report import FareReport
from crowdroute.app.models.location import Location
from crowdroute.app.models.route import Route
from crowdroute.app.models.route_enums import ReviewAction, SuggestionStatus
from crowdroute.app.models.route_step import RouteStep
from crowdroute.app.schemas.suggestion import CrowdsourcingStats, MyContributions, SuggestionCreate
from crowdroute.app.services.audit import AuditAction, log_event
from crowdroute.app.services.reputation_ledger import REVIEWER_ROLES, ReputationLedger, level_for
from crowdroute.app.services.route_structure import find_active_route, get_steps, persist_route, prepare_route

logger = logging.getLogger(__name__)


async def submit_suggestion(
    db: AsyncSession,
    contributor: Optional[Contributor],
    data: SuggestionCreate
) -> Tuple[Route, List[RouteStep], int]:
    """
    Store a proposed route, inactive, pending review.

    Returns:
        (route, steps, reputation points awarded)

    Raises:
        AuthenticationError: Anonymous caller
        AuthorizationError: Below the suggestion threshold
        ValidationError / NotFoundError: Bad step structure or locations
        ConflictError: An active route already serves the pair
    """
    contributor = ReputationLedger.require(contributor, settings.reputation_suggest_route, "suggest a route")
    steps, totals, _ = await prepare_route(db, data)

    route, route_steps = await persist_route(
        db, data, steps, totals, contributor,
        is_active=False,
        suggestion_status=SuggestionStatus.PENDING_APPROVAL,
        suggestion_confidence=data.confidence,
    )
    awarded = settings.reputation_grant_suggestion
    await ReputationLedger.grant(db, contributor.id, awarded, "route_suggested")
    await db.commit()

    await log_event(
        db=db,
        action=AuditAction.SUGGESTION_SUBMITTED,
        actor_id=contributor.id,
        actor_username=contributor.username,
        target_type="route",
        target_id=route.id,
        metadata={
            "start_location_id": route.start_location_id,
            "end_location_id": route.end_location_id,
            "steps": len(route_steps),
            "confidence": data.confidence,
        }
    )
    return route, route_steps, awarded


async def review_suggestion(
    db: AsyncSession,
    route_id: int,
    action: str,
    reviewer: Optional[Contributor],
    comments: Optional[str] = None,
    now: datetime = None
) -> Tuple[Route, List[RouteStep]]:
    """
    Approve or reject a pending suggestion.

    A suggestion is reviewed once: a second review raises ValidationError
    and applies nothing.

    Raises:
        AuthenticationError: Anonymous caller
        ValidationError: Unknown action, or suggestion already reviewed
        AuthorizationError: Below the review threshold without a reviewer role
        NotFoundError: No such route
        ConflictError: Approving while another active route serves the pair
    """
    reviewer = ReputationLedger.require_identity(reviewer, "review suggestions")
    try:
        decision = ReviewAction(action)
    except ValueError:
        raise ValidationError(
            "Action must be 'approve' or 'reject'",
            details={"action": action, "allowed": [choice.value for choice in ReviewAction]}
        )
    ReputationLedger.require(
        reviewer, settings.reputation_review, "review suggestions", allow_roles=REVIEWER_ROLES
    )

    route = await db.get(Route, route_id)
    if route is None:
        raise NotFoundError("Route suggestion", route_id)
    if not route.needs_approval:
        raise ValidationError(
            "This suggestion has already been reviewed",
            details={"route_id": route_id, "suggestion_status": route.suggestion_status.value if route.suggestion_status else None}
        )

    now = now or utcnow()
    route.needs_approval = False
    route.review_comments = comments

    if decision == ReviewAction.APPROVE:
        existing = await find_active_route(db, route.start_location_id, route.end_location_id)
        if existing is not None:
            await db.rollback()
            raise ConflictError(
                "An active route already exists between these locations",
                details={"existing_route_id": existing.id}
            )
        route.is_active = True
        route.suggestion_status = SuggestionStatus.APPROVED
        route.approved_by = reviewer.id
        route.approved_at = now

        result = await db.execute(
            select(Location).where(Location.id.in_((route.start_location_id, route.end_location_id)))
        )
        for location in result.scalars().all():
            location.route_count += 1
        if route.created_by is not None:
            await ReputationLedger.grant(
                db, route.created_by, settings.reputation_grant_suggestion_approved, "suggestion_approved"
            )
        audit_action = AuditAction.SUGGESTION_APPROVED
    else:
        route.suggestion_status = SuggestionStatus.REJECTED
        route.rejected_by = reviewer.id
        route.rejected_at = now
        audit_action = AuditAction.SUGGESTION_REJECTED

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "An active route already exists between these locations",
            details={"start_location_id": route.start_location_id, "end_location_id": route.end_location_id}
        )
    except StaleDataError:
        await db.rollback()
        raise ConcurrentUpdateError("Route", route_id)
    await db.refresh(route)

    logger.info("Suggestion reviewed", extra={"route_id": route.id, "decision": decision.value})
    await log_event(
        db=db,
        action=audit_action,
        actor_id=reviewer.id,
        actor_username=reviewer.username,
        target_type="route",
        target_id=route.id,
        metadata={"submitted_by": route.created_by, "comments": comments}
    )
    return route, await get_steps(db, route.id)


async def list_pending(
    db: AsyncSession,
    reviewer: Optional[Contributor],
    page: int = 1,
    page_size: int = 20
) -> Tuple[List[Route], int]:
    """Pending suggestions, oldest first, for reviewers."""
    ReputationLedger.require(
        reviewer, settings.reputation_review, "view pending suggestions", allow_roles=REVIEWER_ROLES
    )
    conditions = (Route.needs_approval == True,)
    total = (await db.execute(select(func.count(Route.id)).where(*conditions))).scalar()
    result = await db.execute(
        select(Route).where(*conditions)
        .order_by(Route.created_at, Route.id)
        .offset((page - 1) * page_size).limit(page_size)
    )
    return result.scalars().all(), total


async def _count(db: AsyncSession, column, *conditions) -> int:
    return (await db.execute(select(func.count(column)).where(*conditions))).scalar() or 0


async def crowdsourcing_stats(db: AsyncSession) -> CrowdsourcingStats:
    return CrowdsourcingStats(
        active_routes=await _count(db, Route.id, Route.is_active == True),
        pending_suggestions=await _count(db, Route.id, Route.needs_approval == True),
        approved_suggestions=await _count(db, Route.id, Route.suggestion_status == SuggestionStatus.APPROVED),
        rejected_suggestions=await _count(db, Route.id, Route.suggestion_status == SuggestionStatus.REJECTED),
        active_reports=await _count(db, FareReport.id, FareReport.is_active == True),
        flagged_reports=await _count(db, FareReport.id, FareReport.is_flagged == True),
        contributors=await _count(db, Contributor.id, Contributor.is_active == True),
    )


async def my_contributions(db: AsyncSession, contributor: Optional[Contributor]) -> MyContributions:
    contributor = ReputationLedger.require_identity(contributor, "view your contributions")
    mine = Route.created_by == contributor.id
    return MyContributions(
        contributor_id=contributor.id,
        reputation_score=contributor.reputation_score,
        level=level_for(contributor.reputation_score),
        total_contributions=contributor.total_contributions,
        routes_created=await _count(db, Route.id, mine, Route.suggestion_status.is_(None)),
        suggestions_pending=await _count(db, Route.id, mine, Route.needs_approval == True),
        suggestions_approved=await _count(db, Route.id, mine, Route.suggestion_status == SuggestionStatus.APPROVED),
        suggestions_rejected=await _count(db, Route.id, mine, Route.suggestion_status == SuggestionStatus.REJECTED),
        fare_reports=await _count(db, FareReport.id, FareReport.contributor_id == contributor.id),
        locations_created=await _count(db, Location.id, Location.created_by == contributor.id),
    )
