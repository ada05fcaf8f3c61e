"""
Route structure service.

Validates and stores the ordered steps of a route:

- step numbers are exactly 1..N once sorted (no gaps, no duplicates)
- each step ends where the next one starts
- fare_min <= fare_max per step (fare_max defaults to fare_min)
- 1-480 minutes per leg, 1-2880 minutes for the whole journey

A route and all of its steps are written in one transaction so readers
never see a partial step sequence.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crowdroute.app.core.config import settings
from crowdroute.app.core.exceptions import ConflictError, NotFoundError, ValidationError, reject_nulls
from crowdroute.app.domain.aggregation.snapshot import RouteAggregate, StepAggregate
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.location import Location
from crowdroute.app.models.route import Route
from crowdroute.app.models.route_enums import Difficulty, SuggestionStatus, VehicleType
from crowdroute.app.models.route_step import RouteStep
from crowdroute.app.schemas.route import RouteCreate, RouteUpdate, StepCreate
from crowdroute.app.services.audit import AuditAction, log_event
from crowdroute.app.services.report_aggregator import commit_or_conflict
from crowdroute.app.services.reputation_ledger import ReputationLedger

logger = logging.getLogger(__name__)

REQUIRED_ROUTE_FIELDS = (
    "estimated_fare_min", "estimated_fare_max", "estimated_duration", "difficulty", "vehicle_types", "is_active",
)


def validate_steps(steps: Sequence[StepCreate]) -> List[StepCreate]:
    """
    Check the structural invariants of a step sequence.

    Args:
        steps: Steps in any order

    Returns:
        The steps sorted by step_number, with fare_max filled in

    Raises:
        ValidationError: With one entry per problem under details["errors"]
    """
    if not steps:
        raise ValidationError("A route needs at least one step", details={"errors": []})

    ordered = sorted(steps, key=lambda step: step.step_number)
    errors: List[Dict] = []

    numbers = [step.step_number for step in ordered]
    expected = list(range(1, len(ordered) + 1))
    if numbers != expected:
        duplicates = sorted(n for n, count in Counter(numbers).items() if count > 1)
        missing = sorted(set(expected) - set(numbers))
        errors.append({
            "error": "step_numbers_not_contiguous",
            "step_numbers": numbers,
            "duplicates": duplicates,
            "missing": missing,
        })

    for previous, current in zip(ordered, ordered[1:]):
        if previous.to_location_id != current.from_location_id:
            errors.append({
                "error": "broken_chain",
                "step_number": current.step_number,
                "previous_to_location_id": previous.to_location_id,
                "from_location_id": current.from_location_id,
            })

    normalized = []
    for step in ordered:
        fare_max = step.fare_max if step.fare_max is not None else step.fare_min
        if step.from_location_id == step.to_location_id:
            errors.append({"error": "step_starts_and_ends_at_same_location", "step_number": step.step_number})
        if step.fare_min > fare_max:
            errors.append({
                "error": "fare_min_exceeds_fare_max",
                "step_number": step.step_number,
                "fare_min": step.fare_min,
                "fare_max": fare_max,
            })
        if fare_max > settings.step_fare_max:
            errors.append({"error": "fare_out_of_range", "step_number": step.step_number, "fare_max": fare_max})
        if not settings.step_duration_min <= step.duration <= settings.step_duration_max:
            errors.append({"error": "duration_out_of_range", "step_number": step.step_number, "duration": step.duration})
        normalized.append(step.model_copy(update={"fare_max": fare_max}))

    total_duration = sum(step.duration for step in ordered)
    if not settings.step_duration_min <= total_duration <= settings.route_duration_max:
        errors.append({"error": "journey_duration_out_of_range", "total_duration": total_duration})

    if errors:
        raise ValidationError("Invalid route steps", details={"errors": errors})
    return normalized


def calculate_route_totals(steps: Sequence) -> Dict:
    """Summed fare range and duration plus the vehicle modes used (walking excluded)."""
    vehicle_types: List[VehicleType] = []
    for step in steps:
        if step.vehicle_type != VehicleType.WALKING and step.vehicle_type not in vehicle_types:
            vehicle_types.append(step.vehicle_type)
    return {
        "fare_min": sum(step.fare_min for step in steps),
        "fare_max": sum(step.fare_max if step.fare_max is not None else step.fare_min for step in steps),
        "duration": sum(step.duration for step in steps),
        "vehicle_types": vehicle_types,
    }


def count_vehicle_changes(steps: Sequence) -> int:
    return sum(1 for previous, current in zip(steps, steps[1:]) if previous.vehicle_type != current.vehicle_type)


async def find_active_route(db: AsyncSession, start_location_id: int, end_location_id: int) -> Optional[Route]:
    result = await db.execute(
        select(Route).where(
            Route.start_location_id == start_location_id,
            Route.end_location_id == end_location_id,
            Route.is_active == True,
        )
    )
    return result.scalar_one_or_none()


async def get_steps(db: AsyncSession, route_id: int) -> List[RouteStep]:
    result = await db.execute(
        select(RouteStep).where(RouteStep.route_id == route_id).order_by(RouteStep.step_number)
    )
    return result.scalars().all()


async def prepare_route(db: AsyncSession, data: RouteCreate) -> Tuple[List[StepCreate], Dict, Dict[int, Location]]:
    """
    Validate a route payload against the structure rules and the database.

    Returns:
        (sorted steps, totals, locations by id)

    Raises:
        ValidationError: Bad structure, or route endpoints not matching the steps
        NotFoundError: Unknown or inactive location
        ConflictError: An active route already serves (start, end)
    """
    if data.start_location_id == data.end_location_id:
        raise ValidationError(
            "Start and end locations must be different",
            details={"start_location_id": data.start_location_id}
        )

    steps = validate_steps(data.steps)
    if steps[0].from_location_id != data.start_location_id or steps[-1].to_location_id != data.end_location_id:
        raise ValidationError(
            "Steps must start at the route start and finish at the route end",
            details={
                "start_location_id": data.start_location_id,
                "end_location_id": data.end_location_id,
                "first_step_from": steps[0].from_location_id,
                "last_step_to": steps[-1].to_location_id,
            }
        )

    totals = calculate_route_totals(steps)
    if totals["fare_max"] > settings.route_fare_max:
        raise ValidationError(
            "Route fare exceeds the allowed maximum",
            details={"fare_max": totals["fare_max"], "limit": settings.route_fare_max}
        )

    location_ids = {data.start_location_id, data.end_location_id}
    for step in steps:
        location_ids.update((step.from_location_id, step.to_location_id))
    result = await db.execute(
        select(Location).where(Location.id.in_(location_ids), Location.is_active == True)
    )
    locations = {location.id: location for location in result.scalars().all()}
    for location_id in sorted(location_ids):
        if location_id not in locations:
            raise NotFoundError("Location", location_id)

    existing = await find_active_route(db, data.start_location_id, data.end_location_id)
    if existing is not None:
        raise ConflictError(
            "An active route already exists between these locations",
            details={"existing_route_id": existing.id}
        )

    return steps, totals, locations


async def persist_route(
    db: AsyncSession,
    data: RouteCreate,
    steps: List[StepCreate],
    totals: Dict,
    creator: Contributor,
    is_active: bool = True,
    suggestion_status: Optional[SuggestionStatus] = None,
    suggestion_confidence: Optional[int] = None
) -> Tuple[Route, List[RouteStep]]:
    """
    Insert the route and its steps without committing.

    Raises:
        ConflictError: The active-pair unique index fired (lost a race)
    """
    route = Route(
        start_location_id=data.start_location_id,
        end_location_id=data.end_location_id,
        name=data.name,
        vehicle_types=[vehicle_type.value for vehicle_type in totals["vehicle_types"]],
        estimated_fare_min=totals["fare_min"],
        estimated_fare_max=totals["fare_max"],
        estimated_duration=totals["duration"],
        distance_km=data.distance_km,
        difficulty=data.difficulty or Difficulty.MEDIUM,
        description=data.description,
        created_by=creator.id,
        is_active=is_active,
        needs_approval=suggestion_status == SuggestionStatus.PENDING_APPROVAL,
        suggestion_status=suggestion_status,
        suggestion_confidence=suggestion_confidence,
        aggregate=RouteAggregate().model_dump(mode="json"),
    )
    db.add(route)
    try:
        await db.flush()
        route_steps = []
        for step in steps:
            route_step = RouteStep(
                route_id=route.id,
                step_number=step.step_number,
                from_location_id=step.from_location_id,
                to_location_id=step.to_location_id,
                vehicle_type=step.vehicle_type,
                instructions=step.instructions,
                landmarks=step.landmarks,
                fare_min=step.fare_min,
                fare_max=step.fare_max,
                duration=step.duration,
                aggregate=StepAggregate().model_dump(mode="json"),
            )
            db.add(route_step)
            route_steps.append(route_step)
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "An active route already exists between these locations",
            details={"start_location_id": data.start_location_id, "end_location_id": data.end_location_id}
        )
    return route, route_steps


async def create_route(db: AsyncSession, data: RouteCreate, creator: Optional[Contributor]) -> Tuple[Route, List[RouteStep]]:
    """
    Create an active route with all of its steps atomically.

    Raises:
        AuthenticationError: Anonymous caller
        AuthorizationError: Reputation below the route creation gate
        ValidationError / NotFoundError / ConflictError: See prepare_route
    """
    creator = ReputationLedger.require(creator, settings.reputation_create_route, "create a route")
    steps, totals, locations = await prepare_route(db, data)

    route, route_steps = await persist_route(db, data, steps, totals, creator)

    locations[data.start_location_id].route_count += 1
    locations[data.end_location_id].route_count += 1
    await ReputationLedger.grant(db, creator.id, settings.reputation_grant_route, "route_created")
    await db.commit()

    logger.info("Route created", extra={"route_id": route.id, "steps": len(route_steps)})
    await log_event(
        db=db,
        action=AuditAction.ROUTE_CREATED,
        actor_id=creator.id,
        actor_username=creator.username,
        target_type="route",
        target_id=route.id,
        metadata={
            "start_location_id": route.start_location_id,
            "end_location_id": route.end_location_id,
            "steps": len(route_steps),
            "estimated_fare": [route.estimated_fare_min, route.estimated_fare_max],
        }
    )
    return route, route_steps


async def get_route(db: AsyncSession, route_id: int) -> Tuple[Route, List[RouteStep]]:
    route = await db.get(Route, route_id)
    if route is None or not route.is_active:
        raise NotFoundError("Route", route_id)
    return route, await get_steps(db, route_id)


async def search_routes(
    db: AsyncSession,
    from_location_id: int,
    to_location_id: int,
    vehicle_types: Optional[List[VehicleType]] = None,
    max_fare: Optional[int] = None,
    max_duration: Optional[int] = None,
    difficulty: Optional[Difficulty] = None,
    limit: int = 10
) -> List[Tuple[Route, List[RouteStep]]]:
    """
    Active routes between two locations, most trusted first.

    Ordered by aggregate confidence (desc), then cheapest estimate, then
    shortest duration.
    """
    query = select(Route).where(
        Route.start_location_id == from_location_id,
        Route.end_location_id == to_location_id,
        Route.is_active == True,
    )
    if max_fare is not None:
        query = query.where(Route.estimated_fare_min <= max_fare)
    if max_duration is not None:
        query = query.where(Route.estimated_duration <= max_duration)
    if difficulty is not None:
        query = query.where(Route.difficulty == difficulty)

    routes = (await db.execute(query)).scalars().all()

    if vehicle_types:
        wanted = {vehicle_type.value for vehicle_type in vehicle_types}
        routes = [route for route in routes if wanted & set(route.vehicle_types or [])]

    def rank(route: Route):
        confidence = RouteAggregate.from_column(route.aggregate).overall_confidence or 0
        return (-confidence, route.estimated_fare_min, route.estimated_duration, route.id)

    routes = sorted(routes, key=rank)[:min(limit, settings.route_search_limit)]

    results = []
    for route in routes:
        results.append((route, await get_steps(db, route.id)))
    return results


async def update_route(
    db: AsyncSession,
    route_id: int,
    data: RouteUpdate,
    contributor: Optional[Contributor]
) -> Route:
    """
    Patch a route.

    Owners always may; other contributors need the route edit threshold and
    earn an improvement grant. Changing ``is_active`` needs the delete
    threshold.

    Raises:
        NotFoundError: Unknown route, or a pending suggestion
        AuthorizationError: Reputation too low
        ValidationError: Null for a required field, patched fare range has
            min > max, or a status change on a rejected or pending suggestion
        ConflictError: Reactivating while another route serves the pair
    """
    route = await db.get(Route, route_id)
    update_data = data.model_dump(exclude_unset=True)
    reject_nulls(update_data, REQUIRED_ROUTE_FIELDS)
    reactivating = update_data.get("is_active") is True

    if route is None or route.needs_approval or (not route.is_active and not reactivating):
        raise NotFoundError("Route", route_id)
    if "is_active" in update_data and route.suggestion_status in (
        SuggestionStatus.PENDING_APPROVAL, SuggestionStatus.REJECTED
    ):
        raise ValidationError(
            "Suggestion status is decided by review",
            details={"route_id": route.id, "suggestion_status": route.suggestion_status.value}
        )

    is_improvement = ReputationLedger.require_owner_or(
        contributor, route.created_by, settings.reputation_edit_route, "edit this route"
    )
    if "is_active" in update_data and update_data["is_active"] != route.is_active:
        ReputationLedger.require(contributor, settings.reputation_delete, "change route status")

    fare_min = update_data.get("estimated_fare_min", route.estimated_fare_min)
    fare_max = update_data.get("estimated_fare_max", route.estimated_fare_max)
    if fare_min > fare_max:
        raise ValidationError(
            "estimated_fare_min cannot exceed estimated_fare_max",
            details={"estimated_fare_min": fare_min, "estimated_fare_max": fare_max}
        )
    if fare_max > settings.route_fare_max:
        raise ValidationError("Route fare exceeds the allowed maximum", details={"estimated_fare_max": fare_max})
    if update_data.get("estimated_duration", route.estimated_duration) > settings.route_duration_max:
        raise ValidationError("Route duration exceeds the allowed maximum")

    if "vehicle_types" in update_data:
        if VehicleType.WALKING in update_data["vehicle_types"] or not update_data["vehicle_types"]:
            raise ValidationError("vehicle_types must list at least one transit mode (walking is not one)")
        update_data["vehicle_types"] = [vehicle_type.value for vehicle_type in update_data["vehicle_types"]]

    if reactivating and not route.is_active:
        existing = await find_active_route(db, route.start_location_id, route.end_location_id)
        if existing is not None:
            raise ConflictError(
                "An active route already exists between these locations",
                details={"existing_route_id": existing.id}
            )

    before = {field: _jsonable(getattr(route, field)) for field in update_data}
    for field, value in update_data.items():
        setattr(route, field, value)

    if is_improvement and update_data:
        await ReputationLedger.grant(db, contributor.id, settings.reputation_grant_improve_route, "route_improved")
    await commit_or_conflict(db, "Route", route.id)
    await db.refresh(route)

    await log_event(
        db=db,
        action=AuditAction.ROUTE_UPDATED,
        actor_id=contributor.id,
        actor_username=contributor.username,
        target_type="route",
        target_id=route.id,
        metadata={
            "before": before,
            "after": {field: _jsonable(getattr(route, field)) for field in update_data},
        }
    )
    return route


async def deactivate_route(db: AsyncSession, route_id: int, contributor: Optional[Contributor]) -> Route:
    route, _ = await get_route(db, route_id)
    ReputationLedger.require_owner_or(contributor, route.created_by, settings.reputation_delete, "deactivate this route")

    route.is_active = False
    await commit_or_conflict(db, "Route", route.id)
    await db.refresh(route)

    await log_event(
        db=db,
        action=AuditAction.ROUTE_DEACTIVATED,
        actor_id=contributor.id,
        actor_username=contributor.username,
        target_type="route",
        target_id=route.id,
        metadata={"start_location_id": route.start_location_id, "end_location_id": route.end_location_id}
    )
    return route


def _jsonable(value):
    return value.value if hasattr(value, "value") else value
