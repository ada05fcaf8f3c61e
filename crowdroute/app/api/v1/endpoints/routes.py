"""
Route API Endpoints.

Route creation, discovery and crowdsourced feedback. Every write that
touches an aggregate returns the recomputed snapshot alongside the entity.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from crowdroute.app.core.config import settings
from crowdroute.app.core.dependencies import get_current_contributor, get_optional_contributor
from crowdroute.app.db.session import get_db
from crowdroute.app.domain.aggregation.snapshot import RouteAggregate
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.report_enums import ReportSource
from crowdroute.app.models.route_enums import Difficulty, VehicleType
from crowdroute.app.schemas.report import FareReportCreate, FareReportResponse, FareReportSubmissionResponse
from crowdroute.app.schemas.route import (
    RouteCreate, RouteUpdate, RouteResponse, RouteDetailResponse, StepResponse,
    RouteSearchResult, RouteSearchResponse, RouteObservationCreate, RouteObservationResponse
)
from crowdroute.app.services import route_structure, submission_guard
from crowdroute.app.services.report_aggregator import ReportAggregator

router = APIRouter(prefix="/routes", tags=["Routes"])


def _detail(route, steps) -> RouteDetailResponse:
    return RouteDetailResponse(
        route=RouteResponse.model_validate(route),
        steps=[StepResponse.model_validate(step) for step in steps]
    )


def submission_response(result: submission_guard.SubmissionResult) -> FareReportSubmissionResponse:
    return FareReportSubmissionResponse(
        report=FareReportResponse.model_validate(result.report),
        step_aggregate=result.step_aggregate,
        route_aggregate=result.route_aggregate,
        fare_estimate_updated=result.fare_estimate_updated,
        fare_min=result.fare_min,
        fare_max=result.fare_max,
        reputation_awarded=result.reputation_awarded,
    )


@router.post("", response_model=RouteDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_route(
    route_data: RouteCreate,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a route with all of its steps in one transaction.

    Needs the route creation reputation gate. Only one active route may
    serve a (start, end) pair.
    """
    route, steps = await route_structure.create_route(db, route_data, contributor)
    return _detail(route, steps)


@router.get("/search", response_model=RouteSearchResponse)
async def search_routes(
    from_location_id: int = Query(..., description="Start location"),
    to_location_id: int = Query(..., description="End location"),
    vehicle_types: Optional[List[VehicleType]] = Query(None),
    max_fare: Optional[int] = Query(None, ge=0),
    max_duration: Optional[int] = Query(None, ge=1),
    difficulty: Optional[Difficulty] = None,
    limit: int = Query(10, ge=1, le=settings.route_search_limit),
    db: AsyncSession = Depends(get_db)
):
    """
    Active routes between two locations, most trusted first.
    """
    results = await route_structure.search_routes(
        db, from_location_id, to_location_id,
        vehicle_types=vehicle_types,
        max_fare=max_fare,
        max_duration=max_duration,
        difficulty=difficulty,
        limit=limit,
    )
    return RouteSearchResponse(
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        routes=[
            RouteSearchResult(
                route=RouteResponse.model_validate(route),
                total_steps=len(steps),
                vehicle_changes=route_structure.count_vehicle_changes(steps),
            )
            for route, steps in results
        ]
    )


@router.get("/{route_id}", response_model=RouteDetailResponse)
async def get_route(
    route_id: int,
    db: AsyncSession = Depends(get_db)
):
    route, steps = await route_structure.get_route(db, route_id)
    return _detail(route, steps)


@router.patch("/{route_id}", response_model=RouteResponse)
async def update_route(
    route_id: int,
    route_data: RouteUpdate,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    route = await route_structure.update_route(db, route_id, route_data, contributor)
    return RouteResponse.model_validate(route)


@router.patch("/{route_id}/deactivate", response_model=RouteResponse)
async def deactivate_route(
    route_id: int,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    route = await route_structure.deactivate_route(db, route_id, contributor)
    return RouteResponse.model_validate(route)


@router.post("/{route_id}/feedback", response_model=FareReportSubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_route_feedback(
    route_id: int,
    feedback: FareReportCreate,
    contributor: Optional[Contributor] = Depends(get_optional_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Report what a step of this route actually cost.

    Anonymous feedback is accepted. Identified contributors may report a
    given step once per 24 hours.
    """
    result = await submission_guard.submit_fare_report(
        db, feedback, contributor, source=ReportSource.ROUTE_FEEDBACK, route_id=route_id
    )
    return submission_response(result)


@router.post("/{route_id}/updates", response_model=RouteObservationResponse, status_code=status.HTTP_201_CREATED)
async def submit_route_update(
    route_id: int,
    update: RouteObservationCreate,
    contributor: Optional[Contributor] = Depends(get_optional_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Submit a route-level observation (fare, duration, condition or availability).
    """
    aggregate, awarded = await ReportAggregator.submit_route_update(db, route_id, update, contributor)
    return RouteObservationResponse(route_id=route_id, aggregate=aggregate, reputation_awarded=awarded)


@router.get("/{route_id}/aggregate", response_model=RouteAggregate)
async def get_route_aggregate(
    route_id: int,
    db: AsyncSession = Depends(get_db)
):
    route, _ = await route_structure.get_route(db, route_id)
    return RouteAggregate.from_column(route.aggregate)
