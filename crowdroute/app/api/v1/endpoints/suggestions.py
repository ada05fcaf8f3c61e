"""
Route Suggestion API Endpoints.

Contributors propose routes; reviewers approve or reject them.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from crowdroute.app.core.dependencies import get_current_contributor
from crowdroute.app.db.session import get_db
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.schemas.route import RouteResponse, StepResponse
from crowdroute.app.schemas.suggestion import (
    SuggestionCreate, SuggestionReview, SuggestionResponse,
    PendingSuggestionListResponse, CrowdsourcingStats, MyContributions
)
from crowdroute.app.services import suggestion_workflow

router = APIRouter(prefix="/suggestions", tags=["Route Suggestions"])


@router.post("", response_model=SuggestionResponse, status_code=status.HTTP_201_CREATED)
async def submit_suggestion(
    suggestion: SuggestionCreate,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Propose a new route. It stays inactive until a reviewer approves it.
    """
    route, steps, awarded = await suggestion_workflow.submit_suggestion(db, contributor, suggestion)
    return SuggestionResponse(
        route=RouteResponse.model_validate(route),
        steps=[StepResponse.model_validate(step) for step in steps],
        reputation_awarded=awarded
    )


@router.get("/pending", response_model=PendingSuggestionListResponse)
async def list_pending_suggestions(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Suggestions awaiting review, oldest first (reviewers only).
    """
    routes, total = await suggestion_workflow.list_pending(db, contributor, page, page_size)
    return PendingSuggestionListResponse(
        items=[RouteResponse.model_validate(route) for route in routes],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post("/{route_id}/review", response_model=SuggestionResponse)
async def review_suggestion(
    route_id: int,
    review: SuggestionReview,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    route, steps = await suggestion_workflow.review_suggestion(
        db, route_id, review.action, contributor, review.comments
    )
    return SuggestionResponse(
        route=RouteResponse.model_validate(route),
        steps=[StepResponse.model_validate(step) for step in steps]
    )


@router.get("/stats", response_model=CrowdsourcingStats)
async def get_stats(db: AsyncSession = Depends(get_db)):
    return await suggestion_workflow.crowdsourcing_stats(db)


@router.get("/mine", response_model=MyContributions)
async def my_contributions(
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    return await suggestion_workflow.my_contributions(db, contributor)
