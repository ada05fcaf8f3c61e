"""
Route suggestion Pydantic schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from crowdroute.app.schemas.route import RouteCreate, RouteResponse, StepResponse


class SuggestionCreate(RouteCreate):
    """A proposed new route; stored inactive until reviewed."""
    confidence: int = Field(3, ge=1, le=5)


class SuggestionReview(BaseModel):
    """Reviewer decision. ``action`` is 'approve' or 'reject'."""
    action: str
    comments: Optional[str] = Field(None, max_length=1000)


class SuggestionResponse(BaseModel):
    route: RouteResponse
    steps: List[StepResponse]
    reputation_awarded: int = 0


class PendingSuggestionListResponse(BaseModel):
    items: List[RouteResponse]
    total: int
    page: int
    page_size: int


class CrowdsourcingStats(BaseModel):
    active_routes: int
    pending_suggestions: int
    approved_suggestions: int
    rejected_suggestions: int
    active_reports: int
    flagged_reports: int
    contributors: int


class MyContributions(BaseModel):
    contributor_id: int
    reputation_score: int
    level: str
    total_contributions: int
    routes_created: int
    suggestions_pending: int
    suggestions_approved: int
    suggestions_rejected: int
    fare_reports: int
    locations_created: int
