"""
Route Pydantic schemas.

Request and response models for routes, their steps and route-level
crowdsourced observations. Structural rules (step sequencing, bounds)
are enforced by the route structure service so they surface as
ValidationError with per-step details.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Literal, Optional, List
from crowdroute.app.domain.aggregation.snapshot import RouteAggregate, StepAggregate
from crowdroute.app.models.report_enums import RouteCondition
from crowdroute.app.models.route_enums import Difficulty, SuggestionStatus, VehicleType


class StepCreate(BaseModel):
    """One leg of a route being created."""
    step_number: int
    from_location_id: int
    to_location_id: int
    vehicle_type: VehicleType
    instructions: str = Field(..., min_length=10, max_length=1000)
    landmarks: Optional[str] = Field(None, max_length=500)
    fare_min: int = Field(..., ge=0)
    fare_max: Optional[int] = Field(None, ge=0, description="Defaults to fare_min")
    duration: int = Field(..., description="Minutes")


class RouteCreate(BaseModel):
    """Schema for creating a route with all of its steps."""
    start_location_id: int
    end_location_id: int
    name: Optional[str] = Field(None, max_length=200)
    difficulty: Difficulty = Difficulty.MEDIUM
    description: Optional[str] = Field(None, max_length=2000)
    distance_km: Optional[float] = Field(None, gt=0)
    steps: List[StepCreate] = Field(..., min_length=1)


class RouteUpdate(BaseModel):
    """Schema for patching a route's published estimate and metadata."""
    name: Optional[str] = Field(None, max_length=200)
    estimated_fare_min: Optional[int] = Field(None, ge=0)
    estimated_fare_max: Optional[int] = Field(None, ge=0)
    estimated_duration: Optional[int] = Field(None, ge=1)
    difficulty: Optional[Difficulty] = None
    description: Optional[str] = Field(None, max_length=2000)
    vehicle_types: Optional[List[VehicleType]] = None
    is_active: Optional[bool] = None


class StepResponse(BaseModel):
    """Schema for route step response."""
    id: int
    route_id: int
    step_number: int
    from_location_id: int
    to_location_id: int
    vehicle_type: VehicleType
    instructions: str
    landmarks: Optional[str]
    fare_min: int
    fare_max: int
    duration: int
    aggregate: Optional[StepAggregate] = None

    class Config:
        from_attributes = True


class RouteResponse(BaseModel):
    """Schema for route response."""
    id: int
    start_location_id: int
    end_location_id: int
    name: Optional[str]
    vehicle_types: List[VehicleType]
    estimated_fare_min: int
    estimated_fare_max: int
    estimated_duration: int
    distance_km: Optional[float]
    difficulty: Difficulty
    description: Optional[str]
    created_by: Optional[int]
    is_active: bool
    needs_approval: bool
    suggestion_status: Optional[SuggestionStatus]
    suggestion_confidence: Optional[int]
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    rejected_by: Optional[int]
    rejected_at: Optional[datetime]
    review_comments: Optional[str]
    aggregate: Optional[RouteAggregate] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RouteDetailResponse(BaseModel):
    """A route with its ordered steps."""
    route: RouteResponse
    steps: List[StepResponse]


class RouteSearchResult(BaseModel):
    """Search hit with structural metadata."""
    route: RouteResponse
    total_steps: int
    vehicle_changes: int


class RouteSearchResponse(BaseModel):
    from_location_id: int
    to_location_id: int
    routes: List[RouteSearchResult]


class RouteObservationCreate(BaseModel):
    """
    A route-level crowdsourced update.

    ``kind`` selects which value field must be present:
    fare -> value, duration -> value (minutes), condition -> condition,
    availability -> available.
    """
    kind: Literal["fare", "duration", "condition", "availability"]
    value: Optional[int] = Field(None, ge=0)
    condition: Optional[RouteCondition] = None
    available: Optional[bool] = None
    confidence: int = Field(3, ge=1, le=5)
    comments: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_payload_for_kind(self) -> "RouteObservationCreate":
        required = {
            "fare": "value",
            "duration": "value",
            "condition": "condition",
            "availability": "available",
        }[self.kind]
        if getattr(self, required) is None:
            raise ValueError(f"'{required}' is required for a {self.kind} update")
        if self.kind == "duration" and self.value < 1:
            raise ValueError("duration must be at least 1 minute")
        return self


class RouteObservationResponse(BaseModel):
    route_id: int
    aggregate: RouteAggregate
    reputation_awarded: int
