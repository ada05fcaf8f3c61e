"""
Fare report Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional, List
from crowdroute.app.domain.aggregation.snapshot import RouteAggregate, StepAggregate
from crowdroute.app.models.report_enums import ReportSource, TimeOfDay, TrafficCondition, WeatherCondition
from crowdroute.app.models.route_enums import VehicleType


class FareReportCreate(BaseModel):
    """What a rider actually paid on one step."""
    route_step_id: int
    actual_fare_paid: int = Field(..., ge=0, le=50000)
    vehicle_type_used: VehicleType
    date_of_travel: date
    time_of_day: Optional[TimeOfDay] = None
    actual_duration: Optional[int] = Field(None, ge=1, le=480)
    rating: int = Field(..., ge=1, le=5)
    confidence: int = Field(3, ge=1, le=5, description="Self-declared certainty")
    comments: Optional[str] = Field(None, max_length=500)
    traffic_condition: Optional[TrafficCondition] = None
    weather_condition: Optional[WeatherCondition] = None
    is_holiday: bool = False
    passenger_count: int = Field(1, ge=1, le=10)


class FareReportResponse(BaseModel):
    """Schema for fare report response."""
    id: int
    contributor_id: Optional[int]
    route_id: int
    route_step_id: int
    source: ReportSource
    actual_fare_paid: int
    vehicle_type_used: VehicleType
    date_of_travel: date
    time_of_day: Optional[TimeOfDay]
    actual_duration: Optional[int]
    rating: int
    confidence: int
    fare_rating: int
    comments: Optional[str]
    traffic_condition: Optional[TrafficCondition]
    weather_condition: Optional[WeatherCondition]
    day_of_week: str
    is_holiday: bool
    passenger_count: int
    confidence_score: int
    is_verified: bool
    is_flagged: bool
    flag_reason: Optional[str]
    is_active: bool
    is_reliable: bool
    created_at: datetime

    class Config:
        from_attributes = True


class FareReportSubmissionResponse(BaseModel):
    """The stored report plus the recomputed aggregates."""
    report: FareReportResponse
    step_aggregate: StepAggregate
    route_aggregate: RouteAggregate
    fare_estimate_updated: bool
    fare_min: int
    fare_max: int
    reputation_awarded: int


class FareReportListResponse(BaseModel):
    items: List[FareReportResponse]
    total: int
    page: int
    page_size: int


class FlagRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=200)


class ModerationResponse(BaseModel):
    """A report after flag/verify/unflag, with the rebuilt step aggregate."""
    report: FareReportResponse
    step_aggregate: StepAggregate


class CleanupResponse(BaseModel):
    deactivated: int
    days_old: int
