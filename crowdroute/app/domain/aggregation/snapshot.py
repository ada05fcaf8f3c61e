"""
Crowdsourced aggregate value objects.

Typed replacements for the free-form JSON stored on routes and steps.
They serialize into the ``aggregate`` JSON columns with
``model_dump(mode="json")`` and are read back with ``from_column``.
"""

from datetime import date, datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from crowdroute.app.models.report_enums import RouteCondition


class ReportEntry(BaseModel):
    """One fare report as retained in a step's ring buffer."""
    report_id: int
    contributor_id: Optional[int] = None
    fare: int = Field(..., ge=0)
    duration: Optional[int] = Field(None, ge=1)
    confidence: int = Field(..., ge=1, le=5)
    reputation: int = Field(0, ge=0)
    observed_on: date
    recorded_at: datetime


class StepAggregate(BaseModel):
    """Derived summary of the recent fare reports for one route step."""
    entries: List[ReportEntry] = Field(default_factory=list)
    average_fare: Optional[float] = None
    average_duration: Optional[float] = None
    overall_confidence: Optional[float] = None
    contributor_count: int = 0
    report_count: int = 0
    last_updated: Optional[datetime] = None

    @classmethod
    def from_column(cls, raw: Optional[dict]) -> "StepAggregate":
        return cls.model_validate(raw) if raw else cls()


class _Observation(BaseModel):
    contributor_id: Optional[int] = None
    reputation: int = Field(0, ge=0)
    confidence: int = Field(3, ge=1, le=5)
    comments: Optional[str] = Field(None, max_length=500)
    recorded_at: datetime


class FareObservation(_Observation):
    kind: Literal["fare"] = "fare"
    value: int = Field(..., ge=0, le=100000)


class DurationObservation(_Observation):
    kind: Literal["duration"] = "duration"
    minutes: int = Field(..., ge=1, le=2880)


class ConditionObservation(_Observation):
    kind: Literal["condition"] = "condition"
    condition: RouteCondition


class AvailabilityObservation(_Observation):
    kind: Literal["availability"] = "availability"
    available: bool


RouteObservation = Annotated[
    Union[FareObservation, DurationObservation, ConditionObservation, AvailabilityObservation],
    Field(discriminator="kind"),
]


class RouteAggregate(BaseModel):
    """Derived summary of route-level observations and step feedback counters."""
    observations: List[RouteObservation] = Field(default_factory=list)
    average_fare: Optional[float] = None
    average_duration: Optional[float] = None
    latest_condition: Optional[RouteCondition] = None
    availability_ratio: Optional[float] = None
    overall_confidence: Optional[float] = None
    contributor_count: int = 0
    feedback_count: int = 0
    last_feedback_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @classmethod
    def from_column(cls, raw: Optional[dict]) -> "RouteAggregate":
        return cls.model_validate(raw) if raw else cls()
