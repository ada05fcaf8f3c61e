"""
Location Pydantic schemas.

Defines request and response models for locations and geo queries.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from crowdroute.app.models.location_enums import LocationType, NigerianState


class LocationCreate(BaseModel):
    """Schema for creating a new location."""
    name: str = Field(..., min_length=2, max_length=200, description="Location name")
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    state: NigerianState
    location_type: LocationType = LocationType.OTHER
    description: Optional[str] = Field(None, max_length=1000)


class LocationUpdate(BaseModel):
    """Schema for updating an existing location."""
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[NigerianState] = None
    location_type: Optional[LocationType] = None
    description: Optional[str] = Field(None, max_length=1000)
    is_active: Optional[bool] = None


class LocationResponse(BaseModel):
    """Schema for location response."""
    id: int
    name: str
    latitude: float
    longitude: float
    address: Optional[str]
    city: str
    state: NigerianState
    location_type: LocationType
    description: Optional[str]
    is_verified: bool
    search_count: int
    route_count: int
    created_by: Optional[int]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class NearbyLocation(LocationResponse):
    """Location with its great-circle distance from the query point."""
    distance_km: float


class NearbyResponse(BaseModel):
    """Result of a radius query, nearest first."""
    latitude: float
    longitude: float
    radius_km: float
    locations: List[NearbyLocation]


class LocationListResponse(BaseModel):
    """Schema for paginated location search."""
    items: List[LocationResponse]
    total: int
    page: int
    page_size: int
