"""
Location API Endpoints.

Proximity and text search are open to everyone and served through the
read cache; creating and editing locations needs an identified
contributor with enough reputation.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from crowdroute.app.core.config import settings
from crowdroute.app.core.dependencies import get_current_contributor
from crowdroute.app.db.session import get_db
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.location_enums import LocationType, NigerianState
from crowdroute.app.schemas.location import (
    LocationCreate, LocationUpdate, LocationResponse,
    NearbyLocation, NearbyResponse, LocationListResponse
)
from crowdroute.app.services import geo_index
from crowdroute.app.services.cache import CacheService

router = APIRouter(prefix="/locations", tags=["Locations"])


@router.post("", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def create_location(
    location_data: LocationCreate,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Add a location.

    Auto-verified when the creator's reputation is high enough.
    """
    location = await geo_index.create_location(db, location_data, contributor)
    return LocationResponse.model_validate(location)


@router.get("/nearby", response_model=NearbyResponse)
async def nearby_locations(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(None, gt=0, description="Search radius, capped server-side"),
    limit: int = Query(20, ge=1, le=100),
    location_type: Optional[LocationType] = None,
    city: Optional[str] = None,
    state: Optional[NigerianState] = None,
    verified_only: bool = False,
    db: AsyncSession = Depends(get_db)
):
    """
    Active locations within a radius, nearest first.
    """
    radius = geo_index.clamp_radius(radius_km or settings.geo_default_radius_km)
    cache_key = await CacheService.build_key(
        "nearby",
        latitude=latitude, longitude=longitude, radius_km=radius, limit=limit,
        location_type=location_type, city=city, state=state, verified_only=verified_only,
    )
    cached = await CacheService.get(cache_key)
    if cached is not None:
        return NearbyResponse.model_validate(cached)

    hits = await geo_index.find_nearby(
        db, latitude, longitude,
        radius_km=radius,
        limit=limit,
        location_type=location_type,
        city=city,
        state=state,
        verified_only=verified_only,
    )
    response = NearbyResponse(
        latitude=latitude,
        longitude=longitude,
        radius_km=radius,
        locations=[
            NearbyLocation(**LocationResponse.model_validate(location).model_dump(), distance_km=distance)
            for location, distance in hits
        ]
    )
    await CacheService.set(cache_key, response.model_dump(mode="json"))
    return response


@router.get("/search", response_model=LocationListResponse)
async def search_locations(
    q: Optional[str] = Query(None, min_length=1, max_length=100, description="Matches name, address or city"),
    city: Optional[str] = None,
    state: Optional[NigerianState] = None,
    location_type: Optional[LocationType] = None,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db)
):
    cache_key = await CacheService.build_key(
        "search", q=q, city=city, state=state, location_type=location_type, page=page, page_size=page_size
    )
    cached = await CacheService.get(cache_key)
    if cached is not None:
        return LocationListResponse.model_validate(cached)

    locations, total = await geo_index.search(
        db, q, city=city, state=state, location_type=location_type, page=page, page_size=page_size
    )
    response = LocationListResponse(
        items=[LocationResponse.model_validate(location) for location in locations],
        total=total,
        page=page,
        page_size=page_size
    )
    await CacheService.set(cache_key, response.model_dump(mode="json"))
    return response


@router.get("/{location_id}", response_model=LocationResponse)
async def get_location(
    location_id: int,
    db: AsyncSession = Depends(get_db)
):
    """
    Fetch one active location. Counts as a view for search ranking.
    """
    location = await geo_index.get_location(db, location_id)
    location = await geo_index.record_location_view(db, location)
    return LocationResponse.model_validate(location)


@router.patch("/{location_id}", response_model=LocationResponse)
async def update_location(
    location_id: int,
    location_data: LocationUpdate,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    location = await geo_index.update_location(db, location_id, location_data, contributor)
    return LocationResponse.model_validate(location)


@router.patch("/{location_id}/deactivate", response_model=LocationResponse)
async def deactivate_location(
    location_id: int,
    contributor: Contributor = Depends(get_current_contributor),
    db: AsyncSession = Depends(get_db)
):
    """
    Soft delete a location (owner, or enough reputation).
    """
    location = await geo_index.deactivate_location(db, location_id, contributor)
    return LocationResponse.model_validate(location)
