"""
Geo index service.

Proximity and text search over locations, plus the location write path
(bounding-box and duplicate checks). There is no spatial index: a degree
bounding box prefilters candidates in SQL, then the haversine distance is
computed per candidate and filtered/sorted in Python.
"""

import logging
import math
from typing import List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from crowdroute.app.core.config import settings
from crowdroute.app.core.exceptions import ConflictError, InvalidCoordinatesError, NotFoundError, reject_nulls
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.location import Location
from crowdroute.app.models.location_enums import LocationType, NigerianState
from crowdroute.app.schemas.location import LocationCreate, LocationUpdate
from crowdroute.app.services.audit import AuditAction, log_event
from crowdroute.app.services.cache import CacheService
from crowdroute.app.services.reputation_ledger import ReputationLedger

logger = logging.getLogger(__name__)

REQUIRED_LOCATION_FIELDS = ("name", "latitude", "longitude", "city", "state", "location_type", "is_active")

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.32


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def operating_bounds() -> dict:
    return {
        "min_latitude": settings.geo_min_latitude,
        "max_latitude": settings.geo_max_latitude,
        "min_longitude": settings.geo_min_longitude,
        "max_longitude": settings.geo_max_longitude,
    }


def ensure_in_bounds(latitude: float, longitude: float) -> None:
    """
    Raises:
        InvalidCoordinatesError: Point outside the operating bounding box
    """
    if not (
        settings.geo_min_latitude <= latitude <= settings.geo_max_latitude
        and settings.geo_min_longitude <= longitude <= settings.geo_max_longitude
    ):
        raise InvalidCoordinatesError(latitude, longitude, operating_bounds())


def clamp_radius(radius_km: float) -> float:
    return min(radius_km, settings.geo_max_radius_km)


def degree_box(latitude: float, longitude: float, radius_km: float) -> Tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lng, max_lng) enclosing the radius circle."""
    lat_delta = radius_km / KM_PER_DEGREE_LAT
    # longitude degrees shrink with latitude; the operating area is far from the poles
    lng_delta = radius_km / (KM_PER_DEGREE_LAT * math.cos(math.radians(latitude)))
    return latitude - lat_delta, latitude + lat_delta, longitude - lng_delta, longitude + lng_delta


async def find_nearby(
    db: AsyncSession,
    latitude: float,
    longitude: float,
    radius_km: float = None,
    limit: int = 20,
    location_type: Optional[LocationType] = None,
    city: Optional[str] = None,
    state: Optional[NigerianState] = None,
    verified_only: bool = False
) -> List[Tuple[Location, float]]:
    """
    Active locations within ``radius_km`` of the point, nearest first.

    Ties on distance are broken by search_count (descending) then id, so
    results are deterministic. Pure read: usage counters are not touched.

    Returns:
        List of (location, distance_km)

    Raises:
        InvalidCoordinatesError: Query point outside the operating area
    """
    ensure_in_bounds(latitude, longitude)
    radius_km = clamp_radius(radius_km or settings.geo_default_radius_km)

    min_lat, max_lat, min_lng, max_lng = degree_box(latitude, longitude, radius_km)
    query = select(Location).where(
        Location.is_active == True,
        Location.latitude.between(min_lat, max_lat),
        Location.longitude.between(min_lng, max_lng),
    )
    if location_type:
        query = query.where(Location.location_type == location_type)
    if city:
        query = query.where(func.lower(Location.city) == city.lower())
    if state:
        query = query.where(Location.state == state)
    if verified_only:
        query = query.where(Location.is_verified == True)

    result = await db.execute(query)

    hits = []
    for location in result.scalars().all():
        distance = haversine_distance(latitude, longitude, location.latitude, location.longitude)
        if distance <= radius_km:
            hits.append((location, round(distance, 3)))

    hits.sort(key=lambda hit: (hit[1], -hit[0].search_count, hit[0].id))
    return hits[:limit]


async def find_by_coordinates(
    db: AsyncSession,
    latitude: float,
    longitude: float,
    tolerance: float = None,
    exclude_id: Optional[int] = None
) -> Optional[Location]:
    """First active location inside the +/- tolerance degree box, if any."""
    tolerance = settings.geo_coordinate_tolerance if tolerance is None else tolerance
    query = select(Location).where(
        Location.is_active == True,
        Location.latitude.between(latitude - tolerance, latitude + tolerance),
        Location.longitude.between(longitude - tolerance, longitude + tolerance),
    )
    if exclude_id is not None:
        query = query.where(Location.id != exclude_id)
    result = await db.execute(query.order_by(Location.id).limit(1))
    return result.scalar_one_or_none()


async def search(
    db: AsyncSession,
    query_text: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[NigerianState] = None,
    location_type: Optional[LocationType] = None,
    page: int = 1,
    page_size: int = 20
) -> Tuple[List[Location], int]:
    """Case-insensitive text search over name, address and city, most searched first."""
    conditions = [Location.is_active == True]
    if query_text:
        pattern = f"%{query_text.lower()}%"
        conditions.append(or_(
            func.lower(Location.name).like(pattern),
            func.lower(Location.address).like(pattern),
            func.lower(Location.city).like(pattern),
        ))
    if city:
        conditions.append(func.lower(Location.city) == city.lower())
    if state:
        conditions.append(Location.state == state)
    if location_type:
        conditions.append(Location.location_type == location_type)

    total = (await db.execute(select(func.count(Location.id)).where(*conditions))).scalar()

    result = await db.execute(
        select(Location).where(*conditions)
        .order_by(Location.search_count.desc(), Location.name, Location.id)
        .offset((page - 1) * page_size).limit(page_size)
    )
    return result.scalars().all(), total


async def get_location(db: AsyncSession, location_id: int, active_only: bool = True) -> Location:
    location = await db.get(Location, location_id)
    if location is None or (active_only and not location.is_active):
        raise NotFoundError("Location", location_id)
    return location


async def record_location_view(db: AsyncSession, location: Location) -> Location:
    location.search_count += 1
    await db.commit()
    return location


async def _ensure_unique_name(db: AsyncSession, name: str, city: str, state: NigerianState, exclude_id: int = None):
    query = select(Location.id).where(
        Location.is_active == True,
        func.lower(Location.name) == name.lower(),
        func.lower(Location.city) == city.lower(),
        Location.state == state,
    )
    if exclude_id is not None:
        query = query.where(Location.id != exclude_id)
    existing = (await db.execute(query.limit(1))).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(
            f"A location named '{name}' already exists in {city}, {state.value}",
            details={"existing_location_id": existing}
        )


async def create_location(db: AsyncSession, data: LocationCreate, contributor: Contributor) -> Location:
    """
    Create a location.

    Raises:
        InvalidCoordinatesError: Outside the operating area
        ConflictError: Another location at effectively the same point, or same name in the city
    """
    ReputationLedger.require_identity(contributor, "add a location")
    ensure_in_bounds(data.latitude, data.longitude)

    duplicate = await find_by_coordinates(
        db, data.latitude, data.longitude, tolerance=settings.geo_duplicate_tolerance
    )
    if duplicate is not None:
        raise ConflictError(
            "A location already exists at these coordinates",
            details={"existing_location_id": duplicate.id}
        )
    await _ensure_unique_name(db, data.name, data.city, data.state)

    auto_verify = contributor.reputation_score >= settings.reputation_auto_verify_location
    location = Location(
        **data.model_dump(),
        created_by=contributor.id,
        is_verified=auto_verify,
        verified_by=contributor.id if auto_verify else None,
        is_active=True,
    )
    db.add(location)
    await db.flush()

    await ReputationLedger.grant(db, contributor.id, settings.reputation_grant_location, "location_created")
    await db.commit()
    await db.refresh(location)

    await log_event(
        db=db,
        action=AuditAction.LOCATION_CREATED,
        actor_id=contributor.id,
        actor_username=contributor.username,
        target_type="location",
        target_id=location.id,
        metadata={"name": location.name, "city": location.city, "auto_verified": auto_verify}
    )
    await CacheService.invalidate_locations()
    return location


async def update_location(
    db: AsyncSession,
    location_id: int,
    data: LocationUpdate,
    contributor: Contributor
) -> Location:
    """
    Patch a location. Owners always may; others need the edit threshold,
    and toggling ``is_active`` needs the delete threshold.
    """
    location = await get_location(db, location_id, active_only=False)
    update_data = data.model_dump(exclude_unset=True)
    reject_nulls(update_data, REQUIRED_LOCATION_FIELDS)

    is_improvement = ReputationLedger.require_owner_or(
        contributor, location.created_by, settings.reputation_edit_location, "edit this location"
    )
    if "is_active" in update_data and update_data["is_active"] != location.is_active:
        ReputationLedger.require(contributor, settings.reputation_delete, "change location status")

    latitude = update_data.get("latitude", location.latitude)
    longitude = update_data.get("longitude", location.longitude)
    if "latitude" in update_data or "longitude" in update_data:
        ensure_in_bounds(latitude, longitude)
        duplicate = await find_by_coordinates(
            db, latitude, longitude, tolerance=settings.geo_duplicate_tolerance, exclude_id=location.id
        )
        if duplicate is not None:
            raise ConflictError(
                "A location already exists at these coordinates",
                details={"existing_location_id": duplicate.id}
            )
    if {"name", "city", "state"} & update_data.keys():
        await _ensure_unique_name(
            db,
            update_data.get("name", location.name),
            update_data.get("city", location.city),
            update_data.get("state", location.state),
            exclude_id=location.id,
        )

    before = {field: _jsonable(getattr(location, field)) for field in update_data}
    for field, value in update_data.items():
        setattr(location, field, value)

    if is_improvement and update_data:
        await ReputationLedger.grant(
            db, contributor.id, settings.reputation_grant_improve_location, "location_improved"
        )
    await db.commit()
    await db.refresh(location)

    await log_event(
        db=db,
        action=AuditAction.LOCATION_UPDATED,
        actor_id=contributor.id,
        actor_username=contributor.username,
        target_type="location",
        target_id=location.id,
        metadata={
            "before": before,
            "after": {field: _jsonable(getattr(location, field)) for field in update_data},
        }
    )
    await CacheService.invalidate_locations()
    return location


async def deactivate_location(db: AsyncSession, location_id: int, contributor: Contributor) -> Location:
    location = await get_location(db, location_id)
    ReputationLedger.require_owner_or(
        contributor, location.created_by, settings.reputation_delete, "deactivate this location"
    )

    location.is_active = False
    await db.commit()
    await db.refresh(location)

    await log_event(
        db=db,
        action=AuditAction.LOCATION_DEACTIVATED,
        actor_id=contributor.id,
        actor_username=contributor.username,
        target_type="location",
        target_id=location.id,
        metadata={"name": location.name}
    )
    await CacheService.invalidate_locations()
    return location


def _jsonable(value):
    return value.value if hasattr(value, "value") else value
