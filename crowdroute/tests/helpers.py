"""
Request builders shared by the API tests.
"""

from crowdroute.app.core.jwt import create_access_token
from crowdroute.app.models.contributor import Contributor


def auth_headers(contributor: Contributor) -> dict:
    """Bearer header for a contributor, as the identity service would issue it."""
    token = create_access_token(data={
        "sub": contributor.username,
        "user_id": contributor.id,
        "role": contributor.role.value,
    })
    return {"Authorization": f"Bearer {token}"}


def step_payload(step_number: int, from_id: int, to_id: int, vehicle_type: str = "bus",
                 fare_min: int = 200, fare_max: int = 300, duration: int = 20) -> dict:
    return {
        "step_number": step_number,
        "from_location_id": from_id,
        "to_location_id": to_id,
        "vehicle_type": vehicle_type,
        "instructions": f"Board at stop {from_id} and alight at stop {to_id}",
        "fare_min": fare_min,
        "fare_max": fare_max,
        "duration": duration,
    }


def route_payload(start_id: int, end_id: int, steps: list, **extra) -> dict:
    return {"start_location_id": start_id, "end_location_id": end_id, "steps": steps, **extra}


def report_payload(step_id: int, fare: int, travel_date, confidence: int = 3, **extra) -> dict:
    return {
        "route_step_id": step_id,
        "actual_fare_paid": fare,
        "vehicle_type_used": extra.pop("vehicle_type_used", "bus"),
        "date_of_travel": travel_date.isoformat(),
        "rating": extra.pop("rating", 4),
        "confidence": confidence,
        **extra,
    }
