"""
Integration tests for route structure.

Step sequencing rules, atomic route creation and the one-active-route
per (start, end) rule.
"""

import pytest
from sqlalchemy import select, func

from crowdroute.app.core.exceptions import ValidationError
from crowdroute.app.models.route import Route
from crowdroute.app.models.route_step import RouteStep
from crowdroute.app.schemas.route import StepCreate
from crowdroute.app.services.route_structure import calculate_route_totals, count_vehicle_changes, validate_steps
from crowdroute.tests.helpers import auth_headers, route_payload, step_payload


def steps(*payloads):
    return [StepCreate(**payload) for payload in payloads]


@pytest.fixture
async def stops(make_location):
    """Four stops along the Ikeja - Yaba corridor."""
    return [
        await make_location("Ikeja Under Bridge", 6.6018, 3.3515),
        await make_location("Maryland Bus Stop", 6.5710, 3.3670, city="Maryland"),
        await make_location("Onipanu Bus Stop", 6.5380, 3.3650, city="Shomolu"),
        await make_location("Yaba Bus Stop", 6.5095, 3.3711, city="Yaba"),
    ]


# TEST 1: Step validation
def test_validate_steps_sorts_and_defaults_fare_max():
    ordered = validate_steps(steps(
        step_payload(2, 2, 3, fare_min=100, fare_max=None),
        step_payload(1, 1, 2),
    ))
    assert [step.step_number for step in ordered] == [1, 2]
    assert ordered[1].fare_max == 100


@pytest.mark.parametrize("numbers", [[1, 3], [1, 1], [2, 3], [0, 1]])
def test_validate_steps_rejects_non_contiguous_numbers(numbers):
    payloads = [step_payload(n, i + 1, i + 2) for i, n in enumerate(numbers)]
    with pytest.raises(ValidationError) as exc_info:
        validate_steps(steps(*payloads))
    errors = exc_info.value.details["errors"]
    assert errors[0]["error"] == "step_numbers_not_contiguous"


def test_validate_steps_reports_duplicates():
    with pytest.raises(ValidationError) as exc_info:
        validate_steps(steps(step_payload(1, 1, 2), step_payload(1, 2, 3)))
    assert exc_info.value.details["errors"][0]["duplicates"] == [1]


def test_validate_steps_rejects_broken_chain():
    with pytest.raises(ValidationError) as exc_info:
        validate_steps(steps(step_payload(1, 1, 2), step_payload(2, 3, 4)))
    error = exc_info.value.details["errors"][0]
    assert error["error"] == "broken_chain"
    assert error["step_number"] == 2


def test_validate_steps_rejects_inverted_fare_range():
    with pytest.raises(ValidationError) as exc_info:
        validate_steps(steps(step_payload(1, 1, 2, fare_min=500, fare_max=300)))
    assert exc_info.value.details["errors"][0]["error"] == "fare_min_exceeds_fare_max"


@pytest.mark.parametrize("duration", [0, 481])
def test_validate_steps_rejects_leg_duration(duration):
    with pytest.raises(ValidationError):
        validate_steps(steps(step_payload(1, 1, 2, duration=duration)))


def test_validate_steps_rejects_long_journey():
    payloads = [step_payload(i, i, i + 1, duration=480) for i in range(1, 8)]
    with pytest.raises(ValidationError) as exc_info:
        validate_steps(steps(*payloads))
    assert exc_info.value.details["errors"][-1]["error"] == "journey_duration_out_of_range"


def test_totals_exclude_walking_from_modes():
    totals = calculate_route_totals(steps(
        step_payload(1, 1, 2, vehicle_type="walking", fare_min=0, fare_max=0, duration=5),
        step_payload(2, 2, 3, vehicle_type="bus", fare_min=200, fare_max=300),
        step_payload(3, 3, 4, vehicle_type="keke", fare_min=100, fare_max=150),
    ))
    assert totals["fare_min"] == 300
    assert totals["fare_max"] == 450
    assert totals["duration"] == 45
    assert [mode.value for mode in totals["vehicle_types"]] == ["bus", "keke"]


def test_count_vehicle_changes():
    legs = steps(
        step_payload(1, 1, 2, vehicle_type="bus"),
        step_payload(2, 2, 3, vehicle_type="bus"),
        step_payload(3, 3, 4, vehicle_type="keke"),
    )
    assert count_vehicle_changes(legs) == 1


# TEST 2: Route creation over HTTP
@pytest.mark.asyncio
async def test_create_route_with_steps(client, db_session, make_contributor, stops):
    creator = await make_contributor(reputation=60)
    a, m, _, b = stops

    response = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, m.id, vehicle_type="bus", fare_min=200, fare_max=300),
        step_payload(2, m.id, b.id, vehicle_type="keke", fare_min=150, fare_max=200),
    ], name="Ikeja to Yaba"), headers=auth_headers(creator))

    assert response.status_code == 201
    data = response.json()
    assert data["route"]["estimated_fare_min"] == 350
    assert data["route"]["estimated_fare_max"] == 500
    assert data["route"]["estimated_duration"] == 40
    assert data["route"]["vehicle_types"] == ["bus", "keke"]
    assert [step["step_number"] for step in data["steps"]] == [1, 2]

    await db_session.refresh(creator)
    await db_session.refresh(a)
    assert creator.reputation_score == 80
    assert a.route_count == 1


@pytest.mark.asyncio
async def test_create_route_below_gate_is_forbidden(client, make_contributor, stops):
    creator = await make_contributor(reputation=40)
    a, m, _, b = stops

    response = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, m.id), step_payload(2, m.id, b.id),
    ]), headers=auth_headers(creator))

    assert response.status_code == 403
    assert response.json()["details"]["required_reputation"] == 50


@pytest.mark.asyncio
async def test_invalid_steps_persist_nothing(client, db_session, make_contributor, stops):
    creator = await make_contributor(reputation=60)
    a, m, o, b = stops

    response = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, m.id), step_payload(3, o.id, b.id),
    ]), headers=auth_headers(creator))

    assert response.status_code == 400
    kinds = {error["error"] for error in response.json()["details"]["errors"]}
    assert kinds == {"step_numbers_not_contiguous", "broken_chain"}
    assert (await db_session.execute(select(func.count(Route.id)))).scalar() == 0
    assert (await db_session.execute(select(func.count(RouteStep.id)))).scalar() == 0


@pytest.mark.asyncio
async def test_steps_must_span_route_endpoints(client, make_contributor, stops):
    creator = await make_contributor(reputation=60)
    a, m, o, b = stops

    response = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, m.id), step_payload(2, m.id, o.id),
    ]), headers=auth_headers(creator))

    assert response.status_code == 400
    assert response.json()["details"]["last_step_to"] == o.id


@pytest.mark.asyncio
async def test_second_active_route_for_pair_conflicts(client, make_contributor, stops):
    creator = await make_contributor(reputation=100)
    a, m, o, b = stops

    first = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, m.id), step_payload(2, m.id, b.id),
    ]), headers=auth_headers(creator))
    assert first.status_code == 201

    second = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, o.id), step_payload(2, o.id, b.id),
    ]), headers=auth_headers(creator))
    assert second.status_code == 409
    assert second.json()["details"]["existing_route_id"] == first.json()["route"]["id"]


@pytest.mark.asyncio
async def test_unknown_location_not_found(client, make_contributor, stops):
    creator = await make_contributor(reputation=60)
    a = stops[0]

    response = await client.post("/v1/routes", json=route_payload(a.id, 999, [
        step_payload(1, a.id, 999),
    ]), headers=auth_headers(creator))

    assert response.status_code == 404


# TEST 3: Search and lifecycle
@pytest.mark.asyncio
async def test_search_routes_with_filters(client, make_contributor, stops):
    creator = await make_contributor(reputation=60)
    a, m, _, b = stops
    created = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, m.id, vehicle_type="bus"),
        step_payload(2, m.id, b.id, vehicle_type="keke"),
    ]), headers=auth_headers(creator))
    assert created.status_code == 201

    hit = await client.get("/v1/routes/search", params={
        "from_location_id": a.id, "to_location_id": b.id, "vehicle_types": ["keke"]
    })
    assert hit.status_code == 200
    result = hit.json()["routes"][0]
    assert result["total_steps"] == 2
    assert result["vehicle_changes"] == 1

    too_cheap = await client.get("/v1/routes/search", params={
        "from_location_id": a.id, "to_location_id": b.id, "max_fare": 100
    })
    assert too_cheap.json()["routes"] == []

    reverse = await client.get("/v1/routes/search", params={"from_location_id": b.id, "to_location_id": a.id})
    assert reverse.json()["routes"] == []


@pytest.mark.asyncio
async def test_owner_updates_and_deactivates_route(client, make_contributor, stops):
    creator = await make_contributor(reputation=60)
    a, m, _, b = stops
    created = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, m.id), step_payload(2, m.id, b.id),
    ]), headers=auth_headers(creator))
    route_id = created.json()["route"]["id"]

    inverted = await client.patch(f"/v1/routes/{route_id}", json={
        "estimated_fare_min": 900, "estimated_fare_max": 500
    }, headers=auth_headers(creator))
    assert inverted.status_code == 400

    renamed = await client.patch(f"/v1/routes/{route_id}", json={"name": "Ikeja - Yaba express"},
                                 headers=auth_headers(creator))
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Ikeja - Yaba express"

    outsider = await make_contributor(reputation=250)
    denied = await client.patch(f"/v1/routes/{route_id}", json={"name": "Mine now"}, headers=auth_headers(outsider))
    assert denied.status_code == 403

    deactivated = await client.patch(f"/v1/routes/{route_id}/deactivate", headers=auth_headers(creator))
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    assert (await client.get(f"/v1/routes/{route_id}")).status_code == 404


@pytest.mark.parametrize("field", [
    "estimated_fare_min", "estimated_fare_max", "estimated_duration", "difficulty", "vehicle_types", "is_active",
])
@pytest.mark.asyncio
async def test_patch_null_for_required_route_field(client, make_contributor, stops, field):
    creator = await make_contributor(reputation=60)
    a, m, _, b = stops
    created = await client.post("/v1/routes", json=route_payload(a.id, b.id, [
        step_payload(1, a.id, m.id), step_payload(2, m.id, b.id),
    ]), headers=auth_headers(creator))
    route_id = created.json()["route"]["id"]

    response = await client.patch(f"/v1/routes/{route_id}", json={field: None}, headers=auth_headers(creator))

    assert response.status_code == 400
    assert response.json()["details"]["fields"] == [field]
    unchanged = (await client.get(f"/v1/routes/{route_id}")).json()["route"]
    assert unchanged["estimated_fare_min"] == 400
    assert unchanged["difficulty"] == "Medium"
