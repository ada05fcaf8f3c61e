"""
Integration tests for the reputation ledger.

Grants, the zero floor, gates, levels, identity provisioning and the
privilege ladder validation in settings.
"""

import pytest
from pydantic import ValidationError as SettingsValidationError
from sqlalchemy import select

from crowdroute.app.core.config import Settings
from crowdroute.app.core.exceptions import AuthenticationError, AuthorizationError
from crowdroute.app.models.audit_log import AuditLog
from crowdroute.app.models.enums import ContributorRole
from crowdroute.app.services.audit import AuditAction
from crowdroute.app.services.reputation_ledger import ReputationLedger, level_for
from crowdroute.tests.helpers import auth_headers


@pytest.mark.asyncio
async def test_grant_clamps_at_zero_and_audits(db_session, make_contributor):
    contributor = await make_contributor(reputation=30)

    score = await ReputationLedger.grant(db_session, contributor.id, -50, "report_flagged", commit=True)

    assert score == 0
    assert await ReputationLedger.read(db_session, contributor.id) == 0

    event = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.REPUTATION_GRANTED)
    )).scalar_one()
    assert event.meta_data == {"reason": "report_flagged", "points": -50, "before": 30, "after": 0}


@pytest.mark.asyncio
async def test_grant_counts_contributions(db_session, make_contributor):
    contributor = await make_contributor()

    await ReputationLedger.grant(db_session, contributor.id, 10, "location_created")
    await ReputationLedger.grant(db_session, contributor.id, 20, "route_created", commit=True)
    await db_session.refresh(contributor)

    assert contributor.reputation_score == 30
    assert contributor.total_contributions == 2


@pytest.mark.parametrize("score,level", [
    (0, "Newcomer"), (49, "Newcomer"), (50, "Contributor"), (199, "Contributor"),
    (200, "Trusted"), (500, "Expert"), (999, "Expert"), (1000, "Master"),
])
def test_levels(score, level):
    assert level_for(score) == level


@pytest.mark.asyncio
async def test_require_gates(make_contributor):
    reviewer = await make_contributor(role=ContributorRole.REVIEWER)
    newcomer = await make_contributor(reputation=10)

    with pytest.raises(AuthenticationError):
        ReputationLedger.require(None, 50, "create a route")
    with pytest.raises(AuthorizationError) as exc_info:
        ReputationLedger.require(newcomer, 50, "create a route")
    assert exc_info.value.details == {
        "action": "create a route", "required_reputation": 50, "current_reputation": 10
    }
    assert ReputationLedger.require(reviewer, 500, "review", allow_roles=(ContributorRole.REVIEWER,)) is reviewer


def test_privilege_ladder_must_be_ordered():
    with pytest.raises(SettingsValidationError):
        Settings(reputation_delete=100, reputation_edit_route=300)
    with pytest.raises(SettingsValidationError):
        Settings(reputation_review=300)


# Identity provisioning over HTTP
@pytest.mark.asyncio
async def test_first_request_provisions_contributor(client):
    from crowdroute.app.core.jwt import create_access_token
    token = create_access_token(data={"sub": "ada", "user_id": 77, "role": "REVIEWER"})

    response = await client.get("/v1/contributors/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == 77
    assert data["username"] == "ada"
    assert data["role"] == "REVIEWER"
    assert data["reputation_score"] == 0
    assert data["level"] == "Newcomer"


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(client):
    response = await client.get("/v1/contributors/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_AUTH_001"


@pytest.mark.asyncio
async def test_public_reputation_lookup(client, make_contributor):
    contributor = await make_contributor(reputation=220)

    response = await client.get(f"/v1/contributors/{contributor.id}/reputation")
    assert response.json() == {"contributor_id": contributor.id, "reputation_score": 220, "level": "Trusted"}

    missing = await client.get("/v1/contributors/9999/reputation")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_me_requires_token(client, make_contributor):
    assert (await client.get("/v1/contributors/me")).status_code == 401
    contributor = await make_contributor(reputation=5)
    assert (await client.get("/v1/contributors/me", headers=auth_headers(contributor))).status_code == 200
