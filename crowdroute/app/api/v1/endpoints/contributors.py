"""
Contributor API Endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from crowdroute.app.core.dependencies import get_current_contributor
from crowdroute.app.db.session import get_db
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.schemas.contributor import ContributorResponse, ReputationResponse
from crowdroute.app.services.reputation_ledger import ReputationLedger, level_for

router = APIRouter(prefix="/contributors", tags=["Contributors"])


@router.get("/me", response_model=ContributorResponse)
async def get_me(contributor: Contributor = Depends(get_current_contributor)):
    """
    The calling contributor, provisioned on first request.
    """
    return ContributorResponse(
        id=contributor.id,
        username=contributor.username,
        role=contributor.role,
        reputation_score=contributor.reputation_score,
        total_contributions=contributor.total_contributions,
        level=level_for(contributor.reputation_score),
    )


@router.get("/{contributor_id}/reputation", response_model=ReputationResponse)
async def get_reputation(
    contributor_id: int,
    db: AsyncSession = Depends(get_db)
):
    score = await ReputationLedger.read(db, contributor_id)
    return ReputationResponse(contributor_id=contributor_id, reputation_score=score, level=level_for(score))
