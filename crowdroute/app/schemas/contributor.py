"""
Contributor Pydantic schemas.
"""

from pydantic import BaseModel
from crowdroute.app.models.enums import ContributorRole


class ContributorResponse(BaseModel):
    id: int
    username: str
    role: ContributorRole
    reputation_score: int
    total_contributions: int
    level: str


class ReputationResponse(BaseModel):
    contributor_id: int
    reputation_score: int
    level: str
