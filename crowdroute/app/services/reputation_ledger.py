"""
Reputation ledger.

Tracks each contributor's trust score. Scores are adjusted by discrete
grants per accepted contribution, never go below zero, and gate
privileged actions (edits, deletions, reviews).
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crowdroute.app.core.exceptions import AuthenticationError, AuthorizationError, NotFoundError
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.enums import ContributorRole
from crowdroute.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)

# (lower bound, label), highest first
REPUTATION_LEVELS = (
    (1000, "Master"),
    (500, "Expert"),
    (200, "Trusted"),
    (50, "Contributor"),
    (0, "Newcomer"),
)

REVIEWER_ROLES = (ContributorRole.REVIEWER, ContributorRole.ADMIN)


def level_for(score: int) -> str:
    for lower_bound, label in REPUTATION_LEVELS:
        if score >= lower_bound:
            return label
    return "Newcomer"


class ReputationLedger:

    @staticmethod
    async def get_or_provision(
        db: AsyncSession,
        contributor_id: int,
        username: str,
        role: Optional[str] = None
    ) -> Contributor:
        """
        Load the contributor behind an identity token, creating it on first sight.

        The identity service is authoritative for the role; reputation is ours.
        """
        contributor = await db.get(Contributor, contributor_id)
        try:
            token_role = ContributorRole(role) if role else None
        except ValueError:
            token_role = None

        if contributor is None:
            contributor = Contributor(
                id=contributor_id,
                username=username,
                role=token_role or ContributorRole.CONTRIBUTOR,
                reputation_score=0,
                total_contributions=0,
                is_active=True,
            )
            db.add(contributor)
            await db.commit()
            await db.refresh(contributor)
            logger.info("Provisioned contributor", extra={"contributor_id": contributor_id})
        elif token_role is not None and contributor.role != token_role:
            contributor.role = token_role
            await db.commit()

        return contributor

    @staticmethod
    async def read(db: AsyncSession, contributor_id: int) -> int:
        result = await db.execute(
            select(Contributor.reputation_score).where(Contributor.id == contributor_id)
        )
        score = result.scalar_one_or_none()
        if score is None:
            raise NotFoundError("Contributor", contributor_id)
        return score

    @staticmethod
    async def grant(
        db: AsyncSession,
        contributor_id: int,
        points: int,
        reason: str,
        commit: bool = False
    ) -> int:
        """
        Apply a reputation change and count the contribution.

        Args:
            db: Database session (the grant rides on the caller's transaction)
            contributor_id: Contributor receiving the points
            points: Signed change; the resulting score is clamped at 0
            reason: Short machine-readable reason, recorded in the audit event
            commit: Commit when done

        Returns:
            The new score
        """
        contributor = await db.get(Contributor, contributor_id)
        if contributor is None:
            raise NotFoundError("Contributor", contributor_id)

        before = contributor.reputation_score
        contributor.reputation_score = max(0, before + points)
        contributor.total_contributions += 1

        await log_event(
            db=db,
            action=AuditAction.REPUTATION_GRANTED,
            actor_id=contributor_id,
            actor_username=contributor.username,
            target_type="contributor",
            target_id=contributor_id,
            metadata={"reason": reason, "points": points, "before": before, "after": contributor.reputation_score},
            commit=commit
        )
        return contributor.reputation_score

    @staticmethod
    def require_identity(contributor: Optional[Contributor], action: str) -> Contributor:
        if contributor is None:
            raise AuthenticationError(f"You must be signed in to {action}")
        return contributor

    @staticmethod
    def require(
        contributor: Optional[Contributor],
        threshold: int,
        action: str,
        allow_roles: tuple = ()
    ) -> Contributor:
        """
        Gate an action on reputation.

        Raises:
            AuthenticationError: No identified contributor
            AuthorizationError: Score below threshold and no exempting role
        """
        contributor = ReputationLedger.require_identity(contributor, action)
        if contributor.role in allow_roles:
            return contributor
        if contributor.reputation_score < threshold:
            raise AuthorizationError(
                message=f"At least {threshold} reputation points are required to {action}",
                details={
                    "action": action,
                    "required_reputation": threshold,
                    "current_reputation": contributor.reputation_score,
                }
            )
        return contributor

    @staticmethod
    def require_owner_or(
        contributor: Optional[Contributor],
        owner_id: Optional[int],
        threshold: int,
        action: str
    ) -> bool:
        """
        Owners may always act on their own entities; others need ``threshold``.

        Returns:
            True when the actor is not the owner (an improvement by another user)
        """
        contributor = ReputationLedger.require_identity(contributor, action)
        if owner_id is not None and contributor.id == owner_id:
            return False
        ReputationLedger.require(contributor, threshold, action, allow_roles=(ContributorRole.ADMIN,))
        return True
