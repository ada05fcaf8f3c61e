"""
Identity dependencies for FastAPI.

The identity service issues bearer JWTs carrying ``user_id`` and ``sub``
(and optionally ``role``). These dependencies resolve the token into a
local Contributor row, provisioning it on first sight.
"""

from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from crowdroute.app.core.exceptions import AuthenticationError
from crowdroute.app.core.jwt import decode_access_token
from crowdroute.app.db.session import get_db
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.services.reputation_ledger import ReputationLedger

# Bearer scheme that lets anonymous requests through
security = HTTPBearer(auto_error=False)


async def get_optional_contributor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[Contributor]:
    """
    Resolve the caller, or None for anonymous requests.

    A token that is present but invalid is still an error: callers that
    send credentials expect to be identified.

    Raises:
        AuthenticationError: Token invalid, expired or missing user_id
    """
    if credentials is None:
        return None

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    contributor = await ReputationLedger.get_or_provision(
        db,
        contributor_id=int(user_id),
        username=payload.get("sub") or f"user-{user_id}",
        role=payload.get("role"),
    )

    if not contributor.is_active:
        raise AuthenticationError("Contributor account is inactive")

    return contributor


async def get_current_contributor(
    contributor: Optional[Contributor] = Depends(get_optional_contributor)
) -> Contributor:
    """
    Resolve the caller and require an identity.

    Raises:
        AuthenticationError: No bearer token supplied
    """
    if contributor is None:
        raise AuthenticationError()
    return contributor
