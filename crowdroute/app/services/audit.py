"""
Audit logging service.

Every accepted write in the contribution pipeline emits a structured
event: it is stored in ``audit_logs`` and mirrored to the
``crowdroute.audit`` logger for external sinks.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from crowdroute.app.models.audit_log import AuditLog

audit_logger = logging.getLogger("crowdroute.audit")


class AuditAction:
    """Standardized audit action constants."""
    # Fare reports
    REPORT_SUBMITTED = "REPORT_SUBMITTED"
    REPORT_FLAGGED = "REPORT_FLAGGED"
    REPORT_VERIFIED = "REPORT_VERIFIED"
    REPORT_UNFLAGGED = "REPORT_UNFLAGGED"
    REPORTS_CLEANED_UP = "REPORTS_CLEANED_UP"

    # Routes
    ROUTE_CREATED = "ROUTE_CREATED"
    ROUTE_UPDATED = "ROUTE_UPDATED"
    ROUTE_DEACTIVATED = "ROUTE_DEACTIVATED"
    ROUTE_UPDATE_SUBMITTED = "ROUTE_UPDATE_SUBMITTED"

    # Locations
    LOCATION_CREATED = "LOCATION_CREATED"
    LOCATION_UPDATED = "LOCATION_UPDATED"
    LOCATION_DEACTIVATED = "LOCATION_DEACTIVATED"

    # Suggestions
    SUGGESTION_SUBMITTED = "SUGGESTION_SUBMITTED"
    SUGGESTION_APPROVED = "SUGGESTION_APPROVED"
    SUGGESTION_REJECTED = "SUGGESTION_REJECTED"

    # Reputation
    REPUTATION_GRANTED = "REPUTATION_GRANTED"


class AuditSeverity:
    INFO = "INFO"
    WARNING = "WARNING"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    severity: str = AuditSeverity.INFO,
    commit: bool = True
) -> AuditLog:
    """
    Record an audit event.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of the contributor performing the action
        actor_username: Username of actor
        target_type: Kind of entity touched (route, step, report, location, contributor)
        target_id: ID of the entity touched
        metadata: Before/after values and other context as JSON
        severity: AuditSeverity value
        commit: Commit immediately; pass False to ride on the caller's transaction

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        target_type=target_type,
        target_id=target_id,
        severity=severity,
        meta_data=metadata,
    )

    db.add(audit_log)
    if commit:
        await db.commit()
        await db.refresh(audit_log)
    else:
        await db.flush()

    audit_logger.log(
        logging.WARNING if severity == AuditSeverity.WARNING else logging.INFO,
        action,
        extra={
            "audit_action": action,
            "actor_id": actor_id,
            "target_type": target_type,
            "target_id": target_id,
            "audit_metadata": metadata or {},
        }
    )

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        target_type: Filter by entity kind
        target_id: Filter by entity ID
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if target_type:
        query = query.where(AuditLog.target_type == target_type)

    if target_id is not None:
        query = query.where(AuditLog.target_id == target_id)

    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return result.scalars().all()
