"""
Audit Log Database Model.

Structured audit events for contributions, moderation and reputation changes.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    ``meta_data`` carries the before/after values and any extra context
    of the event. Events logged include:
    - REPORT_SUBMITTED / REPORT_FLAGGED / REPORT_VERIFIED / REPORT_UNFLAGGED
    - ROUTE_CREATED / ROUTE_UPDATED / ROUTE_DEACTIVATED
    - SUGGESTION_SUBMITTED / SUGGESTION_APPROVED / SUGGESTION_REJECTED
    - REPUTATION_GRANTED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for anonymous or system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What the action touched
    target_type = Column(String(50), nullable=True, index=True)
    target_id = Column(Integer, nullable=True, index=True)

    severity = Column(String(20), nullable=False, default="INFO")

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', target={self.target_type}:{self.target_id})>"
