"""
Contributor database model.

A contributor is the local projection of an identity issued by the
external identity service, extended with the reputation ledger fields.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.db.session import Base
from crowdroute.app.models.enums import ContributorRole


class Contributor(Base):
    """
    Contributor model.

    ``reputation_score`` never drops below zero; it gates privileged
    writes (route edits, deletions, suggestion reviews).
    """
    __tablename__ = "contributors"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(Enum(ContributorRole), default=ContributorRole.CONTRIBUTOR, nullable=False)

    # Reputation ledger
    reputation_score = Column(Integer, default=0, nullable=False)
    total_contributions = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Contributor(id={self.id}, username='{self.username}', reputation={self.reputation_score})>"
