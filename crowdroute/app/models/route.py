"""
Route database model.

An ordered path between two locations, composed of RouteStep rows.
Suggested routes live in the same table, inactive until approved.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, Enum, Text, JSON, Index
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.db.session import Base
from crowdroute.app.models.route_enums import Difficulty, SuggestionStatus


class Route(Base):
    """
    Route model.

    ``aggregate`` holds a serialized RouteAggregate. ``aggregate_version`` is
    the optimistic concurrency counter: every UPDATE checks and bumps it, so
    two writers folding reports into the same route cannot both win.
    """
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    start_location_id = Column(Integer, ForeignKey('locations.id'), nullable=False, index=True)
    end_location_id = Column(Integer, ForeignKey('locations.id'), nullable=False, index=True)

    name = Column(String(200), nullable=True)
    vehicle_types = Column(JSON, nullable=False, default=list)

    # Published estimate
    estimated_fare_min = Column(Integer, nullable=False)
    estimated_fare_max = Column(Integer, nullable=False)
    estimated_duration = Column(Integer, nullable=False)
    distance_km = Column(Float, nullable=True)
    difficulty = Column(Enum(Difficulty), default=Difficulty.MEDIUM, nullable=False)
    description = Column(Text, nullable=True)

    # Attribution
    created_by = Column(Integer, ForeignKey('contributors.id'), nullable=True, index=True)

    # Status (soft delete)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Suggestion workflow
    needs_approval = Column(Boolean, default=False, nullable=False, index=True)
    suggestion_status = Column(Enum(SuggestionStatus), nullable=True, index=True)
    suggestion_confidence = Column(Integer, nullable=True)
    approved_by = Column(Integer, ForeignKey('contributors.id'), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey('contributors.id'), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    review_comments = Column(String(1000), nullable=True)

    # Crowdsourced aggregate
    aggregate = Column(JSON, nullable=True)
    aggregate_version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # One active route per ordered (start, end) pair
    __table_args__ = (
        Index(
            'ix_routes_active_pair', 'start_location_id', 'end_location_id', unique=True,
            postgresql_where=is_active == True,
            sqlite_where=is_active == True,
        ),
    )

    __mapper_args__ = {"version_id_col": aggregate_version}

    def __repr__(self):
        return f"<Route(id={self.id}, start={self.start_location_id}, end={self.end_location_id}, active={self.is_active})>"
