"""
Location database model.

A named point inside the operating area. Locations are never hard-deleted.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, ForeignKey, Enum, Text, Index
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.db.session import Base
from crowdroute.app.models.location_enums import LocationType, NigerianState


class Location(Base):
    """
    Location model.

    Usage counters (search_count, route_count) are bumped by callers;
    geo queries themselves are side-effect free.
    """
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(200), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=True)
    city = Column(String(100), nullable=False, index=True)
    state = Column(Enum(NigerianState), nullable=False, index=True)
    location_type = Column(Enum(LocationType), default=LocationType.OTHER, nullable=False)
    description = Column(Text, nullable=True)

    # Verification
    is_verified = Column(Boolean, default=False, nullable=False)
    verified_by = Column(Integer, ForeignKey('contributors.id'), nullable=True)

    # Usage counters
    search_count = Column(Integer, default=0, nullable=False)
    route_count = Column(Integer, default=0, nullable=False)

    # Attribution
    created_by = Column(Integer, ForeignKey('contributors.id'), nullable=True, index=True)

    # Status (soft delete)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_locations_coordinates', 'latitude', 'longitude'),
    )

    def __repr__(self):
        return f"<Location(id={self.id}, name='{self.name}', lat={self.latitude}, lng={self.longitude})>"
