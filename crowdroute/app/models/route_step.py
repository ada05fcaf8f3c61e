"""
Route step database model.

The i-th leg of a route. Step numbers are 1-based and contiguous, and
each leg starts where the previous one ended.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Enum, Text, JSON, DateTime, UniqueConstraint
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.db.session import Base
from crowdroute.app.models.route_enums import VehicleType


class RouteStep(Base):
    """
    Route step model.

    ``aggregate`` holds a serialized StepAggregate (ring buffer of recent
    fare reports plus weighted averages), guarded by ``aggregate_version``.
    """
    __tablename__ = "route_steps"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)
    step_number = Column(Integer, nullable=False)

    from_location_id = Column(Integer, ForeignKey('locations.id'), nullable=False, index=True)
    to_location_id = Column(Integer, ForeignKey('locations.id'), nullable=False, index=True)

    vehicle_type = Column(Enum(VehicleType), nullable=False)
    instructions = Column(Text, nullable=False)
    landmarks = Column(String(500), nullable=True)

    fare_min = Column(Integer, nullable=False)
    fare_max = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False)

    aggregate = Column(JSON, nullable=True)
    aggregate_version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('route_id', 'step_number', name='uq_route_steps_route_step_number'),
    )

    __mapper_args__ = {"version_id_col": aggregate_version}

    def __repr__(self):
        return f"<RouteStep(id={self.id}, route_id={self.route_id}, step={self.step_number}, {self.vehicle_type.value})>"
