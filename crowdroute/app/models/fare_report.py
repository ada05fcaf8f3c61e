"""
Fare report database model.

One observation of what a contributor actually paid (and how long it
took) on a route step. Reports are deactivated by retention cleanup,
never erased, so the audit history survives.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, ForeignKey, Enum, UniqueConstraint
from crowdroute.app.core.config import settings
from crowdroute.app.core.timeutils import utcnow
from crowdroute.app.db.session import Base
from crowdroute.app.models.report_enums import ReportSource, TimeOfDay, TrafficCondition, WeatherCondition
from crowdroute.app.models.route_enums import VehicleType


class FareReport(Base):
    """
    Fare report model.

    At most one report per (contributor, step, travel date). Anonymous
    reports carry a NULL contributor and are not covered by that key.
    """
    __tablename__ = "fare_reports"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    contributor_id = Column(Integer, ForeignKey('contributors.id'), nullable=True, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)
    route_step_id = Column(Integer, ForeignKey('route_steps.id'), nullable=False, index=True)
    source = Column(Enum(ReportSource), nullable=False)

    # Observation
    actual_fare_paid = Column(Integer, nullable=False)
    vehicle_type_used = Column(Enum(VehicleType), nullable=False)
    date_of_travel = Column(Date, nullable=False)
    time_of_day = Column(Enum(TimeOfDay), nullable=True)
    actual_duration = Column(Integer, nullable=True)
    rating = Column(Integer, nullable=False)
    confidence = Column(Integer, default=3, nullable=False)
    fare_rating = Column(Integer, nullable=False)
    comments = Column(String(500), nullable=True)

    # Context
    traffic_condition = Column(Enum(TrafficCondition), nullable=True)
    weather_condition = Column(Enum(WeatherCondition), nullable=True)
    day_of_week = Column(String(10), nullable=False)
    is_holiday = Column(Boolean, default=False, nullable=False)
    passenger_count = Column(Integer, default=1, nullable=False)

    # Weighting input captured at submission time
    reporter_reputation = Column(Integer, default=0, nullable=False)

    # Trust
    confidence_score = Column(Integer, default=100, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    verified_by = Column(Integer, ForeignKey('contributors.id'), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    is_flagged = Column(Boolean, default=False, nullable=False, index=True)
    flag_reason = Column(String(200), nullable=True)
    flagged_by = Column(Integer, ForeignKey('contributors.id'), nullable=True)
    flagged_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            'contributor_id', 'route_step_id', 'date_of_travel',
            name='uq_fare_reports_contributor_step_date'
        ),
    )

    @property
    def is_reliable(self) -> bool:
        return (
            self.is_active
            and not self.is_flagged
            and self.confidence_score >= settings.reliable_confidence_threshold
        )

    def __repr__(self):
        return f"<FareReport(id={self.id}, step_id={self.route_step_id}, fare={self.actual_fare_paid}, flagged={self.is_flagged})>"
