"""
Route history database models.

A RouteHistory is one scope (a trip, or a vehicle's UTC day) and owns an
append-only list of RouteHistoryPoint rows.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Date, Index
from sqlalchemy.orm import relationship
from fleet_backend.app.db.session import Base


class RouteHistory(Base):
    """
    Route history scope.

    scope_key is "trip:<trip_id>" or "day:<vehicle_id>:<YYYY-MM-DD>".
    """
    __tablename__ = "route_histories"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    scope_key = Column(String(100), unique=True, nullable=False, index=True)

    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    trip_id = Column(Integer, ForeignKey('trips.id'), nullable=True, index=True)
    scope_day = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    last_touched_at = Column(DateTime(timezone=True), nullable=False)

    points = relationship("RouteHistoryPoint", back_populates="history", order_by="RouteHistoryPoint.id")

    __table_args__ = (
        Index('idx_route_history_vehicle_touched', 'vehicle_id', 'last_touched_at'),
    )

    def __repr__(self):
        return f"<RouteHistory(scope_key='{self.scope_key}', vehicle_id={self.vehicle_id})>"


class RouteHistoryPoint(Base):
    """
    One appended GPS sample.

    The autoincrement id is the arrival order; recorded_at is the sample
    timestamp and may be out of order.
    """
    __tablename__ = "route_history_points"

    id = Column(Integer, primary_key=True, autoincrement=True)
    history_id = Column(Integer, ForeignKey('route_histories.id', ondelete="CASCADE"), nullable=False, index=True)
    driver_id = Column(Integer, nullable=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, default=0, nullable=False)

    recorded_at = Column(DateTime(timezone=True), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False)

    history = relationship("RouteHistory", back_populates="points")

    __table_args__ = (
        Index('idx_route_point_history_time', 'history_id', 'recorded_at'),
    )

    def __repr__(self):
        return f"<RouteHistoryPoint(history_id={self.history_id}, lat={self.latitude}, lng={self.longitude})>"
