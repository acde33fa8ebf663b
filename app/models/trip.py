"""
Trips table — one row per passenger-to-vehicle assignment.
Rows are never deleted; Completed and Cancelled trips stay for history.
Status changes only go through services/trip_lifecycle.py.
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey
from app.database import Base


class TripStatus(str, enum.Enum):
    PENDING = "Pending"
    ASSIGNED = "Assigned"
    DRIVER_EN_ROUTE = "DriverEnRoute"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TripStatus.COMPLETED, TripStatus.CANCELLED)


class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), index=True)   # null while Pending
    capacity_class = Column(Integer)                                      # class the vehicle came from
    passenger_count = Column(Integer, nullable=False)
    destination = Column(String(255), nullable=False)
    status = Column(Enum(TripStatus, values_callable=lambda e: [m.value for m in e],
                         native_enum=False, length=20),
                    nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime)
    completed_at = Column(DateTime)

    def __repr__(self):
        return f"<Trip {self.id} vehicle={self.vehicle_id} status={self.status.value}>"
