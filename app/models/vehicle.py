"""
Registered vehicles table (fleet registry).
Stores rank taxis by plate number with their passenger capacity class.
The dispatch engine only reads this table, except for the is_active flag
which gates eligibility for queueing and assignment.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from app.database import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plate_number = Column(String(20), unique=True, nullable=False, index=True)
    driver_name = Column(String(100), nullable=False)
    driver_phone = Column(String(20), nullable=False)
    car_model = Column(String(100), nullable=False)
    capacity_class = Column(Integer, nullable=False, index=True)  # 4 | 5 | 6 | 7 | 8
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    registered_at = Column(DateTime)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<Vehicle {self.plate_number} seater={self.capacity_class} active={self.is_active}>"
