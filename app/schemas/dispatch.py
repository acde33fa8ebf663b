from pydantic import BaseModel, Field, StrictInt
from typing import Optional


class BookingRequest(BaseModel):
    passenger_count: StrictInt
    destination: str = Field(min_length=1, max_length=255)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class AllocationInfo(BaseModel):
    efficiency_percent: int
    unused_seats: int
    rating: str        # Perfect | Optimal | Good | Fair | Wasteful


class AssignedVehicle(BaseModel):
    vehicle_id: int
    plate_number: str
    driver_name: str
    driver_phone: str
    car_model: str


class Assignment(BaseModel):
    trip_id: int
    vehicle: AssignedVehicle
    destination: str
    passenger_count: int
    requested_class: int
    assigned_class: int
    queue_position: int
    upgraded: bool
    reason: Optional[str] = None
    allocation: AllocationInfo
