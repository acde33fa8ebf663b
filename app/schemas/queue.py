from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class QueueEntryOut(BaseModel):
    id: int
    vehicle_id: int
    capacity_class: int
    position: int
    enqueued_at: datetime

    class Config:
        from_attributes = True


class EnqueueRequest(BaseModel):
    vehicle_id: int


class QueuedVehicleOut(BaseModel):
    vehicle_id: int
    plate_number: str
    driver_name: str
    car_model: str
    position: int
    enqueued_at: datetime
    is_active: bool


class QueueViewOut(BaseModel):
    capacity_class: int
    vehicles: list[QueuedVehicleOut]


class RepairResult(BaseModel):
    capacity_class: Optional[int] = None
    updated: int
