from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class VehicleCreate(BaseModel):
    plate_number: str = Field(min_length=1, max_length=20)
    driver_name: str = Field(min_length=1, max_length=100)
    driver_phone: str = Field(min_length=1, max_length=20)
    car_model: str = Field(min_length=1, max_length=100)
    capacity_class: int
    is_active: bool = True


class VehicleOut(BaseModel):
    id: int
    plate_number: str
    driver_name: str
    driver_phone: str
    car_model: str
    capacity_class: int
    is_active: bool
    registered_at: Optional[datetime]

    class Config:
        from_attributes = True
