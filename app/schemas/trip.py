from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Optional
from app.models.trip import TripStatus
from app.schemas.queue import QueueEntryOut


class TripOut(BaseModel):
    id: int
    vehicle_id: Optional[int]
    capacity_class: Optional[int]
    passenger_count: int
    destination: str
    status: TripStatus
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class TripHistoryItem(TripOut):
    plate_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None


class TripCompletion(BaseModel):
    trip: TripOut
    vehicle_id: Optional[int]
    vehicle_available_for_queue: bool


class TripAdvance(BaseModel):
    status: TripStatus
    vehicle_id: Optional[int] = None


class TripHistoryFilter(BaseModel):
    status: Optional[TripStatus] = None
    driver_name: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)

    @model_validator(mode="after")
    def _check_range(self):
        if self.created_from and self.created_to and self.created_from > self.created_to:
            raise ValueError("created_from must not be after created_to")
        return self


class TripPage(BaseModel):
    items: list[TripHistoryItem]
    page: int
    page_size: int
    total_items: int
    total_pages: int


class TripCompletionOut(TripCompletion):
    requeued: Optional[QueueEntryOut] = None
    requeue_error: Optional[str] = None
