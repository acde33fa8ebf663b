# app/routers/bookings.py
"""Passenger bookings — assign the best-fitting waiting taxi to a group."""

from fastapi import APIRouter, Depends, status
from app.dependencies import get_dispatch
from app.schemas.dispatch import Assignment, BookingRequest
from app.services.dispatch_engine import DispatchEngine

router = APIRouter()


@router.post("/bookings", response_model=Assignment, status_code=status.HTTP_201_CREATED,
             summary="Book a taxi for a passenger group")
async def create_booking(body: BookingRequest, dispatch: DispatchEngine = Depends(get_dispatch)):
    """
    Takes the first waiting vehicle of the smallest seater that fits the group,
    moving up to larger seaters when that queue is empty.

    - **409 NO_AVAILABLE_VEHICLE** — every eligible queue is empty
    - **504 TIMEOUT** — no vehicle was taken within `timeout_seconds`
    - **503** — storage is unavailable; safe to retry
    """
    return await dispatch.assign(body.passenger_count, body.destination, body.timeout_seconds)
