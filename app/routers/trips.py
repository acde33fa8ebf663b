# app/routers/trips.py
"""Trip tracking, state changes and history."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from app.config import settings
from app.dependencies import get_dispatch
from app.exceptions import DispatchError
from app.models.trip import TripStatus
from app.schemas.trip import TripAdvance, TripCompletionOut, TripHistoryFilter, TripOut, TripPage
from app.services.dispatch_engine import DispatchEngine
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/trips", response_model=TripPage, summary="Trip history — newest first, paginated")
async def trip_history(
    status: Optional[TripStatus] = None,
    driver_name: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.HISTORY_DEFAULT_PAGE_SIZE, ge=1, le=settings.HISTORY_MAX_PAGE_SIZE),
    dispatch: DispatchEngine = Depends(get_dispatch),
):
    try:
        filters = TripHistoryFilter(status=status, driver_name=driver_name, created_from=created_from,
                                    created_to=created_to, page=page, page_size=page_size)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=[err["msg"] for err in e.errors(include_url=False)])
    return await dispatch.trip_history(filters)


@router.get("/trips/{trip_id}", response_model=TripOut, summary="Trip details")
async def get_trip(trip_id: int, dispatch: DispatchEngine = Depends(get_dispatch)):
    return await dispatch.trip_details(trip_id)


@router.post("/trips/{trip_id}/advance", response_model=TripOut, summary="Move a trip to its next status")
async def advance_trip(trip_id: int, body: TripAdvance, dispatch: DispatchEngine = Depends(get_dispatch)):
    """Pending → Assigned (needs vehicle_id) → DriverEnRoute → InProgress."""
    return await dispatch.advance_trip(trip_id, body.status, body.vehicle_id)


@router.post("/trips/{trip_id}/complete", response_model=TripCompletionOut, summary="Complete a trip")
async def complete_trip(trip_id: int, requeue: bool = False, dispatch: DispatchEngine = Depends(get_dispatch)):
    """
    Completes an InProgress trip. With `requeue=true` the vehicle rejoins the
    tail of its seater queue; a failed requeue does not undo the completion.
    """
    completion = await dispatch.complete_trip(trip_id)
    result = TripCompletionOut(**completion.model_dump())
    if requeue and completion.vehicle_available_for_queue:
        try:
            result.requeued = await dispatch.enqueue_vehicle(completion.vehicle_id)
        except DispatchError as e:
            logger.warning(f"[Trip] Trip {trip_id} completed, vehicle not requeued: {e.detail}")
            result.requeue_error = e.detail
    return result


@router.post("/trips/{trip_id}/cancel", response_model=TripOut, summary="Cancel a trip")
async def cancel_trip(trip_id: int, dispatch: DispatchEngine = Depends(get_dispatch)):
    return await dispatch.cancel_trip(trip_id)
