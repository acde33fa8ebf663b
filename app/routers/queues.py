# app/routers/queues.py
"""Rank queues — one FIFO per seater class."""

from fastapi import APIRouter, Depends, HTTPException, status
from app.dependencies import get_dispatch
from app.schemas.queue import EnqueueRequest, QueueEntryOut, QueueViewOut, RepairResult
from app.services.dispatch_engine import DispatchEngine

router = APIRouter()


@router.get("/queues", response_model=list[QueueViewOut], summary="All seater queues")
async def all_queues(dispatch: DispatchEngine = Depends(get_dispatch)):
    return await dispatch.all_queues()


@router.post("/queues/vehicles", response_model=QueueEntryOut, status_code=status.HTTP_201_CREATED,
             summary="Add a vehicle to the tail of its seater queue")
async def enqueue_vehicle(body: EnqueueRequest, dispatch: DispatchEngine = Depends(get_dispatch)):
    return await dispatch.enqueue_vehicle(body.vehicle_id)


@router.post("/queues/repair", response_model=list[RepairResult], summary="Renumber every queue")
async def repair_all(dispatch: DispatchEngine = Depends(get_dispatch)):
    return await dispatch.repair_all()


@router.get("/queues/{capacity_class}", response_model=QueueViewOut, summary="One seater queue in order")
async def queue_view(capacity_class: int, dispatch: DispatchEngine = Depends(get_dispatch)):
    return await dispatch.queue_view(capacity_class)


@router.delete("/queues/{capacity_class}/vehicles/{vehicle_id}", summary="Remove a vehicle from a queue")
async def withdraw_vehicle(capacity_class: int, vehicle_id: int, dispatch: DispatchEngine = Depends(get_dispatch)):
    """Operator removal. Positions behind the vehicle are closed up afterwards."""
    result = await dispatch.withdraw_vehicle(capacity_class, vehicle_id)
    if not result["removed"]:
        raise HTTPException(status_code=404, detail=f"Vehicle {vehicle_id} is not in the "
                                                    f"{capacity_class}-seater queue")
    return {"status": "removed", "vehicle_id": vehicle_id, **result}


@router.post("/queues/{capacity_class}/repair", response_model=RepairResult, summary="Renumber one queue")
async def repair_queue(capacity_class: int, dispatch: DispatchEngine = Depends(get_dispatch)):
    return await dispatch.repair_queue(capacity_class)


@router.delete("/queues/{capacity_class}", summary="Empty a seater queue")
async def clear_queue(capacity_class: int, dispatch: DispatchEngine = Depends(get_dispatch)):
    cleared = await dispatch.clear_queue(capacity_class)
    return {"status": "cleared", "capacity_class": capacity_class, "cleared": cleared}
