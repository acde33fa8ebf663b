# app/routers/vehicles.py
"""Rank fleet — registration, lookup and suspension of taxis."""

from typing import Optional
from fastapi import APIRouter, Depends, status
from app.dependencies import get_dispatch
from app.schemas.vehicle import VehicleCreate, VehicleOut
from app.services.dispatch_engine import DispatchEngine

router = APIRouter()


@router.get("/vehicles", response_model=list[VehicleOut], summary="List registered vehicles")
async def list_vehicles(
    capacity_class: Optional[int] = None,
    active: Optional[bool] = None,
    dispatch: DispatchEngine = Depends(get_dispatch),
):
    return await dispatch.list_vehicles(capacity_class, active)


@router.post("/vehicles", response_model=VehicleOut, status_code=status.HTTP_201_CREATED,
             summary="Register a new vehicle")
async def register_vehicle(body: VehicleCreate, dispatch: DispatchEngine = Depends(get_dispatch)):
    """Register a taxi by plate number. The capacity class must be a configured seater."""
    return await dispatch.register_vehicle(body)


@router.get("/vehicles/lookup/{plate}", summary="Look up a plate number")
async def lookup_vehicle(plate: str, dispatch: DispatchEngine = Depends(get_dispatch)):
    vehicle = await dispatch.lookup_plate(plate)
    if not vehicle:
        return {"plate": plate, "status": "unknown", "registered": False}
    return {"plate": plate, "status": "known", "registered": True, "vehicle": vehicle}


@router.get("/vehicles/{vehicle_id}", response_model=VehicleOut, summary="Vehicle details")
async def get_vehicle(vehicle_id: int, dispatch: DispatchEngine = Depends(get_dispatch)):
    return await dispatch.vehicle_details(vehicle_id)


@router.put("/vehicles/{vehicle_id}/toggle", response_model=VehicleOut, summary="Suspend or reactivate a vehicle")
async def toggle_vehicle(vehicle_id: int, dispatch: DispatchEngine = Depends(get_dispatch)):
    """Suspended vehicles keep their queue place but are skipped by dispatch."""
    return await dispatch.toggle_vehicle(vehicle_id)
