"""
Fleet registry: vehicle lookup and management helpers.
Used by the dispatch engine (eligibility, assignment details) and the
vehicles router (registration, suspension).
"""

from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.exceptions import FleetStorageError, VehicleAlreadyRegistered, VehicleNotFound
from app.models.vehicle import Vehicle
from app.schemas.vehicle import VehicleCreate, VehicleOut
from app.utils.clock import utcnow
from app.utils.logger import get_logger

logger = get_logger(__name__)


class FleetRegistry:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get(self, vehicle_id: int) -> VehicleOut:
        """Find a registered vehicle by id. Raises VehicleNotFound."""
        try:
            with self._session_factory() as db:
                vehicle = db.get(Vehicle, vehicle_id)
        except SQLAlchemyError as e:
            raise FleetStorageError("vehicle lookup", e) from e
        if vehicle is None:
            raise VehicleNotFound(vehicle_id)
        return VehicleOut.model_validate(vehicle)

    def lookup_by_plate(self, plate_number: str) -> Optional[VehicleOut]:
        """Find a registered vehicle by plate number. Returns None if not found."""
        try:
            with self._session_factory() as db:
                vehicle = db.query(Vehicle).filter(Vehicle.plate_number == plate_number).first()
        except SQLAlchemyError as e:
            raise FleetStorageError("vehicle lookup", e) from e
        return VehicleOut.model_validate(vehicle) if vehicle else None

    def list(self, capacity_class: Optional[int] = None, active: Optional[bool] = None) -> List[VehicleOut]:
        try:
            with self._session_factory() as db:
                q = db.query(Vehicle)
                if capacity_class is not None:
                    q = q.filter(Vehicle.capacity_class == capacity_class)
                if active is not None:
                    q = q.filter(Vehicle.is_active.is_(active))
                return [VehicleOut.model_validate(v) for v in q.order_by(Vehicle.plate_number).all()]
        except SQLAlchemyError as e:
            raise FleetStorageError("vehicle listing", e) from e

    def register(self, body: VehicleCreate) -> VehicleOut:
        """Register a rank vehicle. Plate numbers are unique."""
        now = utcnow()
        vehicle = Vehicle(
            plate_number=body.plate_number,
            driver_name=body.driver_name,
            driver_phone=body.driver_phone,
            car_model=body.car_model,
            capacity_class=body.capacity_class,
            is_active=body.is_active,
            registered_at=now,
            updated_at=now,
        )
        try:
            with self._session_factory() as db:
                db.add(vehicle)
                try:
                    db.commit()
                except IntegrityError as e:
                    db.rollback()
                    raise VehicleAlreadyRegistered(body.plate_number) from e
                db.refresh(vehicle)
        except SQLAlchemyError as e:
            raise FleetStorageError("vehicle registration", e) from e
        logger.info(f"[Fleet] Registered {vehicle.plate_number} ({vehicle.capacity_class}-seater)")
        return VehicleOut.model_validate(vehicle)

    def set_active(self, vehicle_id: int, active: bool) -> VehicleOut:
        try:
            with self._session_factory() as db:
                vehicle = db.get(Vehicle, vehicle_id)
                if vehicle is None:
                    raise VehicleNotFound(vehicle_id)
                vehicle.is_active = active
                vehicle.updated_at = utcnow()
                db.commit()
                db.refresh(vehicle)
        except SQLAlchemyError as e:
            raise FleetStorageError("vehicle status update", e) from e
        logger.info(f"[Fleet] {vehicle.plate_number} {'activated' if active else 'suspended'}")
        return VehicleOut.model_validate(vehicle)

    def toggle_active(self, vehicle_id: int) -> VehicleOut:
        return self.set_active(vehicle_id, not self.get(vehicle_id).is_active)
