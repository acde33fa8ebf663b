"""
Trip lifecycle state machine.

    Pending → Assigned → DriverEnRoute → InProgress → Completed
                 any non-terminal state → Cancelled

Completed and Cancelled are terminal. Every status change is a conditional
UPDATE on the status the transition was validated against, so two racing
callers cannot both move the same trip. Terminal transitions append an
audit_log row in the same transaction.
"""

import functools
import math
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import AlreadyTerminal, IllegalTransition, TripNotFound, TripStorageError
from app.models.audit_log import AuditLogEntry
from app.models.trip import Trip, TripStatus
from app.models.vehicle import Vehicle
from app.schemas.audit import AuditLogOut
from app.schemas.trip import TripCompletion, TripHistoryFilter, TripHistoryItem, TripOut, TripPage
from app.utils.clock import utcnow
from app.utils.json_parser import dump_details, safe_parse_json
from app.utils.logger import get_logger

logger = get_logger(__name__)

TRANSITIONS = {
    TripStatus.PENDING: {TripStatus.ASSIGNED, TripStatus.CANCELLED},
    TripStatus.ASSIGNED: {TripStatus.DRIVER_EN_ROUTE, TripStatus.CANCELLED},
    TripStatus.DRIVER_EN_ROUTE: {TripStatus.IN_PROGRESS, TripStatus.CANCELLED},
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED, TripStatus.CANCELLED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
}

AUDITED = {
    TripStatus.COMPLETED: "TRIP_COMPLETED",
    TripStatus.CANCELLED: "TRIP_CANCELLED",
}


def _storage_op(operation: str):
    def decorator(func_):
        @functools.wraps(func_)
        def wrapper(self, *args, **kwargs):
            try:
                return func_(self, *args, **kwargs)
            except SQLAlchemyError as e:
                logger.error(f"[Trip] {operation} failed: {e}", exc_info=True)
                raise TripStorageError(operation, e) from e
        return wrapper
    return decorator


class TripLifecycle:
    def __init__(self, session_factory, max_page_size: int = 100):
        self._session_factory = session_factory
        self.max_page_size = max_page_size

    @_storage_op("create trip")
    def create(self, passenger_count: int, destination: str, vehicle_id: Optional[int] = None,
               capacity_class: Optional[int] = None) -> TripOut:
        """Create a trip: Assigned when a vehicle is known, Pending otherwise."""
        now = utcnow()
        trip = Trip(
            vehicle_id=vehicle_id,
            capacity_class=capacity_class,
            passenger_count=passenger_count,
            destination=destination,
            status=TripStatus.ASSIGNED if vehicle_id is not None else TripStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as db:
            db.add(trip)
            db.commit()
            db.refresh(trip)
        logger.info(f"[Trip] Created trip {trip.id} ({trip.status.value}) vehicle={vehicle_id}")
        return TripOut.model_validate(trip)

    @_storage_op("get trip")
    def get(self, trip_id: int) -> TripOut:
        with self._session_factory() as db:
            return TripOut.model_validate(self._load(db, trip_id))

    @_storage_op("advance trip")
    def advance(self, trip_id: int, next_status: TripStatus, vehicle_id: Optional[int] = None) -> TripOut:
        """Move a trip along the state diagram. Raises IllegalTransition before any write."""
        next_status = TripStatus(next_status)
        with self._session_factory() as db:
            trip = self._load(db, trip_id)
            return self._transition(db, trip, next_status, vehicle_id)

    @_storage_op("complete trip")
    def complete(self, trip_id: int) -> TripCompletion:
        with self._session_factory() as db:
            trip = self._load(db, trip_id)
            if trip.status.is_terminal:
                raise AlreadyTerminal(trip_id, trip.status)
            completed = self._transition(db, trip, TripStatus.COMPLETED)
        return TripCompletion(
            trip=completed,
            vehicle_id=completed.vehicle_id,
            vehicle_available_for_queue=completed.vehicle_id is not None,
        )

    @_storage_op("cancel trip")
    def cancel(self, trip_id: int) -> TripOut:
        with self._session_factory() as db:
            trip = self._load(db, trip_id)
            if trip.status.is_terminal:
                raise AlreadyTerminal(trip_id, trip.status)
            return self._transition(db, trip, TripStatus.CANCELLED)

    @_storage_op("trip history")
    def history(self, filters: TripHistoryFilter) -> TripPage:
        """Trips newest first, offset-paginated, with total item and page counts.

        Each item carries the assigned vehicle's plate and driver details.
        """
        page_size = min(filters.page_size, self.max_page_size)
        with self._session_factory() as db:
            q = db.query(Trip, Vehicle).outerjoin(Vehicle, Vehicle.id == Trip.vehicle_id)
            if filters.status is not None:
                q = q.filter(Trip.status == filters.status)
            if filters.driver_name:
                q = q.filter(Vehicle.driver_name == filters.driver_name)
            if filters.created_from is not None:
                q = q.filter(Trip.created_at >= filters.created_from)
            if filters.created_to is not None:
                q = q.filter(Trip.created_at <= filters.created_to)
            total = q.count()
            rows = (
                q.order_by(Trip.created_at.desc(), Trip.id.desc())
                .offset((filters.page - 1) * page_size)
                .limit(page_size)
                .all()
            )
            items = [
                TripHistoryItem(
                    **TripOut.model_validate(trip).model_dump(),
                    plate_number=vehicle.plate_number if vehicle else None,
                    driver_name=vehicle.driver_name if vehicle else None,
                    driver_phone=vehicle.driver_phone if vehicle else None,
                )
                for trip, vehicle in rows
            ]
        return TripPage(
            items=items,
            page=filters.page,
            page_size=page_size,
            total_items=total,
            total_pages=math.ceil(total / page_size),
        )

    @_storage_op("audit trail")
    def audit_trail(self, entity_id: Optional[str] = None, action: Optional[str] = None,
                    limit: int = 50) -> List[AuditLogOut]:
        with self._session_factory() as db:
            q = db.query(AuditLogEntry)
            if entity_id is not None:
                q = q.filter(AuditLogEntry.entity_id == str(entity_id))
            if action:
                q = q.filter(AuditLogEntry.action == action)
            rows = q.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc()).limit(limit).all()
            return [
                AuditLogOut(id=r.id, action=r.action, entity_id=r.entity_id,
                            timestamp=r.timestamp, details=safe_parse_json(r.details))
                for r in rows
            ]

    # ── Internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _load(db, trip_id: int) -> Trip:
        trip = db.get(Trip, trip_id)
        if trip is None:
            raise TripNotFound(trip_id)
        return trip

    def _transition(self, db, trip: Trip, next_status: TripStatus,
                    vehicle_id: Optional[int] = None) -> TripOut:
        current = trip.status
        if next_status not in TRANSITIONS[current]:
            raise IllegalTransition(trip.id, current, next_status)
        if current == TripStatus.PENDING and next_status == TripStatus.ASSIGNED and vehicle_id is None:
            raise IllegalTransition(trip.id, current, next_status, "a vehicle is required")

        now = utcnow()
        values = {"status": next_status, "updated_at": now}
        if next_status == TripStatus.ASSIGNED and vehicle_id is not None:
            values["vehicle_id"] = vehicle_id
        if next_status == TripStatus.COMPLETED:
            values["completed_at"] = now

        changed = db.execute(
            update(Trip)
            .where(Trip.id == trip.id, Trip.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if changed == 0:
            db.rollback()
            raise IllegalTransition(trip.id, current, next_status, "trip status changed concurrently")

        if next_status in AUDITED:
            db.add(AuditLogEntry(
                action=AUDITED[next_status],
                entity_id=str(trip.id),
                timestamp=now,
                details=dump_details({
                    "trip_id": trip.id,
                    "vehicle_id": values.get("vehicle_id", trip.vehicle_id),
                    "from_status": current.value,
                    "to_status": next_status.value,
                    "at": now.isoformat(),
                }),
            ))
        db.commit()
        db.refresh(trip)
        logger.info(f"[Trip] Trip {trip.id}: {current.value} → {next_status.value}")
        return TripOut.model_validate(trip)
