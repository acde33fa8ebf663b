"""
Per-capacity-class FIFO queues backed by the queue_entries table.

Every mutating operation is a single SQL statement or a single transaction,
so correctness across processes comes from the database, not from locks in
this process:

  - enqueue computes MAX(position) + 1 inside the INSERT itself
  - dequeue_head is DELETE ... WHERE id = (head subquery) RETURNING ...;
    only one concurrent caller can delete a given row, and on PostgreSQL the
    head subquery locks the head with FOR UPDATE. A caller that loses the
    race sees an empty delete while vehicles still wait and probes again
  - requeue_at_head refills the slot the vehicle left, shifting the class
    only when that slot has been taken since

All methods are blocking and are meant to run on a worker thread
(see services/resilience.py). Storage faults surface as QueueStorageError.
"""

import functools
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, exists, func, insert, literal, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.config import settings
from app.exceptions import QueueStorageError, VehicleAlreadyQueued
from app.models.audit_log import AuditLogEntry
from app.models.queue_entry import QueueEntry
from app.models.vehicle import Vehicle
from app.schemas.queue import QueueEntryOut, QueuedVehicleOut
from app.utils.clock import utcnow
from app.utils.json_parser import dump_details
from app.utils.logger import get_logger

logger = get_logger(__name__)

_queue = QueueEntry.__table__
_vehicles = Vehicle.__table__
_RETURNING = (_queue.c.id, _queue.c.vehicle_id, _queue.c.capacity_class,
              _queue.c.position, _queue.c.enqueued_at)


def _storage_op(operation: str):
    """Translate raw SQLAlchemy errors into QueueStorageError."""
    def decorator(func_):
        @functools.wraps(func_)
        def wrapper(self, *args, **kwargs):
            try:
                return func_(self, *args, **kwargs)
            except SQLAlchemyError as e:
                logger.error(f"[Queue] {operation} failed: {e}", exc_info=True)
                raise QueueStorageError(operation, e) from e
        return wrapper
    return decorator


class QueueStore:
    def __init__(self, session_factory, contention_retries: Optional[int] = None):
        self._session_factory = session_factory
        self.contention_retries = (settings.DEQUEUE_CONTENTION_RETRIES if contention_retries is None
                                   else contention_retries)

    # ── Writes ────────────────────────────────────────────────────────────

    @_storage_op("enqueue")
    def enqueue(self, capacity_class: int, vehicle_id: int) -> QueueEntryOut:
        """Append a vehicle at the tail of its class queue."""
        next_position = (
            select(
                literal(vehicle_id),
                literal(capacity_class),
                func.coalesce(func.max(_queue.c.position), 0) + 1,
                literal(utcnow()),
            )
            .where(_queue.c.capacity_class == capacity_class)
        )
        stmt = (
            insert(_queue)
            .from_select(["vehicle_id", "capacity_class", "position", "enqueued_at"], next_position)
            .returning(*_RETURNING)
        )
        with self._session_factory() as db:
            try:
                row = db.execute(stmt).one()
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise VehicleAlreadyQueued(vehicle_id, capacity_class) from e
        entry = QueueEntryOut.model_validate(row)
        logger.info(f"[Queue] Vehicle {vehicle_id} queued in {capacity_class}-seater at #{entry.position}")
        return entry

    @_storage_op("dequeue_head")
    def dequeue_head(self, capacity_class: int) -> Optional[QueueEntryOut]:
        """Atomically remove and return the head of the class queue, or None when it is empty.

        Suspended vehicles are treated as absent: they are skipped, not removed.
        The head row is locked with a plain FOR UPDATE, so a repair or requeue
        holding it makes this call wait rather than pass over it. When the
        locked head is taken by a racing caller the delete comes back empty
        while vehicles still wait; the probe is then repeated.
        """
        for attempt in range(1, self.contention_retries + 1):
            with self._session_factory() as db:
                row = db.execute(self._delete_head(capacity_class)).first()
                db.commit()
                if row is not None:
                    return QueueEntryOut.model_validate(row)
                if not db.execute(self._waiting(capacity_class)).scalar():
                    return None
            logger.debug(f"[Queue] {capacity_class}-seater head taken by another caller, "
                         f"probing again ({attempt}/{self.contention_retries})")
        logger.warning(f"[Queue] {capacity_class}-seater queue still contended after "
                       f"{self.contention_retries} probes")
        raise QueueStorageError("dequeue_head (contended)")

    def _delete_head(self, capacity_class: int):
        head = _queue.alias("head")
        head_id = (
            select(head.c.id)
            .select_from(head.join(_vehicles, _vehicles.c.id == head.c.vehicle_id))
            .where(head.c.capacity_class == capacity_class, _vehicles.c.is_active.is_(True))
            .order_by(head.c.position, head.c.enqueued_at, head.c.id)
            .limit(1)
            .with_for_update(of=head)
            .scalar_subquery()
        )
        return delete(_queue).where(_queue.c.id == head_id).returning(*_RETURNING)

    @staticmethod
    def _waiting(capacity_class: int):
        """Non-locking check for an active vehicle in the class."""
        return select(
            exists()
            .where(_queue.c.capacity_class == capacity_class,
                   _queue.c.vehicle_id == _vehicles.c.id,
                   _vehicles.c.is_active.is_(True))
        )

    @_storage_op("remove_by_id")
    def remove_by_id(self, capacity_class: int, vehicle_id: int) -> bool:
        """Operator removal. Leaves a gap; renumbering is the repairer's job."""
        stmt = delete(_queue).where(
            _queue.c.capacity_class == capacity_class,
            _queue.c.vehicle_id == vehicle_id,
        )
        with self._session_factory() as db:
            removed = db.execute(stmt).rowcount
            db.commit()
        return removed > 0

    @_storage_op("requeue_at_head")
    def requeue_at_head(self, entry: QueueEntryOut, reason: str = "compensation") -> QueueEntryOut:
        """Put a dequeued vehicle back at the head, keeping its original enqueue time.

        The vehicle takes back its old position when nothing sits at or before
        it. Otherwise the queue is shifted back by one from the current head.
        """
        capacity_class = entry.capacity_class
        with self._session_factory() as db:
            try:
                head = db.execute(
                    select(func.min(_queue.c.position)).where(_queue.c.capacity_class == capacity_class)
                ).scalar()
                position = entry.position
                if head is not None and head <= entry.position:
                    position = head
                    db.execute(
                        update(_queue)
                        .where(_queue.c.capacity_class == capacity_class, _queue.c.position >= head)
                        .values(position=_queue.c.position + 1)
                    )
                row = db.execute(
                    insert(_queue)
                    .values(vehicle_id=entry.vehicle_id, capacity_class=capacity_class,
                            position=position, enqueued_at=entry.enqueued_at)
                    .returning(*_RETURNING)
                ).one()
                db.add(AuditLogEntry(
                    action="VEHICLE_REQUEUED",
                    entity_id=str(entry.vehicle_id),
                    timestamp=utcnow(),
                    details=dump_details({
                        "vehicle_id": entry.vehicle_id,
                        "capacity_class": capacity_class,
                        "previous_position": entry.position,
                        "reason": reason,
                    }),
                ))
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise VehicleAlreadyQueued(entry.vehicle_id, capacity_class) from e
        logger.warning(f"[Queue] Vehicle {entry.vehicle_id} returned to head of "
                       f"{capacity_class}-seater queue ({reason})")
        return QueueEntryOut.model_validate(row)

    @_storage_op("apply_positions")
    def apply_positions(self, capacity_class: int, changes: Dict[int, Tuple[int, int]]) -> int:
        """Apply {entry_id: (old_position, new_position)} in one transaction.

        Each update is conditional on the old position so a concurrent change
        to the same row is not overwritten. Returns the number of rows changed.
        """
        if not changes:
            return 0
        updated = 0
        with self._session_factory() as db:
            for entry_id, (old_position, new_position) in changes.items():
                updated += db.execute(
                    update(_queue)
                    .where(
                        _queue.c.id == entry_id,
                        _queue.c.capacity_class == capacity_class,
                        _queue.c.position == old_position,
                    )
                    .values(position=new_position)
                ).rowcount
            db.commit()
        return updated

    @_storage_op("clear_class")
    def clear_class(self, capacity_class: int) -> int:
        with self._session_factory() as db:
            cleared = db.execute(delete(_queue).where(_queue.c.capacity_class == capacity_class)).rowcount
            db.commit()
        logger.warning(f"[Queue] Cleared {cleared} vehicles from {capacity_class}-seater queue")
        return cleared

    # ── Reads ─────────────────────────────────────────────────────────────

    @_storage_op("list_by_class")
    def list_by_class(self, capacity_class: int, include_inactive: bool = False) -> List[QueueEntryOut]:
        """Entries in FIFO order: position, then enqueue time."""
        with self._session_factory() as db:
            q = db.query(QueueEntry).filter(QueueEntry.capacity_class == capacity_class)
            if not include_inactive:
                q = q.join(Vehicle, Vehicle.id == QueueEntry.vehicle_id).filter(Vehicle.is_active.is_(True))
            rows = q.order_by(QueueEntry.position, QueueEntry.enqueued_at, QueueEntry.id).all()
            return [QueueEntryOut.model_validate(r) for r in rows]

    @_storage_op("list_with_vehicles")
    def list_with_vehicles(self, capacity_class: int) -> List[QueuedVehicleOut]:
        """Queue view joined with vehicle details, suspended vehicles included and flagged."""
        with self._session_factory() as db:
            rows = (
                db.query(QueueEntry, Vehicle)
                .join(Vehicle, Vehicle.id == QueueEntry.vehicle_id)
                .filter(QueueEntry.capacity_class == capacity_class)
                .order_by(QueueEntry.position, QueueEntry.enqueued_at, QueueEntry.id)
                .all()
            )
            return [
                QueuedVehicleOut(
                    vehicle_id=vehicle.id,
                    plate_number=vehicle.plate_number,
                    driver_name=vehicle.driver_name,
                    car_model=vehicle.car_model,
                    position=entry.position,
                    enqueued_at=entry.enqueued_at,
                    is_active=vehicle.is_active,
                )
                for entry, vehicle in rows
            ]

    @_storage_op("find_vehicle")
    def find_vehicle(self, vehicle_id: int) -> Optional[QueueEntryOut]:
        with self._session_factory() as db:
            row = db.query(QueueEntry).filter(QueueEntry.vehicle_id == vehicle_id).first()
            return QueueEntryOut.model_validate(row) if row else None

    @_storage_op("count_by_class")
    def count_by_class(self) -> Dict[int, int]:
        with self._session_factory() as db:
            rows = (
                db.query(QueueEntry.capacity_class, func.count(QueueEntry.id))
                .group_by(QueueEntry.capacity_class)
                .all()
            )
        return {capacity_class: count for capacity_class, count in rows}
