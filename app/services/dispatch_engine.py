"""
Dispatch engine — matches a booking to the first waiting vehicle of the
smallest capacity class that fits, moving up to larger classes when needed.

assign():
  1. AllocationPolicy gives the probe order (invalid counts fail before any I/O)
  2. dequeue_head() per class until one returns a vehicle (atomic in SQL)
  3. create the Assigned trip; if that fails the vehicle goes back to the
     head of its queue, and CompensationFailed is raised if even that fails
  4. schedule a repair pass on the class the vehicle left

The caller deadline covers the probe phase. Once a vehicle has been taken
out of a queue the remaining steps run to completion even if the caller
times out or disconnects, and a dequeue that lands after the caller gave up
is put back at the head of its queue.
"""

import asyncio
from typing import Dict, List, Optional

from app.config import settings
from app.exceptions import (
    CompensationFailed,
    DispatchError,
    NoAvailableVehicle,
    VehicleAlreadyQueued,
    VehicleSuspended,
)
from app.models.trip import TripStatus
from app.schemas.audit import AuditLogOut
from app.schemas.dispatch import AssignedVehicle, Assignment
from app.schemas.queue import QueueEntryOut, QueueViewOut, RepairResult
from app.schemas.trip import TripCompletion, TripHistoryFilter, TripOut, TripPage
from app.schemas.vehicle import VehicleCreate, VehicleOut
from app.services.allocation_policy import AllocationPolicy
from app.services.fleet_registry import FleetRegistry
from app.services.queue_repairer import QueueRepairer
from app.services.queue_store import QueueStore
from app.services.resilience import Deadline, ResilienceWrapper
from app.services.trip_lifecycle import TripLifecycle
from app.utils.logger import get_logger

logger = get_logger(__name__)


class DispatchEngine:
    def __init__(self, store: QueueStore, trips: TripLifecycle, fleet: FleetRegistry,
                 policy: Optional[AllocationPolicy] = None, repairer: Optional[QueueRepairer] = None,
                 resilience: Optional[ResilienceWrapper] = None, default_timeout: Optional[float] = None,
                 repair_after_dispatch: Optional[bool] = None):
        self.store = store
        self.trips = trips
        self.fleet = fleet
        self.policy = policy or AllocationPolicy()
        self.repairer = repairer or QueueRepairer(store, self.policy.capacity_classes)
        self.resilience = resilience or ResilienceWrapper()
        self.default_timeout = settings.ASSIGN_TIMEOUT_SECONDS if default_timeout is None else default_timeout
        self.repair_after_dispatch = (settings.REPAIR_AFTER_DISPATCH if repair_after_dispatch is None
                                      else repair_after_dispatch)
        self._background = set()

        guard = self.resilience.wrap
        # Reads and atomic-conditional statements: retried
        self._dequeue_head = guard(store.dequeue_head, idempotent=True)
        self._find_queued = guard(store.find_vehicle, idempotent=True)
        self._queue_view = guard(store.list_with_vehicles, idempotent=True)
        self._repair = guard(self.repairer.repair, idempotent=True)
        self._get_vehicle = guard(fleet.get, idempotent=True)
        self._list_vehicles = guard(fleet.list, idempotent=True)
        self._lookup_plate = guard(fleet.lookup_by_plate, idempotent=True)
        self._queue_counts = guard(store.count_by_class, idempotent=True)
        self._get_trip = guard(trips.get, idempotent=True)
        self._history = guard(trips.history, idempotent=True)
        self._audit = guard(trips.audit_trail, idempotent=True)
        # Creates and state changes: one attempt
        self._enqueue = guard(store.enqueue)
        self._remove = guard(store.remove_by_id)
        self._clear = guard(store.clear_class)
        self._register = guard(fleet.register)
        self._toggle = guard(fleet.toggle_active)
        self._create_trip = guard(trips.create)
        self._advance = guard(trips.advance)
        self._complete = guard(trips.complete)
        self._cancel = guard(trips.cancel)

    @classmethod
    def from_session_factory(cls, session_factory, **kwargs) -> "DispatchEngine":
        """Wire every component to one storage handle."""
        trips = TripLifecycle(session_factory, max_page_size=settings.HISTORY_MAX_PAGE_SIZE)
        return cls(QueueStore(session_factory), trips, FleetRegistry(session_factory), **kwargs)

    # ── Booking ───────────────────────────────────────────────────────────

    async def assign(self, passenger_count: int, destination: str, timeout: Optional[float] = None) -> Assignment:
        probe_order = self.policy.classes_for(passenger_count)
        requested_class = probe_order[0]
        deadline = Deadline(self.default_timeout if timeout is None else timeout)
        logger.info(f"[Dispatch] {passenger_count} passengers → probe order "
                    f"{' → '.join(str(c) for c in probe_order)}")

        entry = None
        for capacity_class in probe_order:
            entry = await self._dequeue_head(capacity_class, deadline=deadline,
                                             on_abandon=self._return_late_dequeue)
            if entry is not None:
                break
            logger.info(f"[Dispatch] No vehicles in {capacity_class}-seater queue")

        if entry is None:
            logger.warning(f"[Dispatch] No suitable taxi for {passenger_count} passengers in any queue")
            raise NoAvailableVehicle(passenger_count, probe_order)

        finalize = self._spawn(self._finalize(entry, passenger_count, destination, requested_class))
        return await asyncio.shield(finalize)

    async def _finalize(self, entry: QueueEntryOut, passenger_count: int, destination: str,
                        requested_class: int) -> Assignment:
        try:
            vehicle = await self._get_vehicle(entry.vehicle_id)
            trip = await self._create_trip(passenger_count, destination, entry.vehicle_id, entry.capacity_class)
        except Exception as exc:
            logger.error(f"[Dispatch] Trip creation failed after dequeuing vehicle {entry.vehicle_id}: {exc}")
            await self._compensate(entry, exc)
            raise

        assigned_class = entry.capacity_class
        upgraded = assigned_class != requested_class
        reason = self.policy.upgrade_reason(requested_class, assigned_class) if upgraded else None
        logger.info(f"[Dispatch] {'UPGRADE' if upgraded else 'OPTIMUM'}: {assigned_class}-seater "
                    f"{vehicle.plate_number} (#{entry.position}) → trip {trip.id}")

        if self.repair_after_dispatch:
            self._spawn(self._background_repair(assigned_class))

        return Assignment(
            trip_id=trip.id,
            vehicle=AssignedVehicle(
                vehicle_id=vehicle.id,
                plate_number=vehicle.plate_number,
                driver_name=vehicle.driver_name,
                driver_phone=vehicle.driver_phone,
                car_model=vehicle.car_model,
            ),
            destination=trip.destination,
            passenger_count=passenger_count,
            requested_class=requested_class,
            assigned_class=assigned_class,
            queue_position=entry.position,
            upgraded=upgraded,
            reason=reason,
            allocation=self.policy.allocation_info(passenger_count, assigned_class),
        )

    async def _compensate(self, entry: QueueEntryOut, original: Exception):
        """Return a dequeued vehicle to the head of its queue, once, bypassing the breaker."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: self.store.requeue_at_head(entry, "trip creation failed"))
        except Exception as comp_exc:
            logger.error(f"[Dispatch] COMPENSATION FAILED: vehicle {entry.vehicle_id} is neither "
                         f"queued nor assigned", exc_info=True)
            raise CompensationFailed(entry.vehicle_id, entry.capacity_class, original, comp_exc) from comp_exc
        if self.repair_after_dispatch:
            self._spawn(self._background_repair(entry.capacity_class))

    def _return_late_dequeue(self, fut: asyncio.Future):
        """Done-callback for a dequeue the caller stopped waiting for."""
        if fut.cancelled() or fut.exception() is not None or fut.result() is None:
            return
        self._spawn(self._requeue_late(fut.result()))

    async def _requeue_late(self, entry: QueueEntryOut):
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: self.store.requeue_at_head(entry, "caller timed out"))
        except DispatchError:
            logger.error(f"[Dispatch] Could not return vehicle {entry.vehicle_id} after caller "
                         f"timeout; operator attention required", exc_info=True)
            return
        if self.repair_after_dispatch:
            await self._background_repair(entry.capacity_class)

    # ── Trips ─────────────────────────────────────────────────────────────

    async def complete_trip(self, trip_id: int) -> TripCompletion:
        return await self._complete(trip_id)

    async def cancel_trip(self, trip_id: int) -> TripOut:
        return await self._cancel(trip_id)

    async def advance_trip(self, trip_id: int, status: TripStatus, vehicle_id: Optional[int] = None) -> TripOut:
        return await self._advance(trip_id, status, vehicle_id)

    async def trip_details(self, trip_id: int) -> TripOut:
        return await self._get_trip(trip_id)

    async def trip_history(self, filters: TripHistoryFilter) -> TripPage:
        return await self._history(filters)

    async def audit_trail(self, entity_id: Optional[str] = None, action: Optional[str] = None,
                          limit: int = 50) -> List[AuditLogOut]:
        return await self._audit(entity_id, action, limit)

    # ── Queues ────────────────────────────────────────────────────────────

    async def enqueue_vehicle(self, vehicle_id: int) -> QueueEntryOut:
        """Add a vehicle to the tail of the queue matching its capacity class."""
        vehicle = await self._get_vehicle(vehicle_id)
        if not vehicle.is_active:
            logger.warning(f"[Queue] Attempted to queue suspended vehicle {vehicle.plate_number}")
            raise VehicleSuspended(vehicle_id)
        capacity_class = self.policy.validate_class(vehicle.capacity_class)
        existing = await self._find_queued(vehicle_id)
        if existing is not None:
            raise VehicleAlreadyQueued(vehicle_id, existing.capacity_class)
        return await self._enqueue(capacity_class, vehicle_id)

    async def withdraw_vehicle(self, capacity_class: int, vehicle_id: int) -> dict:
        """Operator removal followed by a repair pass on the class."""
        self.policy.validate_class(capacity_class)
        removed = await self._remove(capacity_class, vehicle_id)
        updated = (await self._repair(capacity_class)) if removed else 0
        return {"removed": removed, "updated": updated}

    async def repair_queue(self, capacity_class: int) -> RepairResult:
        self.policy.validate_class(capacity_class)
        updated = await self._repair(capacity_class)
        return RepairResult(capacity_class=capacity_class, updated=updated)

    async def repair_all(self) -> List[RepairResult]:
        return [await self.repair_queue(c) for c in self.policy.capacity_classes]

    async def queue_view(self, capacity_class: int) -> QueueViewOut:
        self.policy.validate_class(capacity_class)
        return QueueViewOut(capacity_class=capacity_class, vehicles=await self._queue_view(capacity_class))

    async def all_queues(self) -> List[QueueViewOut]:
        return list(await asyncio.gather(*(self.queue_view(c) for c in self.policy.capacity_classes)))

    async def queue_counts(self) -> Dict[int, int]:
        """Waiting vehicles per class, every configured class present."""
        counts = await self._queue_counts()
        return {c: counts.get(c, 0) for c in self.policy.capacity_classes}

    async def clear_queue(self, capacity_class: int) -> int:
        self.policy.validate_class(capacity_class)
        return await self._clear(capacity_class)

    # ── Fleet ─────────────────────────────────────────────────────────────

    async def register_vehicle(self, body: VehicleCreate) -> VehicleOut:
        self.policy.validate_class(body.capacity_class)
        return await self._register(body)

    async def list_vehicles(self, capacity_class: Optional[int] = None,
                            active: Optional[bool] = None) -> List[VehicleOut]:
        return await self._list_vehicles(capacity_class, active)

    async def vehicle_details(self, vehicle_id: int) -> VehicleOut:
        return await self._get_vehicle(vehicle_id)

    async def lookup_plate(self, plate_number: str) -> Optional[VehicleOut]:
        return await self._lookup_plate(plate_number)

    async def toggle_vehicle(self, vehicle_id: int) -> VehicleOut:
        """Suspend or reactivate. A suspended vehicle keeps its queue place but is skipped."""
        return await self._toggle(vehicle_id)

    def breaker_status(self) -> dict:
        return self.resilience.breaker.snapshot()

    # ── Background work ───────────────────────────────────────────────────

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _background_repair(self, capacity_class: int):
        try:
            await self._repair(capacity_class)
        except DispatchError as e:
            logger.warning(f"[Repair] Scheduled repair of {capacity_class}-seater queue failed: {e.detail}")

    async def drain(self):
        """Wait for scheduled repairs and late compensations (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
