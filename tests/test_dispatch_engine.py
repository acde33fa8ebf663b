# tests/test_dispatch_engine.py
"""End-to-end tests for booking allocation, compensation and queue operations."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
import time
import pytest
from unittest.mock import MagicMock, patch
from conftest import fast_resilience
from app.exceptions import (
    CompensationFailed,
    DispatchTimeout,
    InvalidCapacityClass,
    InvalidPassengerCount,
    NoAvailableVehicle,
    QueueStorageError,
    ServiceUnavailable,
    TripStorageError,
    VehicleAlreadyQueued,
    VehicleSuspended,
)
from app.models.trip import TripStatus
from app.schemas.trip import TripHistoryFilter
from app.schemas.vehicle import VehicleCreate
from app.services.allocation_policy import AllocationPolicy
from app.services.dispatch_engine import DispatchEngine
from app.services.queue_store import QueueStore
from app.services.trip_lifecycle import TripLifecycle


def queue_of(store, capacity_class):
    return [(e.vehicle_id, e.position) for e in store.list_by_class(capacity_class, include_inactive=True)]


class TestAssign:
    @pytest.mark.asyncio
    async def test_exact_fit_preferred(self, dispatch, queued, trips):
        four = queued(4, 1)[0]
        queued(5, 1)
        assignment = await dispatch.assign(4, "Airport T1")

        assert assignment.vehicle.vehicle_id == four
        assert assignment.assigned_class == 4
        assert assignment.requested_class == 4
        assert assignment.upgraded is False
        assert assignment.reason is None
        assert assignment.queue_position == 1
        assert assignment.allocation.rating == "Perfect"

        trip = trips.get(assignment.trip_id)
        assert trip.status == TripStatus.ASSIGNED
        assert trip.vehicle_id == four
        assert trip.capacity_class == 4
        assert trip.passenger_count == 4

    @pytest.mark.asyncio
    async def test_upgrade_to_next_non_empty_class(self, dispatch, queued):
        six = queued(6, 1)[0]
        queued(8, 1)
        assignment = await dispatch.assign(4, "Central Station")

        assert assignment.vehicle.vehicle_id == six
        assert assignment.assigned_class == 6
        assert assignment.upgraded is True
        assert assignment.reason == "No 4-seater available, upgraded to 6-seater"
        assert assignment.allocation.efficiency_percent == 67
        assert assignment.allocation.unused_seats == 2

    @pytest.mark.asyncio
    async def test_fifo_within_class(self, dispatch, queued):
        first, second = queued(5, 2)
        assert (await dispatch.assign(5, "A")).vehicle.vehicle_id == first
        assert (await dispatch.assign(5, "B")).vehicle.vehicle_id == second

    @pytest.mark.asyncio
    async def test_no_vehicle_leaves_no_trace(self, dispatch, queued, trips, store):
        four = queued(4, 1)[0]
        with pytest.raises(NoAvailableVehicle) as exc:
            await dispatch.assign(5, "Tech Park")

        assert exc.value.status_code == 409
        assert exc.value.context["probed_classes"] == [5, 6, 7, 8]
        assert trips.history(TripHistoryFilter()).total_items == 0
        assert trips.audit_trail() == []
        assert queue_of(store, 4) == [(four, 1)]

    @pytest.mark.parametrize("count", [0, -1, 9])
    @pytest.mark.asyncio
    async def test_invalid_counts_fail_before_storage(self, count):
        store, trips, fleet = MagicMock(), MagicMock(), MagicMock()
        engine = DispatchEngine(store, trips, fleet, policy=AllocationPolicy([4, 5, 6, 7, 8]),
                                resilience=fast_resilience())
        with pytest.raises(InvalidPassengerCount):
            await engine.assign(count, "Nowhere")
        store.dequeue_head.assert_not_called()
        trips.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_suspended_vehicle_skipped(self, dispatch, queued, fleet, store):
        first, second = queued(4, 2)
        fleet.set_active(first, False)
        assignment = await dispatch.assign(3, "Market")
        assert assignment.vehicle.vehicle_id == second
        assert queue_of(store, 4) == [(first, 1)]

    @pytest.mark.parametrize("count,expected", [(1, 4), (2, 4), (3, 4), (4, 4), (5, 5), (6, 6), (7, 7), (8, 8)])
    @pytest.mark.asyncio
    async def test_exact_fit_for_every_group_size(self, dispatch, queued, count, expected):
        for capacity_class in (4, 5, 6, 7, 8):
            queued(capacity_class, 1)
        assignment = await dispatch.assign(count, "Stadium")
        assert assignment.assigned_class == expected
        assert assignment.upgraded is False

    @pytest.mark.asyncio
    async def test_single_vehicle_scenario(self, dispatch, queued, store, trips):
        v1 = queued(4, 1)[0]
        assignment = await dispatch.assign(3, "Old Town")
        assert assignment.vehicle.vehicle_id == v1
        assert store.list_by_class(4) == []
        trip = trips.get(assignment.trip_id)
        assert (trip.status, trip.vehicle_id) == (TripStatus.ASSIGNED, v1)

    @pytest.mark.asyncio
    async def test_all_queues_empty(self, dispatch, trips):
        with pytest.raises(NoAvailableVehicle) as exc:
            await dispatch.assign(4, "Airport")
        assert "try again" in exc.value.detail
        assert trips.history(TripHistoryFilter()).total_items == 0

    @pytest.mark.asyncio
    async def test_concurrent_bookings_exceeding_supply(self, store, trips, fleet, queued):
        available = queued(4, 2)
        engine = DispatchEngine(store, trips, fleet, policy=AllocationPolicy([4]),
                                resilience=fast_resilience(), repair_after_dispatch=False)

        results = await asyncio.gather(*(engine.assign(2, f"Group {i}") for i in range(5)),
                                       return_exceptions=True)

        winners = [r.vehicle.vehicle_id for r in results if not isinstance(r, Exception)]
        assert sorted(winners) == sorted(available)
        assert sum(isinstance(r, NoAvailableVehicle) for r in results) == 3

    @pytest.mark.asyncio
    async def test_concurrent_bookings_share_one_vehicle(self, store, trips, fleet, queued):
        only = queued(4, 1)[0]
        engine = DispatchEngine(store, trips, fleet, policy=AllocationPolicy([4]),
                                resilience=fast_resilience(), repair_after_dispatch=False)

        results = await asyncio.gather(*(engine.assign(4, f"Group {i}") for i in range(3)),
                                       return_exceptions=True)

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert winners[0].vehicle.vehicle_id == only
        assert len(losers) == 2
        assert all(isinstance(e, NoAvailableVehicle) for e in losers)
        assert trips.history(TripHistoryFilter()).total_items == 1
        assert store.count_by_class() == {}

    @pytest.mark.asyncio
    async def test_repair_scheduled_after_dispatch(self, store, trips, fleet, queued):
        engine = DispatchEngine(store, trips, fleet, policy=AllocationPolicy([4, 5, 6, 7, 8]),
                                resilience=fast_resilience(), repair_after_dispatch=True)
        _, b, c = queued(4, 3)
        await engine.assign(2, "Airport")
        await engine.drain()
        assert queue_of(store, 4) == [(b, 1), (c, 2)]


class TestCompensation:
    @pytest.mark.asyncio
    async def test_failed_trip_creation_returns_vehicle_to_head(self, store, fleet, queued, session_factory):
        a, b = queued(4, 2)
        original_enqueued_at = store.find_vehicle(a).enqueued_at
        failing_trips = MagicMock()
        failing_trips.create.side_effect = TripStorageError("create trip")
        engine = DispatchEngine(store, failing_trips, fleet, policy=AllocationPolicy([4, 5, 6, 7, 8]),
                                resilience=fast_resilience(), repair_after_dispatch=False)

        with pytest.raises(TripStorageError):
            await engine.assign(4, "Airport")

        assert failing_trips.create.call_count == 1
        assert queue_of(store, 4) == [(a, 1), (b, 2)]
        assert store.find_vehicle(a).enqueued_at == original_enqueued_at
        audit = TripLifecycle(session_factory).audit_trail(entity_id=str(a))
        assert [x.action for x in audit] == ["VEHICLE_REQUEUED"]
        assert audit[0].details["reason"] == "trip creation failed"

    @pytest.mark.asyncio
    async def test_compensation_with_scheduled_repair_leaves_contiguous_queue(self, store, fleet, queued):
        a, b, c = queued(4, 3)
        failing_trips = MagicMock()
        failing_trips.create.side_effect = TripStorageError("create trip")
        engine = DispatchEngine(store, failing_trips, fleet, policy=AllocationPolicy([4, 5, 6, 7, 8]),
                                resilience=fast_resilience(), repair_after_dispatch=True)

        with pytest.raises(TripStorageError):
            await engine.assign(4, "Airport")
        await engine.drain()

        assert queue_of(store, 4) == [(a, 1), (b, 2), (c, 3)]
        assert (await engine.repair_queue(4)).updated == 0

    @pytest.mark.asyncio
    async def test_compensation_failure_is_reported(self, store, fleet, queued):
        a = queued(4, 1)[0]
        failing_trips = MagicMock()
        failing_trips.create.side_effect = TripStorageError("create trip")
        engine = DispatchEngine(store, failing_trips, fleet, policy=AllocationPolicy([4, 5, 6, 7, 8]),
                                resilience=fast_resilience(), repair_after_dispatch=False)

        with patch.object(store, "requeue_at_head", side_effect=QueueStorageError("requeue_at_head")):
            with pytest.raises(CompensationFailed) as exc:
                await engine.assign(4, "Airport")

        assert exc.value.status_code == 500
        assert exc.value.context["vehicle_id"] == a
        assert exc.value.context["original_error"] == "TRIP_STORAGE_ERROR"
        assert isinstance(exc.value.original_error, TripStorageError)

    @pytest.mark.asyncio
    async def test_timeout_before_dequeue_returns_late_vehicle(self, session_factory, trips, fleet, queued):
        class SlowStore(QueueStore):
            def dequeue_head(self, capacity_class):
                time.sleep(0.3)
                return super().dequeue_head(capacity_class)

        store = SlowStore(session_factory)
        a, b = queued(4, 2)
        engine = DispatchEngine(store, trips, fleet, policy=AllocationPolicy([4, 5, 6, 7, 8]),
                                resilience=fast_resilience(), repair_after_dispatch=False)

        with pytest.raises(DispatchTimeout):
            await engine.assign(4, "Airport", timeout=0.05)

        await asyncio.sleep(0.6)
        await engine.drain()
        assert queue_of(store, 4) == [(a, 1), (b, 2)]
        assert trips.history(TripHistoryFilter()).total_items == 0
        audit = trips.audit_trail(action="VEHICLE_REQUEUED")
        assert audit[0].details["reason"] == "caller timed out"

    @pytest.mark.asyncio
    async def test_open_breaker_rejects_bookings(self, fleet, trips):
        store = MagicMock()
        store.dequeue_head.side_effect = QueueStorageError("dequeue_head")
        engine = DispatchEngine(store, trips, fleet, policy=AllocationPolicy([4, 5, 6, 7, 8]),
                                resilience=fast_resilience(max_attempts=1, failure_threshold=2))

        for _ in range(2):
            with pytest.raises(QueueStorageError):
                await engine.assign(4, "Airport")
        with pytest.raises(ServiceUnavailable):
            await engine.assign(4, "Airport")
        assert store.dequeue_head.call_count == 2
        assert engine.breaker_status()["state"] == "open"


class TestQueueOperations:
    @pytest.mark.asyncio
    async def test_enqueue_uses_vehicle_class(self, dispatch, add_vehicle):
        vehicle_id = add_vehicle(7)
        entry = await dispatch.enqueue_vehicle(vehicle_id)
        assert entry.capacity_class == 7
        assert entry.position == 1

    @pytest.mark.asyncio
    async def test_enqueue_rejects_suspended_and_duplicates(self, dispatch, add_vehicle, queued):
        with pytest.raises(VehicleSuspended):
            await dispatch.enqueue_vehicle(add_vehicle(4, is_active=False))
        vehicle_id = queued(4, 1)[0]
        with pytest.raises(VehicleAlreadyQueued):
            await dispatch.enqueue_vehicle(vehicle_id)

    @pytest.mark.asyncio
    async def test_withdraw_closes_gap(self, dispatch, queued, store):
        a, b, c = queued(5, 3)
        result = await dispatch.withdraw_vehicle(5, b)
        assert result == {"removed": True, "updated": 1}
        assert queue_of(store, 5) == [(a, 1), (c, 2)]
        assert await dispatch.withdraw_vehicle(5, b) == {"removed": False, "updated": 0}

    @pytest.mark.asyncio
    async def test_repair_queue_reports_updates(self, dispatch, queued, store):
        a, b, c = queued(4, 3)
        store.remove_by_id(4, a)
        result = await dispatch.repair_queue(4)
        assert result.updated == 2
        assert (await dispatch.repair_queue(4)).updated == 0
        with pytest.raises(InvalidCapacityClass):
            await dispatch.repair_queue(3)

    @pytest.mark.asyncio
    async def test_views_and_counts(self, dispatch, queued):
        queued(4, 2)
        queued(8, 1)
        views = await dispatch.all_queues()
        assert [v.capacity_class for v in views] == [4, 5, 6, 7, 8]
        assert [len(v.vehicles) for v in views] == [2, 0, 0, 0, 1]
        assert await dispatch.queue_counts() == {4: 2, 5: 0, 6: 0, 7: 0, 8: 1}
        assert await dispatch.clear_queue(4) == 2

    @pytest.mark.asyncio
    async def test_register_vehicle_validates_class(self, dispatch):
        body = VehicleCreate(plate_number="DL01AB1234", driver_name="Ravi Kumar",
                             driver_phone="+919900000001", car_model="Toyota Innova", capacity_class=3)
        with pytest.raises(InvalidCapacityClass):
            await dispatch.register_vehicle(body)
        vehicle = await dispatch.register_vehicle(body.model_copy(update={"capacity_class": 7}))
        assert vehicle.capacity_class == 7
        assert (await dispatch.lookup_plate("DL01AB1234")).id == vehicle.id
        assert (await dispatch.toggle_vehicle(vehicle.id)).is_active is False


class TestTripOperations:
    @pytest.mark.asyncio
    async def test_booking_to_completion(self, dispatch, queued):
        vehicle_id = queued(4, 1)[0]
        assignment = await dispatch.assign(2, "Airport")
        await dispatch.advance_trip(assignment.trip_id, TripStatus.DRIVER_EN_ROUTE)
        await dispatch.advance_trip(assignment.trip_id, TripStatus.IN_PROGRESS)
        completion = await dispatch.complete_trip(assignment.trip_id)

        assert completion.vehicle_id == vehicle_id
        assert completion.vehicle_available_for_queue is True
        entry = await dispatch.enqueue_vehicle(vehicle_id)
        assert entry.position == 1
        audit = await dispatch.audit_trail(entity_id=str(assignment.trip_id))
        assert [a.action for a in audit] == ["TRIP_COMPLETED"]

    @pytest.mark.asyncio
    async def test_cancel_assigned_trip(self, dispatch, queued):
        queued(4, 1)
        assignment = await dispatch.assign(4, "Airport")
        cancelled = await dispatch.cancel_trip(assignment.trip_id)
        assert cancelled.status == TripStatus.CANCELLED
        page = await dispatch.trip_history(TripHistoryFilter(status=TripStatus.CANCELLED))
        assert page.total_items == 1
