# tests/conftest.py
"""Shared fixtures: a throwaway SQLite file database per test and seeding helpers."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import itertools
import pytest
from app.database import build_engine, build_session_factory, create_tables
from app.models.vehicle import Vehicle
from app.services.allocation_policy import AllocationPolicy
from app.services.dispatch_engine import DispatchEngine
from app.services.fleet_registry import FleetRegistry
from app.services.queue_store import QueueStore
from app.services.resilience import CircuitBreaker, ResilienceWrapper, RetryPolicy
from app.services.trip_lifecycle import TripLifecycle
from app.utils.clock import utcnow


@pytest.fixture
def db_engine(tmp_path):
    # File-backed so worker threads share one database
    engine = build_engine(f"sqlite:///{tmp_path / 'rank.db'}")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def store(session_factory):
    return QueueStore(session_factory)


@pytest.fixture
def trips(session_factory):
    return TripLifecycle(session_factory)


@pytest.fixture
def fleet(session_factory):
    return FleetRegistry(session_factory)


@pytest.fixture
def add_vehicle(session_factory):
    """Insert a vehicle row directly and return its id."""
    counter = itertools.count(1)

    def _add(capacity_class=4, is_active=True, plate=None):
        n = next(counter)
        now = utcnow()
        vehicle = Vehicle(
            plate_number=plate or f"TEST-{n:04d}",
            driver_name=f"Driver {n}",
            driver_phone=f"+91990000{n:04d}",
            car_model="Test Cab",
            capacity_class=capacity_class,
            is_active=is_active,
            registered_at=now,
            updated_at=now,
        )
        with session_factory() as db:
            db.add(vehicle)
            db.commit()
            db.refresh(vehicle)
        return vehicle.id

    return _add


@pytest.fixture
def queued(add_vehicle, store):
    """Register `count` vehicles of a class and queue them; returns their ids in queue order."""
    def _queue(capacity_class=4, count=1):
        ids = []
        for _ in range(count):
            vehicle_id = add_vehicle(capacity_class)
            store.enqueue(capacity_class, vehicle_id)
            ids.append(vehicle_id)
        return ids

    return _queue


def fast_resilience(max_attempts=3, failure_threshold=5, cooldown_seconds=30.0):
    return ResilienceWrapper(
        retry_policy=RetryPolicy(max_attempts=max_attempts, initial_delay=0.0, max_delay=0.0, jitter_factor=0.0),
        breaker=CircuitBreaker(failure_threshold=failure_threshold, cooldown_seconds=cooldown_seconds),
    )


@pytest.fixture
def dispatch(store, trips, fleet):
    return DispatchEngine(
        store, trips, fleet,
        policy=AllocationPolicy([4, 5, 6, 7, 8]),
        resilience=fast_resilience(),
        default_timeout=5.0,
        repair_after_dispatch=False,
    )
