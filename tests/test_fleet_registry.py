# tests/test_fleet_registry.py
"""Tests for vehicle registration, lookup and suspension."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError
from app.exceptions import FleetStorageError, VehicleAlreadyRegistered, VehicleNotFound
from app.schemas.vehicle import VehicleCreate
from app.services.fleet_registry import FleetRegistry


def cab(plate="DL01AB1234", capacity_class=4):
    return VehicleCreate(plate_number=plate, driver_name="Ravi Kumar", driver_phone="+919900000001",
                         car_model="Maruti Dzire", capacity_class=capacity_class)


class TestRegistry:
    def test_register_and_lookup(self, fleet):
        vehicle = fleet.register(cab())
        assert vehicle.is_active is True
        assert fleet.get(vehicle.id).plate_number == "DL01AB1234"
        assert fleet.lookup_by_plate("DL01AB1234").id == vehicle.id
        assert fleet.lookup_by_plate("XX00XX0000") is None

    def test_duplicate_plate_rejected(self, fleet):
        fleet.register(cab())
        with pytest.raises(VehicleAlreadyRegistered):
            fleet.register(cab(capacity_class=6))

    def test_list_filters(self, fleet):
        four = fleet.register(cab("DL01AB0001", 4))
        six = fleet.register(cab("DL01AB0002", 6))
        fleet.set_active(six.id, False)
        assert [v.id for v in fleet.list(capacity_class=4)] == [four.id]
        assert [v.id for v in fleet.list(active=False)] == [six.id]

    def test_toggle_active_flips_status(self, fleet):
        vehicle = fleet.register(cab())
        assert fleet.toggle_active(vehicle.id).is_active is False
        assert fleet.toggle_active(vehicle.id).is_active is True

    def test_unknown_vehicle(self, fleet):
        with pytest.raises(VehicleNotFound):
            fleet.toggle_active(404)


class TestStorageFaults:
    def test_driver_errors_become_fleet_storage_errors(self):
        broken = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("database is down")))
        with pytest.raises(FleetStorageError) as exc:
            FleetRegistry(broken).get(1)
        assert exc.value.error_code == "FLEET_STORAGE_ERROR"
        assert exc.value.operation == "vehicle lookup"
        assert exc.value.retryable is True
