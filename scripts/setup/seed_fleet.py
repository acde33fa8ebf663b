# scripts/setup/seed_fleet.py
"""
Seed a demo fleet — registers mock taxis and queues them by seater class.
Plates that already exist are skipped, so the script can be re-run.
Usage: python scripts/setup/seed_fleet.py --count 50
"""

import argparse
import random
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from app.database import SessionLocal, create_tables
from app.config import settings
from app.exceptions import VehicleAlreadyRegistered
from app.schemas.vehicle import VehicleCreate
from app.services.fleet_registry import FleetRegistry
from app.services.queue_store import QueueStore

CAR_MODELS = {
    4: ["Maruti Swift Dzire", "Hyundai Aura", "Honda Amaze", "Tata Tigor"],
    5: ["Toyota Etios", "Honda City", "Hyundai Verna"],
    6: ["Maruti Ertiga", "Renault Triber", "Kia Carens"],
    7: ["Toyota Innova", "Mahindra Marazzo", "Toyota Innova Crysta"],
    8: ["Force Traveller", "Mahindra Xylo", "Tata Winger"],
}
FIRST_NAMES = ["Rajesh", "Amit", "Suresh", "Vikram", "Anil", "Ravi", "Manoj", "Sanjay", "Deepak", "Arjun"]
LAST_NAMES = ["Kumar", "Sharma", "Singh", "Patel", "Verma", "Yadav", "Gupta", "Reddy"]
STATE_CODES = ["DL", "MH", "KA", "TN", "UP", "HR"]


def mock_vehicle(rng: random.Random, capacity_class: int) -> VehicleCreate:
    plate = (f"{rng.choice(STATE_CODES)}{rng.randint(1, 99):02d}"
             f"{rng.choice('ABCDEFGHJKLMNPRSTUVWXYZ')}{rng.choice('ABCDEFGHJKLMNPRSTUVWXYZ')}"
             f"{rng.randint(1000, 9999)}")
    return VehicleCreate(
        plate_number=plate,
        driver_name=f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
        driver_phone=f"+91{rng.randint(7000000000, 9999999999)}",
        car_model=rng.choice(CAR_MODELS.get(capacity_class, ["Generic Cab"])),
        capacity_class=capacity_class,
    )


def main():
    parser = argparse.ArgumentParser(description="Seed a demo taxi fleet")
    parser.add_argument("--count", type=int, default=30, help="Vehicles to register")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable fleets")
    parser.add_argument("--no-queue", action="store_true", help="Register only, do not queue")
    args = parser.parse_args()

    create_tables()
    rng = random.Random(args.seed)
    registry = FleetRegistry(SessionLocal)
    store = QueueStore(SessionLocal)

    registered = queued = skipped = 0
    for _ in range(args.count):
        body = mock_vehicle(rng, rng.choice(settings.CAPACITY_CLASSES))
        try:
            vehicle = registry.register(body)
        except VehicleAlreadyRegistered:
            skipped += 1
            continue
        registered += 1
        if args.no_queue:
            continue
        store.enqueue(vehicle.capacity_class, vehicle.id)
        queued += 1

    print(f"✅ Registered {registered} vehicles ({skipped} duplicate plates skipped), queued {queued}")
    for capacity_class, count in sorted(store.count_by_class().items()):
        print(f"   {capacity_class}-seater queue: {count}")


if __name__ == "__main__":
    main()
