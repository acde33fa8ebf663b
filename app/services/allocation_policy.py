"""
Capacity-class allocation rules.

Try the optimum seater first, then move up to larger seaters:
  - 1-4 passengers: 4 → 5 → 6 → 7 → 8
  - 5 passengers:   5 → 6 → 7 → 8
  - 8 passengers:   8 only
Pure functions over the configured class set; no storage access.
"""

from typing import Iterable, List

from app.config import settings
from app.exceptions import InvalidPassengerCount, InvalidCapacityClass
from app.schemas.dispatch import AllocationInfo


class AllocationPolicy:
    def __init__(self, capacity_classes: Iterable[int] = None):
        classes = list(settings.CAPACITY_CLASSES if capacity_classes is None else capacity_classes)
        if not classes:
            raise ValueError("At least one capacity class must be configured")
        if any(isinstance(c, bool) or not isinstance(c, int) or c <= 0 for c in classes):
            raise ValueError(f"Capacity classes must be positive integers: {classes}")
        if len(set(classes)) != len(classes):
            raise ValueError(f"Duplicate capacity classes: {classes}")
        self.capacity_classes = tuple(sorted(classes))

    @property
    def max_capacity(self) -> int:
        return self.capacity_classes[-1]

    def validate_class(self, capacity_class) -> int:
        if capacity_class not in self.capacity_classes or isinstance(capacity_class, bool):
            raise InvalidCapacityClass(capacity_class, self.capacity_classes)
        return capacity_class

    def classes_for(self, passenger_count) -> List[int]:
        """Probe order for a booking: exact-fit class first, then every larger class ascending."""
        if (isinstance(passenger_count, bool) or not isinstance(passenger_count, int)
                or not 1 <= passenger_count <= self.max_capacity):
            raise InvalidPassengerCount(passenger_count, self.max_capacity)
        return [c for c in self.capacity_classes if c >= passenger_count]

    def exact_fit(self, passenger_count) -> int:
        return self.classes_for(passenger_count)[0]

    @staticmethod
    def allocation_info(passenger_count: int, assigned_class: int) -> AllocationInfo:
        efficiency = round(passenger_count / assigned_class * 100)
        if efficiency == 100:
            rating = "Perfect"
        elif efficiency >= 80:
            rating = "Optimal"
        elif efficiency >= 67:   # 2/3 or more of the seats used
            rating = "Good"
        elif efficiency >= 50:
            rating = "Fair"
        else:
            rating = "Wasteful"
        return AllocationInfo(
            efficiency_percent=efficiency,
            unused_seats=assigned_class - passenger_count,
            rating=rating,
        )

    @staticmethod
    def upgrade_reason(requested_class: int, assigned_class: int) -> str:
        return f"No {requested_class}-seater available, upgraded to {assigned_class}-seater"
