"""
Queue position integrity repair.

Positions within a capacity class must read 1..n with no gaps or duplicates.
Operator removals leave gaps, racing enqueues can leave duplicates and a
dispatched head leaves the queue starting at 2; repair() closes all of these.
"""

from typing import Dict

from app.services.queue_store import QueueStore
from app.utils.logger import get_logger

logger = get_logger(__name__)


class QueueRepairer:
    def __init__(self, store: QueueStore, capacity_classes):
        self.store = store
        self.capacity_classes = tuple(capacity_classes)

    def repair(self, capacity_class: int) -> int:
        """Renumber one class queue to 1..n and return how many entries changed.

        Order is current position, then enqueue time. Only entries whose
        position differs are written, so a second run reports 0.
        """
        entries = self.store.list_by_class(capacity_class, include_inactive=True)
        changes = {
            entry.id: (entry.position, new_position)
            for new_position, entry in enumerate(entries, start=1)
            if entry.position != new_position
        }
        if not changes:
            return 0

        logger.info(f"[Repair] Fixing {len(changes)} positions in {capacity_class}-seater queue")
        updated = self.store.apply_positions(capacity_class, changes)
        if updated != len(changes):
            logger.warning(f"[Repair] {capacity_class}-seater queue changed during repair "
                           f"({updated}/{len(changes)} applied)")
        return updated

    def repair_all(self) -> Dict[int, int]:
        return {capacity_class: self.repair(capacity_class) for capacity_class in self.capacity_classes}
