"""
FIFO queue table, one logical ordered collection per capacity class.
A row exists only while the vehicle is waiting; dequeue deletes it.
Positions are 1-based within a class. Gaps and duplicates can appear after
operator removals or racing enqueues and are closed by the queue repairer.
"""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, Index
from app.database import Base


class QueueEntry(Base):
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"),
                        unique=True, nullable=False)   # a vehicle waits in one queue at most
    capacity_class = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False)
    enqueued_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_queue_entries_class_position", "capacity_class", "position", "enqueued_at"),
    )

    def __repr__(self):
        return f"<QueueEntry {self.capacity_class}-seater #{self.position} vehicle={self.vehicle_id}>"
