"""
Append-only audit trail.
Written by trip_lifecycle on terminal transitions and by the queue store
when a dispatched vehicle is returned to the head of its queue. Never updated or deleted.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from app.database import Base


class AuditLogEntry(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(50), nullable=False, index=True)   # TRIP_COMPLETED | TRIP_CANCELLED | ...
    entity_id = Column(String(100), nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    details = Column(Text)                                    # JSON payload

    def __repr__(self):
        return f"<AuditLogEntry {self.id} action={self.action} entity={self.entity_id}>"
