# Taxi Rank Dispatch: Database Models
# Import all models here for SQLAlchemy discovery

from app.models.vehicle import Vehicle                 # noqa
from app.models.queue_entry import QueueEntry          # noqa
from app.models.trip import Trip, TripStatus           # noqa
from app.models.audit_log import AuditLogEntry         # noqa
