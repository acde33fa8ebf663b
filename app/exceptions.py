"""
Dispatch error taxonomy.

Every failure that crosses the engine boundary is a DispatchError subclass.
Raw SQLAlchemy / driver errors are translated into StorageError at the store
boundary and never reach the HTTP layer.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class DispatchError(Exception):
    """Base exception for all dispatch engine errors."""

    retryable = False

    def __init__(self, detail: str, status_code: int = 500, error_code: str = "INTERNAL_ERROR",
                 context: Optional[dict] = None):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(detail)

    def to_dict(self):
        """Convert exception to dictionary for API response."""
        body = {
            "error": self.error_code,
            "detail": self.detail,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }
        if self.context:
            body["context"] = self.context
        return body


# ── Caller errors ─────────────────────────────────────────────────────────────

class InvalidPassengerCount(DispatchError):
    def __init__(self, passenger_count: Any, max_capacity: int):
        super().__init__(
            detail=f"Passenger count must be between 1 and {max_capacity} (got {passenger_count!r})",
            status_code=422,
            error_code="INVALID_PASSENGER_COUNT",
            context={"passenger_count": passenger_count, "max_capacity": max_capacity},
        )


class InvalidCapacityClass(DispatchError):
    def __init__(self, capacity_class: Any, valid_classes):
        super().__init__(
            detail=f"Invalid capacity class {capacity_class!r}; expected one of {list(valid_classes)}",
            status_code=422,
            error_code="INVALID_CAPACITY_CLASS",
        )


# ── Business outcomes ─────────────────────────────────────────────────────────

class NoAvailableVehicle(DispatchError):
    def __init__(self, passenger_count: int, probed_classes):
        super().__init__(
            detail=(f"No suitable taxis available for {passenger_count} passengers. "
                    f"Please wait a few minutes and try again."),
            status_code=409,
            error_code="NO_AVAILABLE_VEHICLE",
            context={"passenger_count": passenger_count, "probed_classes": list(probed_classes)},
        )


class VehicleNotFound(DispatchError):
    def __init__(self, vehicle_id):
        super().__init__(detail=f"Vehicle {vehicle_id} not found", status_code=404,
                         error_code="VEHICLE_NOT_FOUND")


class VehicleAlreadyRegistered(DispatchError):
    def __init__(self, plate_number: str):
        super().__init__(detail=f"Plate {plate_number} already registered", status_code=409,
                         error_code="VEHICLE_ALREADY_REGISTERED")


class VehicleAlreadyQueued(DispatchError):
    def __init__(self, vehicle_id, capacity_class: int):
        super().__init__(
            detail=f"Vehicle {vehicle_id} is already in the {capacity_class}-seater queue",
            status_code=409,
            error_code="VEHICLE_ALREADY_QUEUED",
        )


class VehicleSuspended(DispatchError):
    def __init__(self, vehicle_id):
        super().__init__(detail=f"Vehicle {vehicle_id} is suspended and cannot be queued",
                         status_code=409, error_code="VEHICLE_SUSPENDED")


class TripNotFound(DispatchError):
    def __init__(self, trip_id):
        super().__init__(detail=f"Trip {trip_id} not found", status_code=404,
                         error_code="TRIP_NOT_FOUND")


class IllegalTransition(DispatchError):
    def __init__(self, trip_id, current, requested, reason: Optional[str] = None):
        current = getattr(current, "value", current)
        requested = getattr(requested, "value", requested)
        detail = f"Trip {trip_id} cannot move from {current} to {requested}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail=detail, status_code=409, error_code="ILLEGAL_TRANSITION",
                         context={"current": current, "requested": requested})


class AlreadyTerminal(DispatchError):
    def __init__(self, trip_id, status):
        status = getattr(status, "value", status)
        super().__init__(detail=f"Trip {trip_id} is already {status}", status_code=409,
                         error_code="ALREADY_TERMINAL", context={"status": status})


# ── Infrastructure errors ─────────────────────────────────────────────────────

class StorageError(DispatchError):
    """Transient storage fault. Safe to retry only on read / atomic-conditional paths."""

    retryable = True

    def __init__(self, operation: str, original_error: Optional[Exception] = None,
                 error_code: str = "STORAGE_ERROR"):
        super().__init__(
            detail=f"Storage temporarily unavailable during {operation}. Please retry or contact support.",
            status_code=503,
            error_code=error_code,
        )
        self.operation = operation
        self.original_error = original_error


class QueueStorageError(StorageError):
    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        super().__init__(operation, original_error, error_code="QUEUE_STORAGE_ERROR")


class TripStorageError(StorageError):
    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        super().__init__(operation, original_error, error_code="TRIP_STORAGE_ERROR")


class FleetStorageError(StorageError):
    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        super().__init__(operation, original_error, error_code="FLEET_STORAGE_ERROR")


class ServiceUnavailable(DispatchError):
    retryable = True

    def __init__(self, retry_after: float):
        super().__init__(
            detail="Dispatch is temporarily unavailable. Please try again shortly.",
            status_code=503,
            error_code="SERVICE_UNAVAILABLE",
            context={"retry_after_seconds": round(retry_after, 1)},
        )
        self.retry_after = retry_after


class DispatchTimeout(DispatchError):
    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            detail=(f"{operation} did not finish within {timeout_seconds:g}s. "
                    f"Check your trip status before booking again."),
            status_code=504,
            error_code="TIMEOUT",
            context={"timeout_seconds": timeout_seconds},
        )


class CompensationFailed(DispatchError):
    """A dequeued vehicle could not be put back; it may be neither queued nor assigned."""

    def __init__(self, vehicle_id, capacity_class: int, original_error: Exception,
                 compensation_error: Exception):
        super().__init__(
            detail=(f"Booking failed and vehicle {vehicle_id} could not be returned to the "
                    f"{capacity_class}-seater queue. Operator attention required."),
            status_code=500,
            error_code="COMPENSATION_FAILED",
            context={
                "vehicle_id": vehicle_id,
                "capacity_class": capacity_class,
                "original_error": getattr(original_error, "error_code", type(original_error).__name__),
                "compensation_error": getattr(compensation_error, "error_code",
                                              type(compensation_error).__name__),
            },
        )
        self.original_error = original_error
        self.compensation_error = compensation_error
