from __future__ import annotations

from typing import Any


class BookingError(ValueError):
    """Base class for guard failures raised before any write happens."""

    error_code = "BadRequest"
    status_code = 400

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "message": str(self), "error": self.error_code}


class NotFoundError(BookingError):
    error_code = "NotFound"
    status_code = 404


class UnauthorizedError(BookingError):
    error_code = "Unauthorized"
    status_code = 401


class ForbiddenError(BookingError):
    error_code = "Forbidden"
    status_code = 403


class InvalidStateError(BookingError):
    error_code = "InvalidState"
    status_code = 400


class UnavailableError(InvalidStateError):
    error_code = "Unavailable"


class ConflictError(BookingError):
    error_code = "Conflict"
    status_code = 409

    def __init__(self, message: str, conflicting_reservations: list[Any] | None = None, available_quantity: int | None = None) -> None:
        super().__init__(message)
        self.conflicting_reservations = list(conflicting_reservations or [])
        self.available_quantity = available_quantity

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["conflicting_reservations"] = [
            row.to_dict() if hasattr(row, "to_dict") else row for row in self.conflicting_reservations
        ]
        if self.available_quantity is not None:
            payload["available_quantity"] = self.available_quantity
        return payload


class ReservationStorageError(RuntimeError):
    pass
