from .booking import Interval, committed_quantity, has_interval_overlap, peak_committed_quantity
from .conflicts import AvailabilityResult, ConflictResolver
from .directory import Notifier, UserDirectory
from .errors import (
    BookingError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ReservationStorageError,
    UnauthorizedError,
    UnavailableError,
)
from .inventory import EquipmentInventory
from .lifecycle import ReservationService
from .models import EquipmentRecord, RentalTerms, ReservationRecord, UserRecord, Visibility
from .projector import AvailabilityCalendar, AvailabilityProjector, DayAvailability
from .settings import BookingSettings
from .yaml_store import UnitOfWork, YamlDocumentStore

__all__ = [
    "Interval",
    "committed_quantity",
    "has_interval_overlap",
    "peak_committed_quantity",
    "AvailabilityResult",
    "ConflictResolver",
    "Notifier",
    "UserDirectory",
    "BookingError",
    "ConflictError",
    "ForbiddenError",
    "InvalidStateError",
    "NotFoundError",
    "ReservationStorageError",
    "UnauthorizedError",
    "UnavailableError",
    "EquipmentInventory",
    "ReservationService",
    "EquipmentRecord",
    "RentalTerms",
    "ReservationRecord",
    "UserRecord",
    "Visibility",
    "AvailabilityCalendar",
    "AvailabilityProjector",
    "DayAvailability",
    "BookingSettings",
    "UnitOfWork",
    "YamlDocumentStore",
]
