from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any


STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_OVERDUE = "overdue"

RESERVATION_STATUSES = (
    STATUS_PENDING,
    STATUS_APPROVED,
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_OVERDUE,
)
# Statuses counted against total_quantity by the conflict check.
COMMITTED_STATUSES = frozenset({STATUS_APPROVED, STATUS_ACTIVE})
# Statuses that took units out of available_quantity.
HOLDING_STATUSES = frozenset({STATUS_APPROVED, STATUS_ACTIVE, STATUS_OVERDUE})
OPEN_STATUSES = frozenset({STATUS_PENDING, STATUS_APPROVED, STATUS_ACTIVE})
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})

EQUIPMENT_AVAILABLE = "available"
EQUIPMENT_MAINTENANCE = "maintenance"
EQUIPMENT_RETIRED = "retired"
EQUIPMENT_STATUSES = (EQUIPMENT_AVAILABLE, EQUIPMENT_MAINTENANCE, EQUIPMENT_RETIRED)

EQUIPMENT_CATEGORIES = (
    "Computers",
    "Audio/Video",
    "Office Equipment",
    "Tools",
    "Sports",
    "Laboratory",
    "Medical",
    "Photography",
    "Gaming",
    "Kitchen",
    "Cleaning",
    "Safety",
    "Other",
)

ROLE_USER = "user"
ROLE_SUPERVISOR = "supervisor"
ROLE_ADMIN = "admin"
ROLE_RANK = {ROLE_USER: 0, ROLE_SUPERVISOR: 1, ROLE_ADMIN: 2}

USER_STAT_FIELDS = (
    "total_reservations",
    "active_reservations",
    "completed_reservations",
    "cancelled_reservations",
)


def format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat(timespec="seconds")


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class RentalTerms:
    hourly_rate: float = 0.0
    daily_rate: float = 0.0
    max_rental_duration_days: int = 30
    requires_approval: bool = True
    requires_training: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "hourly_rate": self.hourly_rate,
            "daily_rate": self.daily_rate,
            "max_rental_duration_days": self.max_rental_duration_days,
            "requires_approval": self.requires_approval,
            "requires_training": self.requires_training,
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "RentalTerms":
        data = data or {}
        return RentalTerms(
            hourly_rate=float(data.get("hourly_rate", 0.0) or 0.0),
            daily_rate=float(data.get("daily_rate", 0.0) or 0.0),
            max_rental_duration_days=int(data.get("max_rental_duration_days", 30) or 30),
            requires_approval=bool(data.get("requires_approval", True)),
            requires_training=bool(data.get("requires_training", False)),
        )


@dataclass(frozen=True)
class Visibility:
    restricted_to_departments: tuple[str, ...] = ()
    minimum_user_role: str = ROLE_USER

    def allows(self, user: "UserRecord") -> bool:
        if self.restricted_to_departments and user.role != ROLE_ADMIN:
            if user.department not in self.restricted_to_departments:
                return False
        return ROLE_RANK.get(user.role, 0) >= ROLE_RANK.get(self.minimum_user_role, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "restricted_to_departments": list(self.restricted_to_departments),
            "minimum_user_role": self.minimum_user_role,
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "Visibility":
        data = data or {}
        return Visibility(
            restricted_to_departments=tuple(str(item) for item in data.get("restricted_to_departments") or []),
            minimum_user_role=str(data.get("minimum_user_role") or ROLE_USER),
        )


@dataclass(frozen=True)
class UsageStats:
    total_rentals: int = 0
    active_rentals: int = 0
    last_rented: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rentals": self.total_rentals,
            "active_rentals": self.active_rentals,
            "last_rented": format_datetime(self.last_rented),
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "UsageStats":
        data = data or {}
        return UsageStats(
            total_rentals=int(data.get("total_rentals", 0) or 0),
            active_rentals=int(data.get("active_rentals", 0) or 0),
            last_rented=parse_datetime(data.get("last_rented")),
        )


@dataclass(frozen=True)
class EquipmentRecord:
    equipment_id: str
    name: str
    category: str
    total_quantity: int
    available_quantity: int
    status: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    location: str = ""
    rental_terms: RentalTerms = field(default_factory=RentalTerms)
    visibility: Visibility = field(default_factory=Visibility)
    usage_stats: UsageStats = field(default_factory=UsageStats)

    @property
    def is_available(self) -> bool:
        return self.status == EQUIPMENT_AVAILABLE and self.available_quantity > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "equipment_id": self.equipment_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "location": self.location,
            "total_quantity": self.total_quantity,
            "available_quantity": self.available_quantity,
            "status": self.status,
            "rental_terms": self.rental_terms.to_dict(),
            "visibility": self.visibility.to_dict(),
            "usage_stats": self.usage_stats.to_dict(),
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "EquipmentRecord":
        return EquipmentRecord(
            equipment_id=str(data["equipment_id"]),
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            category=str(data.get("category") or "Other"),
            location=str(data.get("location") or ""),
            total_quantity=int(data["total_quantity"]),
            available_quantity=int(data.get("available_quantity", 0) or 0),
            status=str(data.get("status") or EQUIPMENT_AVAILABLE),
            rental_terms=RentalTerms.from_dict(data.get("rental_terms")),
            visibility=Visibility.from_dict(data.get("visibility")),
            usage_stats=UsageStats.from_dict(data.get("usage_stats")),
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data["updated_at"]),
        )


@dataclass(frozen=True)
class Rating:
    score: int
    rated_by: str
    rated_at: datetime
    comment: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "comment": self.comment,
            "rated_by": self.rated_by,
            "rated_at": format_datetime(self.rated_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "Rating | None":
        if not data:
            return None
        return Rating(
            score=int(data["score"]),
            comment=str(data.get("comment") or ""),
            rated_by=str(data["rated_by"]),
            rated_at=parse_datetime(data["rated_at"]),
        )


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: str
    user_id: str
    equipment_id: str
    start_date: datetime
    end_date: datetime
    quantity: int
    status: str
    created_at: datetime
    updated_at: datetime
    purpose: str = ""
    notes: str = ""
    approved_by: str | None = None
    approved_at: datetime | None = None
    approval_notes: str = ""
    rejected_by: str | None = None
    rejection_reason: str = ""
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str = ""
    estimated_cost: float = 0.0
    currency: str = "EUR"
    actual_start_date: datetime | None = None
    actual_end_date: datetime | None = None
    condition_notes: str = ""
    user_rating: Rating | None = None
    equipment_rating: Rating | None = None

    @property
    def duration_days(self) -> int:
        return int((self.end_date - self.start_date) // timedelta(days=1)) + 1

    @property
    def holds_inventory(self) -> bool:
        return self.status in HOLDING_STATUSES

    def is_overdue(self, now: datetime) -> bool:
        return self.status in (STATUS_ACTIVE, STATUS_OVERDUE) and now > self.end_date

    def effective_status(self, now: datetime) -> str:
        """Stored status, with active reservations past their end projected as overdue."""
        if self.status == STATUS_ACTIVE and now > self.end_date:
            return STATUS_OVERDUE
        return self.status

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "reservation_id": self.reservation_id,
            "user_id": self.user_id,
            "equipment_id": self.equipment_id,
            "start_date": format_datetime(self.start_date),
            "end_date": format_datetime(self.end_date),
            "quantity": self.quantity,
            "status": self.status,
            "purpose": self.purpose,
            "notes": self.notes,
            "approval": {
                "approved_by": self.approved_by,
                "approved_at": format_datetime(self.approved_at),
                "approval_notes": self.approval_notes,
                "rejected_by": self.rejected_by,
                "rejection_reason": self.rejection_reason,
            },
            "cancellation": {
                "cancelled_by": self.cancelled_by,
                "cancelled_at": format_datetime(self.cancelled_at),
                "reason": self.cancellation_reason,
            },
            "payment": {
                "estimated_cost": self.estimated_cost,
                "currency": self.currency,
            },
            "usage_tracking": {
                "actual_start_date": format_datetime(self.actual_start_date),
                "actual_end_date": format_datetime(self.actual_end_date),
                "condition_notes": self.condition_notes,
            },
            "ratings": {
                "user": self.user_rating.to_dict() if self.user_rating else None,
                "equipment": self.equipment_rating.to_dict() if self.equipment_rating else None,
            },
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }
        if now is not None:
            payload["effective_status"] = self.effective_status(now)
            payload["is_overdue"] = self.is_overdue(now)
            payload["duration_days"] = self.duration_days
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        approval = data.get("approval") or {}
        cancellation = data.get("cancellation") or {}
        payment = data.get("payment") or {}
        usage = data.get("usage_tracking") or {}
        ratings = data.get("ratings") or {}
        return ReservationRecord(
            reservation_id=str(data["reservation_id"]),
            user_id=str(data["user_id"]),
            equipment_id=str(data["equipment_id"]),
            start_date=parse_datetime(data["start_date"]),
            end_date=parse_datetime(data["end_date"]),
            quantity=int(data["quantity"]),
            status=str(data["status"]),
            purpose=str(data.get("purpose") or ""),
            notes=str(data.get("notes") or ""),
            approved_by=approval.get("approved_by"),
            approved_at=parse_datetime(approval.get("approved_at")),
            approval_notes=str(approval.get("approval_notes") or ""),
            rejected_by=approval.get("rejected_by"),
            rejection_reason=str(approval.get("rejection_reason") or ""),
            cancelled_by=cancellation.get("cancelled_by"),
            cancelled_at=parse_datetime(cancellation.get("cancelled_at")),
            cancellation_reason=str(cancellation.get("reason") or ""),
            estimated_cost=float(payment.get("estimated_cost", 0.0) or 0.0),
            currency=str(payment.get("currency") or "EUR"),
            actual_start_date=parse_datetime(usage.get("actual_start_date")),
            actual_end_date=parse_datetime(usage.get("actual_end_date")),
            condition_notes=str(usage.get("condition_notes") or ""),
            user_rating=Rating.from_dict(ratings.get("user")),
            equipment_rating=Rating.from_dict(ratings.get("equipment")),
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data["updated_at"]),
        )


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    name: str
    role: str = ROLE_USER
    department: str = "General"
    email: str = ""
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def is_staff(self) -> bool:
        return self.role in (ROLE_SUPERVISOR, ROLE_ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def stat(self, name: str) -> int:
        return int(self.stats.get(name, 0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "department": self.department,
            "stats": {name: self.stat(name) for name in USER_STAT_FIELDS},
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "UserRecord":
        stats = data.get("stats") or {}
        return UserRecord(
            user_id=str(data["user_id"]),
            name=str(data.get("name") or ""),
            email=str(data.get("email") or ""),
            role=str(data.get("role") or ROLE_USER).lower(),
            department=str(data.get("department") or "General"),
            stats={str(key): int(value or 0) for key, value in stats.items()},
        )
