from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from .booking import has_interval_overlap
from .errors import InvalidStateError, UnavailableError
from .inventory import EquipmentInventory
from .models import COMMITTED_STATUSES, EQUIPMENT_AVAILABLE, ReservationRecord, format_datetime
from .yaml_store import YamlDocumentStore


@dataclass(frozen=True)
class AvailabilityResult:
    equipment_id: str
    start_date: datetime
    end_date: datetime
    requested_quantity: int
    total_quantity: int
    reserved_quantity: int
    conflicting_reservations: tuple[ReservationRecord, ...]

    @property
    def available(self) -> bool:
        return self.reserved_quantity + self.requested_quantity <= self.total_quantity

    @property
    def available_quantity(self) -> int:
        return self.total_quantity - self.reserved_quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "equipment_id": self.equipment_id,
            "start_date": format_datetime(self.start_date),
            "end_date": format_datetime(self.end_date),
            "requested_quantity": self.requested_quantity,
            "total_quantity": self.total_quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "available": self.available,
            "conflicting_reservations": [row.to_dict() for row in self.conflicting_reservations],
        }


class ConflictResolver:
    def __init__(self, store: YamlDocumentStore, inventory: EquipmentInventory) -> None:
        self.store = store
        self.inventory = inventory

    def reservations_for(self, equipment_id: str, statuses: Iterable[str] = COMMITTED_STATUSES) -> list[ReservationRecord]:
        wanted = set(statuses)
        rows = self.store.find(
            "reservations",
            lambda row: row.get("equipment_id") == equipment_id and row.get("status") in wanted,
        )
        return [ReservationRecord.from_dict(row) for row in rows]

    def overlapping_reservations(
        self,
        equipment_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: str | None = None,
    ) -> list[ReservationRecord]:
        overlapping = [
            record
            for record in self.reservations_for(equipment_id)
            if record.reservation_id != exclude_reservation_id
            and has_interval_overlap(start, end, record.start_date, record.end_date)
        ]
        overlapping.sort(key=lambda record: (record.start_date, record.created_at))
        return overlapping

    def check_availability(
        self,
        equipment_id: str,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        exclude_reservation_id: str | None = None,
    ) -> AvailabilityResult:
        """Report whether ``quantity`` units fit over [start, end].

        Approved and active reservations overlapping the range (closed
        interval) count as committed. Pending requests never block.
        """
        if start >= end:
            raise InvalidStateError("start_date must be earlier than end_date.")
        if quantity < 1:
            raise InvalidStateError("quantity must be at least 1.")

        equipment = self.inventory.get(equipment_id)
        if equipment.status != EQUIPMENT_AVAILABLE:
            raise UnavailableError(f"Equipment {equipment.name} is not available ({equipment.status}).")

        overlapping = self.overlapping_reservations(equipment_id, start, end, exclude_reservation_id)
        reserved = sum(record.quantity for record in overlapping)
        return AvailabilityResult(
            equipment_id=equipment_id,
            start_date=start,
            end_date=end,
            requested_quantity=quantity,
            total_quantity=equipment.total_quantity,
            reserved_quantity=reserved,
            conflicting_reservations=tuple(overlapping),
        )
