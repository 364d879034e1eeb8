from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from .booking import Interval, peak_committed_quantity
from .errors import ConflictError, InvalidStateError, NotFoundError
from .models import (
    COMMITTED_STATUSES,
    EQUIPMENT_AVAILABLE,
    EQUIPMENT_CATEGORIES,
    EQUIPMENT_RETIRED,
    EQUIPMENT_STATUSES,
    HOLDING_STATUSES,
    EquipmentRecord,
    RentalTerms,
    ReservationRecord,
    Visibility,
)
from .yaml_store import UnitOfWork, YamlDocumentStore


class EquipmentInventory:
    """Owner of total/available quantity and operational status per equipment.

    Mutations take the per-equipment lock themselves; the lock is re-entrant so
    lifecycle code already holding it can pass its unit of work as ``writer``.
    """

    def __init__(self, store: YamlDocumentStore) -> None:
        self.store = store

    def get(self, equipment_id: str) -> EquipmentRecord:
        row = self.store.get("equipment", equipment_id)
        if row is None:
            raise NotFoundError(f"Equipment not found: {equipment_id}")
        return EquipmentRecord.from_dict(row)

    def list_equipment(
        self,
        *,
        category: str | None = None,
        status: str | None = None,
        available_only: bool = False,
        search: str | None = None,
    ) -> list[EquipmentRecord]:
        records = [EquipmentRecord.from_dict(row) for row in self.store.find("equipment")]
        if category:
            records = [record for record in records if record.category == category]
        if status:
            records = [record for record in records if record.status == status]
        if available_only:
            records = [record for record in records if record.is_available]
        if search:
            needle = search.strip().lower()
            records = [record for record in records if needle in record.name.lower()]
        return sorted(records, key=lambda record: record.created_at, reverse=True)

    def create(
        self,
        name: str,
        category: str,
        total_quantity: int,
        *,
        status: str = EQUIPMENT_AVAILABLE,
        description: str = "",
        location: str = "",
        rental_terms: RentalTerms | None = None,
        visibility: Visibility | None = None,
        now: datetime | None = None,
    ) -> EquipmentRecord:
        effective_now = now or datetime.now()
        name = name.strip() if name else ""
        if not name:
            raise InvalidStateError("Equipment name is required.")
        if category not in EQUIPMENT_CATEGORIES:
            raise InvalidStateError(f"Unknown equipment category: {category}")
        _validate_status(status)
        if total_quantity < 1:
            raise InvalidStateError("total_quantity must be at least 1.")

        record = EquipmentRecord(
            equipment_id=str(uuid4()),
            name=name,
            description=description,
            category=category,
            location=location,
            total_quantity=total_quantity,
            available_quantity=total_quantity if status == EQUIPMENT_AVAILABLE else 0,
            status=status,
            rental_terms=rental_terms or RentalTerms(),
            visibility=visibility or Visibility(),
            created_at=effective_now,
            updated_at=effective_now,
        )
        self.store.insert("equipment", record.to_dict())
        self.store.log_event(
            "EQUIPMENT_CREATED",
            {"equipment_id": record.equipment_id, "name": record.name, "total_quantity": total_quantity},
            effective_now,
        )
        return record

    def update(
        self,
        equipment_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        category: str | None = None,
        location: str | None = None,
        total_quantity: int | None = None,
        rental_terms: RentalTerms | None = None,
        visibility: Visibility | None = None,
        now: datetime | None = None,
    ) -> EquipmentRecord:
        effective_now = now or datetime.now()
        with self.store.equipment_lock(equipment_id):
            current = self.get(equipment_id)
            changes: dict[str, Any] = {}
            if name is not None:
                if not name.strip():
                    raise InvalidStateError("Equipment name is required.")
                changes["name"] = name.strip()
            if description is not None:
                changes["description"] = description
            if category is not None:
                if category not in EQUIPMENT_CATEGORIES:
                    raise InvalidStateError(f"Unknown equipment category: {category}")
                changes["category"] = category
            if location is not None:
                changes["location"] = location
            if rental_terms is not None:
                changes["rental_terms"] = rental_terms
            if visibility is not None:
                changes["visibility"] = visibility
            if total_quantity is not None:
                if total_quantity < 1:
                    raise InvalidStateError("total_quantity must be at least 1.")
                committed = [
                    ReservationRecord.from_dict(row)
                    for row in self.store.find(
                        "reservations",
                        lambda row: row.get("equipment_id") == equipment_id and row.get("status") in COMMITTED_STATUSES,
                    )
                ]
                peak = peak_committed_quantity(
                    (Interval(record.start_date, record.end_date), record.quantity) for record in committed
                )
                if total_quantity < peak:
                    raise ConflictError(
                        f"{current.name} has {peak} units committed at once; total_quantity cannot drop to {total_quantity}.",
                        committed,
                        current.available_quantity,
                    )
                changes["total_quantity"] = total_quantity
                # Removed units come out of the free stock; added units wait for reconciliation.
                removed = max(0, current.total_quantity - total_quantity)
                changes["available_quantity"] = max(0, current.available_quantity - removed)

            updated = replace(current, updated_at=effective_now, **changes)
            self.store.replace("equipment", updated.to_dict())
            self.store.log_event(
                "EQUIPMENT_UPDATED",
                {"equipment_id": equipment_id, "fields": sorted(changes)},
                effective_now,
            )
            return updated

    def adjust_available(
        self,
        equipment_id: str,
        delta: int,
        writer: YamlDocumentStore | UnitOfWork | None = None,
        now: datetime | None = None,
    ) -> EquipmentRecord:
        effective_now = now or datetime.now()
        target = writer or self.store
        with self.store.equipment_lock(equipment_id):
            current = self.get(equipment_id)
            new_available = current.available_quantity + delta
            if new_available < 0:
                raise InvalidStateError(
                    f"Not enough units of {current.name}: {current.available_quantity} available, {-delta} requested."
                )
            if new_available > current.total_quantity:
                raise InvalidStateError(
                    f"available_quantity of {current.name} cannot exceed total_quantity ({current.total_quantity})."
                )

            updated = replace(current, available_quantity=new_available, updated_at=effective_now)
            target.replace("equipment", updated.to_dict())
            target.log_event(
                "INVENTORY_ADJUSTED",
                {"equipment_id": equipment_id, "delta": delta, "available_quantity": new_available},
                effective_now,
            )
            return updated

    def recompute_from_active_reservations(
        self,
        equipment_id: str,
        writer: YamlDocumentStore | UnitOfWork | None = None,
        now: datetime | None = None,
    ) -> EquipmentRecord:
        """Reset available_quantity from the reservations currently holding units."""
        effective_now = now or datetime.now()
        target = writer or self.store
        with self.store.equipment_lock(equipment_id):
            current = self.get(equipment_id)
            holding = self.store.find(
                "reservations",
                lambda row: row.get("equipment_id") == equipment_id and row.get("status") in HOLDING_STATUSES,
            )
            held = sum(int(row.get("quantity", 0) or 0) for row in holding)
            if current.status == EQUIPMENT_AVAILABLE:
                new_available = max(0, current.total_quantity - held)
            else:
                new_available = 0

            updated = replace(current, available_quantity=new_available, updated_at=effective_now)
            target.replace("equipment", updated.to_dict())
            target.log_event(
                "INVENTORY_RECONCILED",
                {
                    "equipment_id": equipment_id,
                    "held_quantity": held,
                    "previous_available": current.available_quantity,
                    "available_quantity": new_available,
                },
                effective_now,
            )
            return updated

    def set_status(
        self,
        equipment_id: str,
        status: str,
        writer: YamlDocumentStore | UnitOfWork | None = None,
        now: datetime | None = None,
    ) -> EquipmentRecord:
        _validate_status(status)
        effective_now = now or datetime.now()
        target = writer or self.store
        with self.store.equipment_lock(equipment_id):
            current = self.get(equipment_id)
            available = current.available_quantity
            if status == EQUIPMENT_RETIRED:
                available = 0
            elif status == EQUIPMENT_AVAILABLE:
                available = current.total_quantity

            updated = replace(current, status=status, available_quantity=available, updated_at=effective_now)
            target.replace("equipment", updated.to_dict())
            target.log_event(
                "EQUIPMENT_STATUS_CHANGED",
                {"equipment_id": equipment_id, "from": current.status, "to": status, "available_quantity": available},
                effective_now,
            )
            return updated

    def retire(self, equipment_id: str, now: datetime | None = None) -> EquipmentRecord:
        return self.set_status(equipment_id, EQUIPMENT_RETIRED, now=now)

    def adjust_active_rentals(
        self,
        equipment_id: str,
        delta: int,
        writer: YamlDocumentStore | UnitOfWork | None = None,
        now: datetime | None = None,
    ) -> EquipmentRecord:
        effective_now = now or datetime.now()
        target = writer or self.store
        with self.store.equipment_lock(equipment_id):
            current = self.get(equipment_id)
            stats = replace(current.usage_stats, active_rentals=max(0, current.usage_stats.active_rentals + delta))
            updated = replace(current, usage_stats=stats, updated_at=effective_now)
            target.replace("equipment", updated.to_dict())
            return updated

    def record_return(self, equipment_id: str, writer: YamlDocumentStore | UnitOfWork | None = None, now: datetime | None = None) -> EquipmentRecord:
        effective_now = now or datetime.now()
        target = writer or self.store
        with self.store.equipment_lock(equipment_id):
            current = self.get(equipment_id)
            stats = replace(
                current.usage_stats,
                total_rentals=current.usage_stats.total_rentals + 1,
                active_rentals=max(0, current.usage_stats.active_rentals - 1),
                last_rented=effective_now,
            )
            updated = replace(current, usage_stats=stats, updated_at=effective_now)
            target.replace("equipment", updated.to_dict())
            return updated


def _validate_status(status: str) -> None:
    if status not in EQUIPMENT_STATUSES:
        raise InvalidStateError(f"Unknown equipment status: {status}")
