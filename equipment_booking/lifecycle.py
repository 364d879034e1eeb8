from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4
import math

from .conflicts import AvailabilityResult, ConflictResolver
from .directory import Notifier, UserDirectory
from .errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from .inventory import EquipmentInventory
from .models import (
    EQUIPMENT_AVAILABLE,
    OPEN_STATUSES,
    ROLE_SUPERVISOR,
    STATUS_ACTIVE,
    STATUS_APPROVED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_OVERDUE,
    STATUS_PENDING,
    TERMINAL_STATUSES,
    EquipmentRecord,
    Rating,
    RentalTerms,
    ReservationRecord,
    UserRecord,
    format_datetime,
)
from .settings import BookingSettings
from .yaml_store import YamlDocumentStore


class ReservationService:
    """Reservation state machine.

    Every transition that touches committed quantity runs with the equipment
    lock held from the first guard to the last write, and inside one unit of
    work so a failed write leaves no partial state behind.
    """

    def __init__(
        self,
        store: YamlDocumentStore,
        settings: BookingSettings | None = None,
        *,
        inventory: EquipmentInventory | None = None,
        resolver: ConflictResolver | None = None,
        users: UserDirectory | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or BookingSettings(data_dir=store.base_dir)
        self.inventory = inventory or EquipmentInventory(store)
        self.resolver = resolver or ConflictResolver(store, self.inventory)
        self.users = users or UserDirectory(store)
        self.notifier = notifier or Notifier(store)

    def get(self, reservation_id: str) -> ReservationRecord:
        row = self.store.get("reservations", reservation_id)
        if row is None:
            raise NotFoundError(f"Reservation not found: {reservation_id}")
        return ReservationRecord.from_dict(row)

    def get_for(self, actor: UserRecord, reservation_id: str) -> ReservationRecord:
        record = self.get(reservation_id)
        if record.user_id != actor.user_id:
            require_staff(actor, "view this reservation")
            _require_department(actor, self.users.get(record.user_id))
        return record

    def list_for_user(self, user_id: str) -> list[ReservationRecord]:
        rows = self.store.find("reservations", lambda row: row.get("user_id") == user_id)
        records = [ReservationRecord.from_dict(row) for row in rows]
        return sorted(records, key=lambda record: record.created_at, reverse=True)

    def list_manageable(self, actor: UserRecord, status: str | None = None) -> list[ReservationRecord]:
        require_staff(actor, "manage reservations")
        records = [ReservationRecord.from_dict(row) for row in self.store.find("reservations")]
        if actor.role == ROLE_SUPERVISOR:
            department_members = {
                row["user_id"] for row in self.store.find("users", lambda row: row.get("department") == actor.department)
            }
            records = [record for record in records if record.user_id in department_members]
        if status:
            records = [record for record in records if record.status == status]
        return sorted(records, key=lambda record: record.created_at, reverse=True)

    def count_open(self, user_id: str) -> int:
        return len(
            self.store.find(
                "reservations",
                lambda row: row.get("user_id") == user_id and row.get("status") in OPEN_STATUSES,
            )
        )

    def check_availability(
        self,
        equipment_id: str,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        exclude_reservation_id: str | None = None,
    ) -> AvailabilityResult:
        return self.resolver.check_availability(equipment_id, start, end, quantity, exclude_reservation_id)

    def create(
        self,
        actor: UserRecord,
        equipment_id: str,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        purpose: str = "",
        notes: str = "",
        now: datetime | None = None,
    ) -> ReservationRecord:
        effective_now = now or datetime.now()
        _validate_schedule(start, end, quantity, effective_now)

        with self.store.equipment_lock(equipment_id):
            equipment = self.inventory.get(equipment_id)
            if not equipment.visibility.allows(actor):
                raise ForbiddenError(f"You are not allowed to reserve {equipment.name}.")
            _validate_duration(equipment, start, end)

            open_count = self.count_open(actor.user_id)
            limit = self.settings.max_open_reservations_per_user
            if open_count >= limit:
                raise InvalidStateError(f"Reservation limit reached: {open_count} open reservations (maximum {limit}).")

            self._ensure_fits(equipment, start, end, quantity)

            auto_approved = not equipment.rental_terms.requires_approval
            record = ReservationRecord(
                reservation_id=str(uuid4()),
                user_id=actor.user_id,
                equipment_id=equipment_id,
                start_date=start,
                end_date=end,
                quantity=quantity,
                status=STATUS_APPROVED if auto_approved else STATUS_PENDING,
                purpose=purpose.strip(),
                notes=notes.strip(),
                approved_at=effective_now if auto_approved else None,
                approval_notes="auto-approved" if auto_approved else "",
                estimated_cost=estimate_cost(equipment.rental_terms, start, end, quantity),
                currency=self.settings.currency,
                created_at=effective_now,
                updated_at=effective_now,
            )

            with self.store.unit_of_work() as work:
                work.insert("reservations", record.to_dict())
                self.users.increment_stat(actor.user_id, "total_reservations", 1, writer=work)
                if auto_approved:
                    self.inventory.adjust_available(equipment_id, -quantity, writer=work, now=effective_now)
                    self.users.increment_stat(actor.user_id, "active_reservations", 1, writer=work)
                    self.notifier.notify(
                        actor.user_id,
                        "reservation_approved",
                        _notification_payload(record, equipment),
                        writer=work,
                        now=effective_now,
                    )
                else:
                    self.notifier.notify(
                        actor.user_id,
                        "reservation_created",
                        _notification_payload(record, equipment),
                        writer=work,
                        now=effective_now,
                    )
                    for approver in self.users.approvers_for(actor.department):
                        if approver.user_id == actor.user_id:
                            continue
                        self.notifier.notify(
                            approver.user_id,
                            "reservation_pending_approval",
                            _notification_payload(record, equipment),
                            writer=work,
                            now=effective_now,
                        )
                work.log_event(
                    "RESERVATION_CREATED",
                    {**_event_payload(record), "auto_approved": auto_approved},
                    effective_now,
                )
            return record

    def approve(self, actor: UserRecord, reservation_id: str, notes: str = "", now: datetime | None = None) -> ReservationRecord:
        effective_now = now or datetime.now()
        require_staff(actor, "approve this reservation")
        equipment_id = self.get(reservation_id).equipment_id

        with self.store.equipment_lock(equipment_id):
            current = self.get(reservation_id)
            _require_department(actor, self.users.get(current.user_id))
            if current.status != STATUS_PENDING:
                raise InvalidStateError(f"Only pending reservations can be approved (current status: {current.status}).")

            equipment = self.inventory.get(equipment_id)
            self._ensure_fits(equipment, current.start_date, current.end_date, current.quantity, exclude=reservation_id)

            updated = replace(
                current,
                status=STATUS_APPROVED,
                approved_by=actor.user_id,
                approved_at=effective_now,
                approval_notes=notes.strip(),
                updated_at=effective_now,
            )
            with self.store.unit_of_work() as work:
                work.replace("reservations", updated.to_dict())
                self.inventory.adjust_available(equipment_id, -current.quantity, writer=work, now=effective_now)
                self.users.increment_stat(current.user_id, "active_reservations", 1, writer=work)
                self.notifier.notify(
                    current.user_id,
                    "reservation_approved",
                    _notification_payload(updated, equipment),
                    writer=work,
                    now=effective_now,
                )
                work.log_event("RESERVATION_APPROVED", {**_event_payload(updated), "approved_by": actor.user_id}, effective_now)
            return updated

    def reject(
        self,
        actor: UserRecord,
        reservation_id: str,
        reason: str = "Request rejected",
        now: datetime | None = None,
    ) -> ReservationRecord:
        effective_now = now or datetime.now()
        require_staff(actor, "reject this reservation")
        equipment_id = self.get(reservation_id).equipment_id
        reason = reason.strip() or "Request rejected"

        with self.store.equipment_lock(equipment_id):
            current = self.get(reservation_id)
            _require_department(actor, self.users.get(current.user_id))
            if current.status != STATUS_PENDING:
                raise InvalidStateError(f"Only pending reservations can be rejected (current status: {current.status}).")

            updated = replace(
                current,
                status=STATUS_CANCELLED,
                rejected_by=actor.user_id,
                rejection_reason=reason,
                cancelled_by=actor.user_id,
                cancelled_at=effective_now,
                cancellation_reason=reason,
                updated_at=effective_now,
            )
            with self.store.unit_of_work() as work:
                work.replace("reservations", updated.to_dict())
                self.notifier.notify(
                    current.user_id,
                    "reservation_rejected",
                    {**_notification_payload(updated, self._equipment_or_none(equipment_id)), "reason": reason},
                    writer=work,
                    now=effective_now,
                )
                work.log_event(
                    "RESERVATION_REJECTED",
                    {**_event_payload(updated), "rejected_by": actor.user_id, "reason": reason},
                    effective_now,
                )
            return updated

    def cancel(self, actor: UserRecord, reservation_id: str, reason: str = "", now: datetime | None = None) -> ReservationRecord:
        effective_now = now or datetime.now()
        equipment_id = self.get(reservation_id).equipment_id
        reason = reason.strip() or "Cancelled"

        with self.store.equipment_lock(equipment_id):
            current = self.get(reservation_id)
            is_owner = current.user_id == actor.user_id
            if not is_owner:
                require_staff(actor, "cancel this reservation")
                _require_department(actor, self.users.get(current.user_id))

            if current.status in TERMINAL_STATUSES:
                raise InvalidStateError(f"Reservation is already {current.status}.")
            if current.status == STATUS_OVERDUE:
                raise InvalidStateError("Overdue reservations must be returned, not cancelled.")
            if current.status == STATUS_ACTIVE and effective_now >= current.start_date and not actor.is_staff:
                raise ForbiddenError("Active reservations that have started can only be cancelled by a supervisor or admin.")

            updated = replace(
                current,
                status=STATUS_CANCELLED,
                cancelled_by=actor.user_id,
                cancelled_at=effective_now,
                cancellation_reason=reason,
                updated_at=effective_now,
            )
            with self.store.unit_of_work() as work:
                work.replace("reservations", updated.to_dict())
                if current.holds_inventory:
                    equipment = self.inventory.get(equipment_id)
                    fits = equipment.available_quantity + current.quantity <= equipment.total_quantity
                    if equipment.status == EQUIPMENT_AVAILABLE and fits:
                        self.inventory.adjust_available(equipment_id, current.quantity, writer=work, now=effective_now)
                    else:
                        # Counter was reset by a status change; rebuild it from what is still held.
                        self.inventory.recompute_from_active_reservations(equipment_id, writer=work, now=effective_now)
                    self.users.increment_stat(current.user_id, "cancelled_reservations", 1, writer=work)
                    self.users.increment_stat(current.user_id, "active_reservations", -1, writer=work)
                    if current.status == STATUS_ACTIVE:
                        self.inventory.adjust_active_rentals(equipment_id, -1, writer=work, now=effective_now)
                self.notifier.notify(
                    current.user_id,
                    "reservation_cancelled",
                    {**_notification_payload(updated, self._equipment_or_none(equipment_id)), "reason": reason},
                    writer=work,
                    now=effective_now,
                )
                work.log_event(
                    "RESERVATION_CANCELLED",
                    {
                        **_event_payload(updated),
                        "previous_status": current.status,
                        "cancelled_by": actor.user_id,
                        "reason": reason,
                    },
                    effective_now,
                )
            return updated

    def update(
        self,
        actor: UserRecord,
        reservation_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        quantity: int | None = None,
        purpose: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> ReservationRecord:
        effective_now = now or datetime.now()
        equipment_id = self.get(reservation_id).equipment_id

        with self.store.equipment_lock(equipment_id):
            current = self.get(reservation_id)
            if current.user_id != actor.user_id and not actor.is_admin:
                raise ForbiddenError("Only the owner or an admin can modify this reservation.")
            if current.status in TERMINAL_STATUSES:
                raise InvalidStateError(f"Reservation is already {current.status}.")

            new_start = start or current.start_date
            new_end = end or current.end_date
            new_quantity = current.quantity if quantity is None else quantity
            schedule_changed = (
                new_start != current.start_date or new_end != current.end_date or new_quantity != current.quantity
            )
            if schedule_changed and current.status != STATUS_PENDING:
                raise InvalidStateError(
                    f"Dates and quantity cannot change once a reservation is {current.status}."
                )

            changes: dict[str, Any] = {}
            if schedule_changed:
                _validate_schedule(new_start, new_end, new_quantity, effective_now)
                equipment = self.inventory.get(equipment_id)
                _validate_duration(equipment, new_start, new_end)
                self._ensure_fits(equipment, new_start, new_end, new_quantity, exclude=reservation_id)
                changes.update(
                    start_date=new_start,
                    end_date=new_end,
                    quantity=new_quantity,
                    estimated_cost=estimate_cost(equipment.rental_terms, new_start, new_end, new_quantity),
                )
            if purpose is not None:
                changes["purpose"] = purpose.strip()
            if notes is not None:
                changes["notes"] = notes.strip()
            if not changes:
                return current

            updated = replace(current, updated_at=effective_now, **changes)
            with self.store.unit_of_work() as work:
                work.replace("reservations", updated.to_dict())
                work.log_event(
                    "RESERVATION_UPDATED",
                    {**_event_payload(updated), "fields": sorted(changes)},
                    effective_now,
                )
            return updated

    def pickup(self, actor: UserRecord, reservation_id: str, now: datetime | None = None) -> ReservationRecord:
        effective_now = now or datetime.now()
        equipment_id = self.get(reservation_id).equipment_id

        with self.store.equipment_lock(equipment_id):
            current = self.get(reservation_id)
            self._require_owner_or_manager(actor, current, "pick up")
            if current.status != STATUS_APPROVED:
                raise InvalidStateError(f"Only approved reservations can be picked up (current status: {current.status}).")
            if effective_now < current.start_date:
                raise InvalidStateError("Equipment cannot be picked up before the reservation starts.")

            updated = replace(current, status=STATUS_ACTIVE, actual_start_date=effective_now, updated_at=effective_now)
            with self.store.unit_of_work() as work:
                work.replace("reservations", updated.to_dict())
                self.inventory.adjust_active_rentals(equipment_id, 1, writer=work, now=effective_now)
                work.log_event("RESERVATION_PICKED_UP", _event_payload(updated), effective_now)
            return updated

    def complete(
        self,
        actor: UserRecord,
        reservation_id: str,
        condition_notes: str = "",
        now: datetime | None = None,
    ) -> ReservationRecord:
        effective_now = now or datetime.now()
        equipment_id = self.get(reservation_id).equipment_id

        with self.store.equipment_lock(equipment_id):
            current = self.get(reservation_id)
            self._require_owner_or_manager(actor, current, "return")
            if current.status not in (STATUS_ACTIVE, STATUS_OVERDUE):
                raise InvalidStateError(f"Only active reservations can be returned (current status: {current.status}).")

            updated = replace(
                current,
                status=STATUS_COMPLETED,
                actual_end_date=effective_now,
                condition_notes=condition_notes.strip(),
                updated_at=effective_now,
            )
            with self.store.unit_of_work() as work:
                work.replace("reservations", updated.to_dict())
                self.inventory.recompute_from_active_reservations(equipment_id, writer=work, now=effective_now)
                self.inventory.record_return(equipment_id, writer=work, now=effective_now)
                self.users.increment_stat(current.user_id, "completed_reservations", 1, writer=work)
                self.users.increment_stat(current.user_id, "active_reservations", -1, writer=work)
                self.notifier.notify(
                    current.user_id,
                    "reservation_completed",
                    _notification_payload(updated, self._equipment_or_none(equipment_id)),
                    writer=work,
                    now=effective_now,
                )
                work.log_event(
                    "RESERVATION_COMPLETED",
                    {**_event_payload(updated), "late": effective_now > current.end_date},
                    effective_now,
                )
            return updated

    def mark_overdue(self, now: datetime | None = None) -> list[ReservationRecord]:
        """Persist the overdue projection for active reservations past their end date."""
        effective_now = now or datetime.now()
        candidates = [
            ReservationRecord.from_dict(row)
            for row in self.store.find("reservations", lambda row: row.get("status") == STATUS_ACTIVE)
        ]

        marked: list[ReservationRecord] = []
        for candidate in candidates:
            if not candidate.is_overdue(effective_now):
                continue
            with self.store.equipment_lock(candidate.equipment_id):
                current = self.get(candidate.reservation_id)
                if current.status != STATUS_ACTIVE or not current.is_overdue(effective_now):
                    continue
                updated = replace(current, status=STATUS_OVERDUE, updated_at=effective_now)
                with self.store.unit_of_work() as work:
                    work.replace("reservations", updated.to_dict())
                    self.notifier.notify(
                        current.user_id,
                        "reservation_overdue",
                        _notification_payload(updated, self._equipment_or_none(current.equipment_id)),
                        writer=work,
                        now=effective_now,
                    )
                    work.log_event("RESERVATION_MARKED_OVERDUE", _event_payload(updated), effective_now)
                marked.append(updated)
        return marked

    def rate(
        self,
        actor: UserRecord,
        reservation_id: str,
        score: int,
        comment: str = "",
        now: datetime | None = None,
    ) -> ReservationRecord:
        effective_now = now or datetime.now()
        if not 1 <= score <= 5:
            raise InvalidStateError("Rating score must be between 1 and 5.")

        current = self.get(reservation_id)
        if current.status != STATUS_COMPLETED:
            raise InvalidStateError("Only completed reservations can be rated.")

        rating = Rating(score=score, comment=comment.strip(), rated_by=actor.user_id, rated_at=effective_now)
        if current.user_id == actor.user_id:
            if current.equipment_rating is not None:
                raise InvalidStateError("Equipment has already been rated for this reservation.")
            updated = replace(current, equipment_rating=rating, updated_at=effective_now)
        else:
            require_staff(actor, "rate this reservation")
            _require_department(actor, self.users.get(current.user_id))
            if current.user_rating is not None:
                raise InvalidStateError("User has already been rated for this reservation.")
            updated = replace(current, user_rating=rating, updated_at=effective_now)

        with self.store.unit_of_work() as work:
            work.replace("reservations", updated.to_dict())
            work.log_event("RESERVATION_RATED", {**_event_payload(updated), "rated_by": actor.user_id, "score": score}, effective_now)
        return updated

    def reconcile_all(self, now: datetime | None = None) -> list[EquipmentRecord]:
        return [
            self.inventory.recompute_from_active_reservations(record.equipment_id, now=now)
            for record in self.inventory.list_equipment()
        ]

    def _ensure_fits(
        self,
        equipment: EquipmentRecord,
        start: datetime,
        end: datetime,
        quantity: int,
        exclude: str | None = None,
    ) -> None:
        result = self.resolver.check_availability(equipment.equipment_id, start, end, quantity, exclude)
        if not result.available:
            raise ConflictError(
                f"Not enough {equipment.name} for this period: {max(0, result.available_quantity)} available, {quantity} requested.",
                list(result.conflicting_reservations),
                result.available_quantity,
            )
        if quantity > equipment.available_quantity:
            raise ConflictError(
                f"Not enough {equipment.name} in stock: {equipment.available_quantity} available, {quantity} requested.",
                list(result.conflicting_reservations),
                equipment.available_quantity,
            )

    def _require_owner_or_manager(self, actor: UserRecord, record: ReservationRecord, action: str) -> None:
        if record.user_id == actor.user_id:
            return
        require_staff(actor, f"{action} this reservation")
        _require_department(actor, self.users.get(record.user_id))

    def _equipment_or_none(self, equipment_id: str) -> EquipmentRecord | None:
        try:
            return self.inventory.get(equipment_id)
        except NotFoundError:
            return None


def estimate_cost(terms: RentalTerms, start: datetime, end: datetime, quantity: int) -> float:
    """Estimate from the daily rate when set, otherwise the hourly rate, rounding partial units up."""
    span = end - start
    if terms.daily_rate > 0:
        days = max(1, math.ceil(span / timedelta(days=1)))
        return round(terms.daily_rate * days * quantity, 2)
    if terms.hourly_rate > 0:
        hours = max(1, math.ceil(span / timedelta(hours=1)))
        return round(terms.hourly_rate * hours * quantity, 2)
    return 0.0


def _validate_schedule(start: datetime, end: datetime, quantity: int, now: datetime) -> None:
    if start >= end:
        raise InvalidStateError("start_date must be earlier than end_date.")
    if start <= now:
        raise InvalidStateError("start_date must be in the future.")
    if quantity < 1:
        raise InvalidStateError("quantity must be at least 1.")


def _validate_duration(equipment: EquipmentRecord, start: datetime, end: datetime) -> None:
    days = int((end - start) // timedelta(days=1)) + 1
    limit = equipment.rental_terms.max_rental_duration_days
    if days > limit:
        raise InvalidStateError(f"{equipment.name} can be reserved for at most {limit} days ({days} requested).")


def require_staff(actor: UserRecord, action: str) -> None:
    if not actor.is_staff:
        raise ForbiddenError(f"Only supervisors and admins can {action}.")


def _require_department(actor: UserRecord, owner: UserRecord) -> None:
    if actor.role == ROLE_SUPERVISOR and actor.department != owner.department:
        raise ForbiddenError("Supervisors can only manage reservations from their own department.")


def _event_payload(record: ReservationRecord) -> dict[str, Any]:
    return {
        "reservation_id": record.reservation_id,
        "equipment_id": record.equipment_id,
        "user_id": record.user_id,
        "status": record.status,
        "quantity": record.quantity,
        "start_date": format_datetime(record.start_date),
        "end_date": format_datetime(record.end_date),
    }


def _notification_payload(record: ReservationRecord, equipment: EquipmentRecord | None) -> dict[str, Any]:
    return {
        "reservation_id": record.reservation_id,
        "equipment_id": record.equipment_id,
        "equipment_name": equipment.name if equipment else "Equipment",
        "start_date": format_datetime(record.start_date),
        "end_date": format_datetime(record.end_date),
        "quantity": record.quantity,
        "status": record.status,
    }
