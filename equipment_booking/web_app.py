from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .conflicts import ConflictResolver
from .directory import Notifier, UserDirectory
from .errors import BookingError, ForbiddenError, InvalidStateError, ReservationStorageError, UnauthorizedError
from .inventory import EquipmentInventory
from .lifecycle import ReservationService, require_staff
from .models import STATUS_APPROVED, RentalTerms, UserRecord, Visibility
from .projector import AvailabilityProjector
from .settings import BookingSettings
from .yaml_store import YamlDocumentStore

USER_HEADER = "X-User-Id"


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    settings: BookingSettings | None = None,
) -> Flask:
    app = Flask(__name__)
    settings = settings or BookingSettings.from_env()
    store = YamlDocumentStore(data_dir if data_dir is not None else settings.data_dir)
    inventory = EquipmentInventory(store)
    resolver = ConflictResolver(store, inventory)
    users = UserDirectory(store)
    service = ReservationService(
        store,
        settings,
        inventory=inventory,
        resolver=resolver,
        users=users,
        notifier=Notifier(store),
    )
    projector = AvailabilityProjector(inventory, resolver, settings.holiday_country)
    clock: Callable[[], datetime] = now_provider or datetime.now

    app.extensions["booking_service"] = service

    def _ok(data: Any = None, message: str = "", status: int = 200) -> Any:
        return jsonify({"success": True, "message": message, "data": data}), status

    def _current_user() -> UserRecord:
        user = users.find(str(request.headers.get(USER_HEADER, "")).strip())
        if user is None:
            raise UnauthorizedError("Authentication required.")
        return user

    def _payload() -> dict[str, Any]:
        return request.get_json(silent=True) or {}

    @app.errorhandler(BookingError)
    def handle_booking_error(error: BookingError) -> Any:
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(ReservationStorageError)
    def handle_storage_error(error: ReservationStorageError) -> Any:
        return (
            jsonify(
                {
                    "success": False,
                    "message": "Storage failure while processing the request.",
                    "error": "ServerError",
                    "detail": str(error.__cause__ or error),
                }
            ),
            500,
        )

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type,{USER_HEADER}"
        return response

    @app.get("/api/equipment")
    def list_equipment() -> Any:
        _current_user()
        records = inventory.list_equipment(
            category=request.args.get("category") or None,
            status=request.args.get("status") or None,
            available_only=str(request.args.get("available", "")).lower() == "true",
            search=request.args.get("search") or None,
        )
        return _ok({"equipment": [record.to_dict() for record in records], "total": len(records)})

    @app.get("/api/equipment/<equipment_id>")
    def get_equipment(equipment_id: str) -> Any:
        _current_user()
        record = inventory.get(equipment_id)
        calendar = projector.project(equipment_id, clock().date(), settings.calendar_window_days)
        return _ok({**record.to_dict(), "availability_calendar": calendar.to_list()})

    @app.get("/api/equipment/availability/<equipment_id>")
    def equipment_availability(equipment_id: str) -> Any:
        _current_user()
        start = _parse_datetime_arg(request.args.get("start_date"), "start_date")
        end = _parse_datetime_arg(request.args.get("end_date"), "end_date")
        quantity = _parse_int(request.args.get("quantity", 1), "quantity")
        result = resolver.check_availability(
            equipment_id,
            start,
            end,
            quantity,
            request.args.get("exclude_reservation_id") or None,
        )
        return _ok(result.to_dict())

    @app.post("/api/equipment")
    def create_equipment() -> Any:
        user = _current_user()
        require_staff(user, "manage equipment")
        payload = _payload()
        total = payload.get("total_quantity", payload.get("quantity", 1))
        record = inventory.create(
            name=str(payload.get("name", "")),
            category=str(payload.get("category", "")).strip(),
            total_quantity=_parse_int(total, "total_quantity"),
            status=str(payload.get("status", "available")).strip(),
            description=str(payload.get("description", "")).strip(),
            location=str(payload.get("location", "")).strip(),
            rental_terms=RentalTerms.from_dict(payload.get("rental_terms")),
            visibility=Visibility.from_dict(payload.get("visibility")),
            now=clock(),
        )
        return _ok(record.to_dict(), "Equipment created", 201)

    @app.put("/api/equipment/<equipment_id>")
    def update_equipment(equipment_id: str) -> Any:
        user = _current_user()
        require_staff(user, "manage equipment")
        payload = _payload()
        total = payload.get("total_quantity", payload.get("quantity"))
        record = inventory.update(
            equipment_id,
            name=payload.get("name"),
            description=payload.get("description"),
            category=payload.get("category"),
            location=payload.get("location"),
            total_quantity=_parse_int(total, "total_quantity") if total is not None else None,
            rental_terms=RentalTerms.from_dict(payload["rental_terms"]) if "rental_terms" in payload else None,
            visibility=Visibility.from_dict(payload["visibility"]) if "visibility" in payload else None,
            now=clock(),
        )
        return _ok(record.to_dict(), "Equipment updated")

    @app.put("/api/equipment/<equipment_id>/status")
    def set_equipment_status(equipment_id: str) -> Any:
        user = _current_user()
        require_staff(user, "manage equipment")
        status = str(_payload().get("status", "")).strip()
        record = inventory.set_status(equipment_id, status, now=clock())
        return _ok(record.to_dict(), f"Equipment is now {record.status}")

    @app.delete("/api/equipment/<equipment_id>")
    def retire_equipment(equipment_id: str) -> Any:
        user = _current_user()
        require_staff(user, "manage equipment")
        record = inventory.retire(equipment_id, now=clock())
        return _ok(record.to_dict(), "Equipment retired")

    @app.post("/api/equipment/<equipment_id>/reconcile")
    def reconcile_equipment(equipment_id: str) -> Any:
        user = _current_user()
        if not user.is_admin:
            raise ForbiddenError("Only admins can reconcile inventory.")
        record = inventory.recompute_from_active_reservations(equipment_id, now=clock())
        return _ok(record.to_dict(), "Inventory reconciled")

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        user = _current_user()
        payload = _payload()
        equipment_id = str(payload.get("equipment_id", "")).strip()
        if not equipment_id:
            raise InvalidStateError("equipment_id is required.")
        now = clock()
        record = service.create(
            user,
            equipment_id,
            _parse_datetime_arg(payload.get("start_date"), "start_date"),
            _parse_datetime_arg(payload.get("end_date"), "end_date"),
            quantity=_parse_int(payload.get("quantity", 1), "quantity"),
            purpose=str(payload.get("purpose", "")),
            notes=str(payload.get("notes", "")),
            now=now,
        )
        message = "Reservation approved" if record.status == STATUS_APPROVED else "Reservation pending approval"
        return _ok(record.to_dict(now), message, 201)

    @app.get("/api/reservations/me")
    def my_reservations() -> Any:
        user = _current_user()
        now = clock()
        records = service.list_for_user(user.user_id)
        return _ok({"reservations": [record.to_dict(now) for record in records], "total": len(records)})

    @app.get("/api/reservations/manage")
    def manage_reservations() -> Any:
        user = _current_user()
        now = clock()
        records = service.list_manageable(user, request.args.get("status") or None)
        return _ok({"reservations": [record.to_dict(now) for record in records], "total": len(records)})

    @app.post("/api/reservations/mark-overdue")
    def mark_overdue() -> Any:
        user = _current_user()
        if not user.is_admin:
            raise ForbiddenError("Only admins can persist overdue reservations.")
        now = clock()
        marked = service.mark_overdue(now)
        return _ok({"reservations": [record.to_dict(now) for record in marked], "total": len(marked)})

    @app.get("/api/reservations/<reservation_id>")
    def get_reservation(reservation_id: str) -> Any:
        user = _current_user()
        return _ok(service.get_for(user, reservation_id).to_dict(clock()))

    @app.put("/api/reservations/<reservation_id>")
    def update_reservation(reservation_id: str) -> Any:
        user = _current_user()
        payload = _payload()
        now = clock()
        record = service.update(
            user,
            reservation_id,
            start=_parse_datetime_arg(payload["start_date"], "start_date") if "start_date" in payload else None,
            end=_parse_datetime_arg(payload["end_date"], "end_date") if "end_date" in payload else None,
            quantity=_parse_int(payload["quantity"], "quantity") if "quantity" in payload else None,
            purpose=str(payload["purpose"]) if "purpose" in payload else None,
            notes=str(payload["notes"]) if "notes" in payload else None,
            now=now,
        )
        return _ok(record.to_dict(now), "Reservation updated")

    @app.put("/api/reservations/<reservation_id>/approve")
    def approve_reservation(reservation_id: str) -> Any:
        user = _current_user()
        now = clock()
        record = service.approve(user, reservation_id, notes=str(_payload().get("notes", "")), now=now)
        return _ok(record.to_dict(now), "Reservation approved")

    @app.put("/api/reservations/<reservation_id>/reject")
    def reject_reservation(reservation_id: str) -> Any:
        user = _current_user()
        now = clock()
        reason = str(_payload().get("reason", "")) or "Request rejected"
        record = service.reject(user, reservation_id, reason=reason, now=now)
        return _ok(record.to_dict(now), "Reservation rejected")

    @app.put("/api/reservations/<reservation_id>/pickup")
    def pickup_reservation(reservation_id: str) -> Any:
        user = _current_user()
        now = clock()
        record = service.pickup(user, reservation_id, now=now)
        return _ok(record.to_dict(now), "Equipment picked up")

    @app.put("/api/reservations/<reservation_id>/return")
    def return_reservation(reservation_id: str) -> Any:
        user = _current_user()
        now = clock()
        record = service.complete(
            user,
            reservation_id,
            condition_notes=str(_payload().get("condition_notes", "")),
            now=now,
        )
        return _ok(record.to_dict(now), "Equipment returned")

    @app.put("/api/reservations/<reservation_id>/rate")
    def rate_reservation(reservation_id: str) -> Any:
        user = _current_user()
        payload = _payload()
        now = clock()
        record = service.rate(
            user,
            reservation_id,
            _parse_int(payload.get("score"), "score"),
            comment=str(payload.get("comment", "")),
            now=now,
        )
        return _ok(record.to_dict(now), "Rating saved")

    @app.delete("/api/reservations/<reservation_id>")
    def cancel_reservation(reservation_id: str) -> Any:
        user = _current_user()
        reason = str(_payload().get("reason") or request.args.get("reason") or "")
        now = clock()
        record = service.cancel(user, reservation_id, reason=reason, now=now)
        return _ok(record.to_dict(now), "Reservation cancelled")

    return app


def _parse_datetime_arg(value: Any, field_name: str) -> datetime:
    if value is None or str(value).strip() == "":
        raise InvalidStateError(f"{field_name} is required.")
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except ValueError as error:
        raise InvalidStateError(f"{field_name} must be an ISO date or datetime.") from error
    # Stored dates are naive local time.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _parse_int(value: Any, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise InvalidStateError(f"{field_name} must be an integer.") from error


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
