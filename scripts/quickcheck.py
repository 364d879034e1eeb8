from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
import traceback

from equipment_booking import (
    ConflictError,
    EquipmentInventory,
    RentalTerms,
    ReservationService,
    UserDirectory,
    YamlDocumentStore,
)
from equipment_booking.demo import seed_demo_data


def main() -> int:
    print("[INFO] Equipment Booking Quick Check")
    print("[INFO] Generating and validating demo data...")

    store = YamlDocumentStore("data")
    now = datetime.now().replace(microsecond=0)

    demo = seed_demo_data(store, now=now, overwrite=True)
    print(f"[OK] Demo data generated: {len(demo.equipment)} equipment, {len(demo.reservations)} reservations")

    inventory = EquipmentInventory(store)
    users = UserDirectory(store)
    service = ReservationService(store, inventory=inventory, users=users)
    borrower = users.get("user-it")

    kit = inventory.create(
        "Quick Check Speaker Pair",
        "Audio/Video",
        2,
        rental_terms=RentalTerms(requires_approval=False),
        now=now,
    )
    day1 = now + timedelta(days=1)
    first = service.create(borrower, kit.equipment_id, day1, day1 + timedelta(days=4), quantity=2, now=now)
    print(f"[OK] Reserved both units: {first.status}, available={inventory.get(kit.equipment_id).available_quantity}")

    try:
        service.create(borrower, kit.equipment_id, day1 + timedelta(days=2), day1 + timedelta(days=3), quantity=1, now=now)
        print("[ERROR] Overlapping request was accepted.")
        return 1
    except ConflictError as error:
        print(f"[OK] Overlapping request rejected: {error}")

    service.cancel(borrower, first.reservation_id, reason="quick check", now=now)
    second = service.create(borrower, kit.equipment_id, day1 + timedelta(days=2), day1 + timedelta(days=3), quantity=1, now=now)
    print(f"[OK] Request accepted after cancellation: {second.status}")

    print(f"[OK] Equipment YAML: {Path('data/equipment.yaml').resolve()}")
    print(f"[OK] Reservations YAML: {Path('data/reservations.yaml').resolve()}")
    print(f"[OK] Event Log YAML: {Path('data/booking_events.yaml').resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
