import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from equipment_booking import (
    ConflictError,
    EquipmentInventory,
    InvalidStateError,
    NotFoundError,
    RentalTerms,
    ReservationService,
    UserDirectory,
    YamlDocumentStore,
)

NOW = datetime(2026, 1, 1, 9, 0)


class TestEquipmentInventory(unittest.TestCase):
    def test_create_sets_available_from_status(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            inventory = EquipmentInventory(YamlDocumentStore(Path(temp_dir) / "data"))

            ready = inventory.create("Tripod", "Photography", 3, now=NOW)
            parked = inventory.create("Oscilloscope", "Laboratory", 2, status="maintenance", now=NOW)

            self.assertEqual(ready.available_quantity, 3)
            self.assertEqual(parked.available_quantity, 0)
            self.assertEqual(inventory.get(ready.equipment_id).name, "Tripod")

    def test_create_rejects_invalid_input(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            inventory = EquipmentInventory(YamlDocumentStore(Path(temp_dir) / "data"))

            with self.assertRaises(InvalidStateError):
                inventory.create("Tripod", "Spaceships", 1, now=NOW)
            with self.assertRaises(InvalidStateError):
                inventory.create("Tripod", "Photography", 0, now=NOW)
            with self.assertRaises(InvalidStateError):
                inventory.create("   ", "Photography", 1, now=NOW)

    def test_get_missing_equipment_raises_not_found(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            inventory = EquipmentInventory(YamlDocumentStore(Path(temp_dir) / "data"))

            with self.assertRaises(NotFoundError):
                inventory.get("missing")

    def test_adjust_available_stays_within_bounds(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")
            inventory = EquipmentInventory(store)
            record = inventory.create("Tripod", "Photography", 2, now=NOW)

            self.assertEqual(inventory.adjust_available(record.equipment_id, -2, now=NOW).available_quantity, 0)
            with self.assertRaises(InvalidStateError):
                inventory.adjust_available(record.equipment_id, -1, now=NOW)
            self.assertEqual(inventory.adjust_available(record.equipment_id, 2, now=NOW).available_quantity, 2)
            with self.assertRaises(InvalidStateError):
                inventory.adjust_available(record.equipment_id, 1, now=NOW)

            self.assertEqual(len(store.read_events("INVENTORY_ADJUSTED")), 2)

    def test_set_status_forces_available_quantity(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            inventory = EquipmentInventory(YamlDocumentStore(Path(temp_dir) / "data"))
            record = inventory.create("Tripod", "Photography", 4, now=NOW)
            inventory.adjust_available(record.equipment_id, -1, now=NOW)

            maintenance = inventory.set_status(record.equipment_id, "maintenance", now=NOW)
            self.assertEqual(maintenance.available_quantity, 3)

            retired = inventory.retire(record.equipment_id, now=NOW)
            self.assertEqual(retired.status, "retired")
            self.assertEqual(retired.available_quantity, 0)

            restored = inventory.set_status(record.equipment_id, "available", now=NOW)
            self.assertEqual(restored.available_quantity, 4)

            with self.assertRaises(InvalidStateError):
                inventory.set_status(record.equipment_id, "lost", now=NOW)

    def test_update_clamps_available_when_total_shrinks(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            inventory = EquipmentInventory(YamlDocumentStore(Path(temp_dir) / "data"))
            record = inventory.create("Tripod", "Photography", 5, now=NOW)

            updated = inventory.update(record.equipment_id, total_quantity=2, location="Room 101", now=NOW)

            self.assertEqual(updated.total_quantity, 2)
            self.assertEqual(updated.available_quantity, 2)
            self.assertEqual(updated.location, "Room 101")

    def test_update_refuses_total_below_committed_peak(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")
            inventory = EquipmentInventory(store)
            users = UserDirectory(store)
            borrower = users.register("Jordan", user_id="user-it", department="IT")
            record = inventory.create("Tripod", "Photography", 3, rental_terms=RentalTerms(requires_approval=False), now=NOW)
            service = ReservationService(store, inventory=inventory, users=users)
            booked = service.create(borrower, record.equipment_id, datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 6, 9, 0), quantity=3, now=NOW)

            with self.assertRaises(ConflictError) as context:
                inventory.update(record.equipment_id, total_quantity=1, now=NOW)

            self.assertEqual(
                [reservation.reservation_id for reservation in context.exception.conflicting_reservations],
                [booked.reservation_id],
            )
            unchanged = inventory.get(record.equipment_id)
            self.assertEqual(unchanged.total_quantity, 3)
            self.assertEqual(unchanged.available_quantity, 0)

    def test_update_shrink_takes_units_from_free_stock(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")
            inventory = EquipmentInventory(store)
            users = UserDirectory(store)
            borrower = users.register("Jordan", user_id="user-it", department="IT")
            record = inventory.create("Tripod", "Photography", 5, rental_terms=RentalTerms(requires_approval=False), now=NOW)
            service = ReservationService(store, inventory=inventory, users=users)
            service.create(borrower, record.equipment_id, datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 6, 9, 0), quantity=2, now=NOW)

            updated = inventory.update(record.equipment_id, total_quantity=3, now=NOW)

            self.assertEqual(updated.total_quantity, 3)
            self.assertEqual(updated.available_quantity, 1)
            self.assertEqual(inventory.recompute_from_active_reservations(record.equipment_id, now=NOW).available_quantity, 1)

    def test_list_equipment_filters(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            inventory = EquipmentInventory(YamlDocumentStore(Path(temp_dir) / "data"))
            inventory.create("Tripod", "Photography", 1, now=NOW)
            inventory.create("Flash Unit", "Photography", 1, status="maintenance", now=NOW)
            inventory.create("Drill", "Tools", 1, now=NOW)

            self.assertEqual(len(inventory.list_equipment(category="Photography")), 2)
            self.assertEqual([r.name for r in inventory.list_equipment(category="Photography", available_only=True)], ["Tripod"])
            self.assertEqual([r.name for r in inventory.list_equipment(search="dri")], ["Drill"])

    def test_recompute_drops_drift_back_to_held_quantity(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")
            inventory = EquipmentInventory(store)
            users = UserDirectory(store)
            borrower = users.register("Jordan", user_id="user-it", department="IT")
            record = inventory.create("Tripod", "Photography", 3, rental_terms=RentalTerms(requires_approval=False), now=NOW)
            service = ReservationService(store, inventory=inventory, users=users)
            service.create(borrower, record.equipment_id, datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 6, 9, 0), quantity=2, now=NOW)

            # Simulate drift from an interrupted bulk operation.
            inventory.adjust_available(record.equipment_id, 1, now=NOW)
            self.assertEqual(inventory.get(record.equipment_id).available_quantity, 2)

            reconciled = inventory.recompute_from_active_reservations(record.equipment_id, now=NOW)

            self.assertEqual(reconciled.available_quantity, 1)
            events = store.read_events("INVENTORY_RECONCILED")
            self.assertEqual(events[-1]["payload"]["held_quantity"], 2)


if __name__ == "__main__":
    unittest.main()
