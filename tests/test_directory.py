import os
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

from equipment_booking import BookingSettings, Interval, Notifier, NotFoundError, UserDirectory, YamlDocumentStore, peak_committed_quantity
from equipment_booking.demo import DEMO_CATALOG, DEMO_USERS, seed_demo_data
from equipment_booking.models import COMMITTED_STATUSES, ReservationRecord


class TestUserDirectory(unittest.TestCase):
    def test_increment_stat_never_goes_negative(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            users = UserDirectory(YamlDocumentStore(Path(temp_dir) / "data"))
            users.register("Jordan", user_id="user-it", department="IT")

            users.increment_stat("user-it", "active_reservations", 2)
            users.increment_stat("user-it", "active_reservations", -5)

            self.assertEqual(users.get("user-it").stat("active_reservations"), 0)
            with self.assertRaises(ValueError):
                users.increment_stat("user-it", "karma", 1)
            with self.assertRaises(NotFoundError):
                users.increment_stat("ghost", "total_reservations", 1)

    def test_approvers_are_admins_and_department_supervisors(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            users = UserDirectory(YamlDocumentStore(Path(temp_dir) / "data"))
            users.register("Alex", role="admin", user_id="admin")
            users.register("Sam", role="supervisor", department="IT", user_id="sup-it")
            users.register("Riley", role="supervisor", department="Research", user_id="sup-research")
            users.register("Jordan", department="IT", user_id="user-it")

            approvers = {user.user_id for user in users.approvers_for("IT")}

            self.assertEqual(approvers, {"admin", "sup-it"})
            self.assertIsNone(users.find(""))
            self.assertIsNone(users.find("ghost"))

    def test_notifier_queues_per_user(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            notifier = Notifier(YamlDocumentStore(Path(temp_dir) / "data"))

            notifier.notify("user-it", "reservation_approved", {"reservation_id": "r1"}, now=datetime(2026, 1, 1, 9, 0))

            rows = notifier.for_user("user-it")
            self.assertEqual(len(rows), 1)
            self.assertEqual(rows[0]["created_at"], "2026-01-01T09:00:00")
            self.assertFalse(rows[0]["read"])
            self.assertEqual(notifier.for_user("someone-else"), [])


class TestBookingSettings(unittest.TestCase):
    def test_from_env_reads_overrides(self) -> None:
        overrides = {
            "BOOKING_DATA_DIR": "/tmp/booking",
            "BOOKING_MAX_OPEN_RESERVATIONS": "3",
            "BOOKING_CALENDAR_DAYS": "14",
            "BOOKING_HOLIDAY_COUNTRY": "",
            "BOOKING_CURRENCY": "USD",
        }
        with mock.patch.dict(os.environ, overrides):
            settings = BookingSettings.from_env()

        self.assertEqual(settings.data_dir, Path("/tmp/booking"))
        self.assertEqual(settings.max_open_reservations_per_user, 3)
        self.assertEqual(settings.calendar_window_days, 14)
        self.assertIsNone(settings.holiday_country)
        self.assertEqual(settings.currency, "USD")

    def test_rejects_non_positive_limits(self) -> None:
        with self.assertRaises(ValueError):
            BookingSettings(max_open_reservations_per_user=0)
        with self.assertRaises(ValueError):
            BookingSettings(calendar_window_days=0)


class TestSeedDemoData(unittest.TestCase):
    def test_seeded_data_respects_quantities(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")

            demo = seed_demo_data(store, now=datetime(2026, 1, 1, 9, 0))

            self.assertEqual(len(demo.users), len(DEMO_USERS))
            self.assertEqual(len(demo.equipment), len(DEMO_CATALOG))
            self.assertGreater(len(demo.reservations), 0)
            for item in demo.equipment:
                committed = [
                    (Interval(record.start_date, record.end_date), record.quantity)
                    for record in (ReservationRecord.from_dict(row) for row in store.find("reservations"))
                    if record.equipment_id == item.equipment_id and record.status in COMMITTED_STATUSES
                ]
                self.assertLessEqual(peak_committed_quantity(committed), item.total_quantity)
            self.assertEqual(len(store.read_events("DEMO_DATA_GENERATED")), 1)

    def test_reseeding_overwrites_previous_data(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")

            seed_demo_data(store, now=datetime(2026, 1, 1, 9, 0))
            seed_demo_data(store, now=datetime(2026, 1, 1, 9, 0))

            self.assertEqual(len(store.find("equipment")), len(DEMO_CATALOG))
            self.assertEqual(len(store.find("users")), len(DEMO_USERS))


if __name__ == "__main__":
    unittest.main()
