import tempfile
import unittest
from pathlib import Path

from equipment_booking import ReservationStorageError, YamlDocumentStore


def _user_row(user_id: str, name: str = "Someone") -> dict:
    return {"user_id": user_id, "name": name, "role": "user", "department": "IT", "stats": {}}


class TestYamlDocumentStore(unittest.TestCase):
    def test_creates_collection_files_on_init(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            YamlDocumentStore(data_dir)

            for name in ("equipment", "reservations", "users", "notifications", "booking_events"):
                self.assertTrue((data_dir / f"{name}.yaml").exists())

    def test_insert_get_replace_delete(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")
            store.insert("users", _user_row("u1", "First"))

            self.assertEqual(store.get("users", "u1")["name"], "First")

            previous = store.replace("users", _user_row("u1", "Renamed"))
            self.assertEqual(previous["name"], "First")
            self.assertEqual(store.get("users", "u1")["name"], "Renamed")

            removed = store.delete("users", "u1")
            self.assertEqual(removed["name"], "Renamed")
            self.assertIsNone(store.get("users", "u1"))
            self.assertIsNone(store.delete("users", "u1"))

    def test_insert_duplicate_id_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")
            store.insert("users", _user_row("u1"))

            with self.assertRaises(ReservationStorageError):
                store.insert("users", _user_row("u1"))

    def test_replace_missing_document_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")

            with self.assertRaises(ReservationStorageError):
                store.replace("users", _user_row("ghost"))

    def test_unknown_collection_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")

            with self.assertRaises(ValueError):
                store.find("invoices")

    def test_recovers_corrupted_yaml_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            store = YamlDocumentStore(data_dir)
            (data_dir / "users.yaml").write_text("- user_id: u1\n  name: [unclosed\n", encoding="utf-8")

            self.assertEqual(store.find("users"), [])

            backups = list(data_dir.glob("users.corrupt.*.yaml"))
            self.assertEqual(len(backups), 1)
            recovered = store.read_events("YAML_RECOVERED")
            self.assertEqual(len(recovered), 1)
            self.assertEqual(recovered[0]["payload"]["file"], "users.yaml")

    def test_skips_rows_that_are_not_mappings(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            store = YamlDocumentStore(data_dir)
            (data_dir / "users.yaml").write_text(
                "- user_id: u1\n  name: Kept\n- just a string\n",
                encoding="utf-8",
            )

            rows = store.find("users")

            self.assertEqual([row["user_id"] for row in rows], ["u1"])
            skipped = store.read_events("YAML_ROW_SKIPPED")
            self.assertEqual(skipped[0]["payload"]["index"], 1)


class TestUnitOfWork(unittest.TestCase):
    def test_rollback_restores_every_touched_document(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")
            store.insert("users", _user_row("u1", "Original"))

            with self.assertRaises(RuntimeError):
                with store.unit_of_work() as work:
                    work.replace("users", _user_row("u1", "Changed"))
                    work.insert("users", _user_row("u2"))
                    work.log_event("USER_CHANGED", {"user_id": "u1"})
                    raise RuntimeError("boom")

            self.assertEqual(store.get("users", "u1")["name"], "Original")
            self.assertIsNone(store.get("users", "u2"))
            self.assertEqual(store.read_events("USER_CHANGED"), [])

    def test_commit_flushes_buffered_events(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = YamlDocumentStore(Path(temp_dir) / "data")

            with store.unit_of_work() as work:
                work.insert("users", _user_row("u1"))
                work.log_event("USER_CREATED", {"user_id": "u1"})
                self.assertEqual(store.read_events("USER_CREATED"), [])

            events = store.read_events("USER_CREATED")
            self.assertEqual(len(events), 1)
            self.assertEqual(events[0]["payload"], {"user_id": "u1"})
            self.assertIsNotNone(store.get("users", "u1"))


if __name__ == "__main__":
    unittest.main()
