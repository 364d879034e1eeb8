from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator
import shutil
import threading

import yaml

from .errors import ReservationStorageError


COLLECTION_ID_FIELDS = {
    "equipment": "equipment_id",
    "reservations": "reservation_id",
    "users": "user_id",
    "notifications": "notification_id",
}


class YamlDocumentStore:
    """Document collections kept as YAML lists, one file per collection.

    Every read-modify-write cycle on a file runs under a store-wide I/O lock.
    Callers that must check and then commit against one equipment hold
    ``equipment_lock`` for the whole sequence.
    """

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.log_file = self.base_dir / "booking_events.yaml"
        self._io_lock = threading.RLock()
        self._locks_guard = threading.Lock()
        self._equipment_locks: dict[str, threading.RLock] = {}
        self._ensure_files()

    def collection_path(self, collection: str) -> Path:
        if collection not in COLLECTION_ID_FIELDS:
            raise ValueError(f"Unknown collection: {collection}")
        return self.base_dir / f"{collection}.yaml"

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        paths = [self.collection_path(name) for name in COLLECTION_ID_FIELDS]
        paths.append(self.log_file)
        for path in paths:
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path != self.log_file:
                self.log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError as copy_error:
            raise ReservationStorageError(f"Could not back up corrupted YAML file: {path}") from copy_error

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self.log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        with self._io_lock:
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def read_events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        with self._io_lock:
            events = self._read_yaml_list(self.log_file)
        if event_type is None:
            return events
        return [event for event in events if event.get("event_type") == event_type]

    def find(self, collection: str, predicate: Callable[[dict[str, Any]], bool] | None = None) -> list[dict[str, Any]]:
        with self._io_lock:
            rows = self._read_yaml_list(self.collection_path(collection))
        if predicate is None:
            return rows
        return [row for row in rows if predicate(row)]

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        id_field = COLLECTION_ID_FIELDS[collection]
        for row in self.find(collection):
            if str(row.get(id_field)) == doc_id:
                return row
        return None

    def insert(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        id_field = COLLECTION_ID_FIELDS[collection]
        path = self.collection_path(collection)
        with self._io_lock:
            rows = self._read_yaml_list(path)
            if any(str(existing.get(id_field)) == str(row[id_field]) for existing in rows):
                raise ReservationStorageError(f"Duplicate {id_field} in {collection}: {row[id_field]}")
            rows.append(row)
            self._write_yaml_list(path, rows)
        return row

    def replace(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        """Overwrite an existing document and return its previous version."""
        id_field = COLLECTION_ID_FIELDS[collection]
        path = self.collection_path(collection)
        with self._io_lock:
            rows = self._read_yaml_list(path)
            for index, existing in enumerate(rows):
                if str(existing.get(id_field)) == str(row[id_field]):
                    rows[index] = row
                    self._write_yaml_list(path, rows)
                    return existing
        raise ReservationStorageError(f"{id_field} not found in {collection}: {row[id_field]}")

    def upsert(self, collection: str, row: dict[str, Any]) -> dict[str, Any] | None:
        id_field = COLLECTION_ID_FIELDS[collection]
        path = self.collection_path(collection)
        with self._io_lock:
            rows = self._read_yaml_list(path)
            for index, existing in enumerate(rows):
                if str(existing.get(id_field)) == str(row[id_field]):
                    rows[index] = row
                    self._write_yaml_list(path, rows)
                    return existing
            rows.append(row)
            self._write_yaml_list(path, rows)
        return None

    def delete(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        id_field = COLLECTION_ID_FIELDS[collection]
        path = self.collection_path(collection)
        with self._io_lock:
            rows = self._read_yaml_list(path)
            remaining = [row for row in rows if str(row.get(id_field)) != doc_id]
            if len(remaining) == len(rows):
                return None
            self._write_yaml_list(path, remaining)
        return next(row for row in rows if str(row.get(id_field)) == doc_id)

    def clear(self, collection: str) -> None:
        with self._io_lock:
            self._write_yaml_list(self.collection_path(collection), [])

    @contextmanager
    def equipment_lock(self, equipment_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._equipment_locks.setdefault(equipment_id, threading.RLock())
        with lock:
            yield

    @contextmanager
    def unit_of_work(self) -> Iterator["UnitOfWork"]:
        """Group writes so a failure part-way through restores every touched document."""
        work = UnitOfWork(self)
        try:
            yield work
        except BaseException:
            work.rollback()
            raise
        work.commit()


class UnitOfWork:
    def __init__(self, store: YamlDocumentStore) -> None:
        self.store = store
        self._undo: list[tuple[str, str, dict[str, Any] | None]] = []
        self._events: list[tuple[str, dict[str, Any], datetime | None]] = []

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return self.store.get(collection, doc_id)

    def find(self, collection: str, predicate: Callable[[dict[str, Any]], bool] | None = None) -> list[dict[str, Any]]:
        return self.store.find(collection, predicate)

    def insert(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        created = self.store.insert(collection, row)
        self._undo.append((collection, str(row[COLLECTION_ID_FIELDS[collection]]), None))
        return created

    def replace(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        previous = self.store.replace(collection, row)
        self._undo.append((collection, str(row[COLLECTION_ID_FIELDS[collection]]), previous))
        return previous

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        self._events.append((event_type, payload, event_time))

    def rollback(self) -> None:
        while self._undo:
            collection, doc_id, previous = self._undo.pop()
            if previous is None:
                self.store.delete(collection, doc_id)
            else:
                self.store.upsert(collection, previous)
        self._events.clear()

    def commit(self) -> None:
        self._undo.clear()
        for event_type, payload, event_time in self._events:
            self.store.log_event(event_type, payload, event_time)
        self._events.clear()
