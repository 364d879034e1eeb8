"""User directory and notification outbox.

Both stand in for services owned elsewhere (profiles, delivery); the core only
needs to read users, bump their counters and queue notifications.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from .errors import NotFoundError
from .models import ROLE_ADMIN, ROLE_SUPERVISOR, USER_STAT_FIELDS, UserRecord, format_datetime
from .yaml_store import UnitOfWork, YamlDocumentStore


class UserDirectory:
    def __init__(self, store: YamlDocumentStore) -> None:
        self.store = store

    def get(self, user_id: str) -> UserRecord:
        row = self.store.get("users", user_id)
        if row is None:
            raise NotFoundError(f"User not found: {user_id}")
        return UserRecord.from_dict(row)

    def find(self, user_id: str | None) -> UserRecord | None:
        if not user_id:
            return None
        row = self.store.get("users", user_id)
        return UserRecord.from_dict(row) if row is not None else None

    def register(self, name: str, role: str = "user", department: str = "General", email: str = "", user_id: str | None = None) -> UserRecord:
        record = UserRecord(
            user_id=user_id or str(uuid4()),
            name=name,
            role=role,
            department=department,
            email=email,
            stats={field: 0 for field in USER_STAT_FIELDS},
        )
        self.store.upsert("users", record.to_dict())
        return record

    def approvers_for(self, department: str) -> list[UserRecord]:
        """Admins plus supervisors of the given department."""
        users = [UserRecord.from_dict(row) for row in self.store.find("users")]
        return [
            user
            for user in users
            if user.role == ROLE_ADMIN or (user.role == ROLE_SUPERVISOR and user.department == department)
        ]

    def increment_stat(self, user_id: str, field: str, delta: int, writer: YamlDocumentStore | UnitOfWork | None = None) -> UserRecord:
        if field not in USER_STAT_FIELDS:
            raise ValueError(f"Unknown user stat: {field}")
        target = writer or self.store
        row = target.get("users", user_id)
        if row is None:
            raise NotFoundError(f"User not found: {user_id}")

        current = UserRecord.from_dict(row)
        stats = dict(current.stats)
        stats[field] = max(0, current.stat(field) + delta)
        updated = replace(current, stats=stats)
        target.replace("users", updated.to_dict())
        return updated


class Notifier:
    def __init__(self, store: YamlDocumentStore) -> None:
        self.store = store

    def notify(
        self,
        user_id: str,
        notification_type: str,
        payload: dict[str, Any],
        writer: YamlDocumentStore | UnitOfWork | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        row = {
            "notification_id": str(uuid4()),
            "user_id": user_id,
            "type": notification_type,
            "payload": payload,
            "read": False,
            "created_at": format_datetime(now or datetime.now()),
        }
        (writer or self.store).insert("notifications", row)
        return row

    def for_user(self, user_id: str) -> list[dict[str, Any]]:
        return self.store.find("notifications", lambda row: row.get("user_id") == user_id)
