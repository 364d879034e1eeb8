from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import random

from .directory import UserDirectory
from .errors import BookingError
from .inventory import EquipmentInventory
from .lifecycle import ReservationService
from .models import ROLE_ADMIN, ROLE_SUPERVISOR, ROLE_USER, EquipmentRecord, RentalTerms, ReservationRecord, UserRecord
from .yaml_store import YamlDocumentStore

DEMO_CATALOG = [
    ("Laptop Dell XPS 15", "Computers", 4, RentalTerms(daily_rate=25.0, max_rental_duration_days=14, requires_approval=False)),
    ("Projector Epson EB-X51", "Audio/Video", 2, RentalTerms(daily_rate=15.0, max_rental_duration_days=7, requires_approval=True)),
    ("Cordless Drill Makita", "Tools", 3, RentalTerms(hourly_rate=4.0, max_rental_duration_days=3, requires_approval=False)),
    ("Canon EOS R6 Kit", "Photography", 1, RentalTerms(daily_rate=40.0, max_rental_duration_days=5, requires_approval=True, requires_training=True)),
    ("Centrifuge Eppendorf 5424", "Laboratory", 2, RentalTerms(daily_rate=30.0, max_rental_duration_days=10, requires_approval=True)),
]

DEMO_USERS = [
    ("admin", "Alex Admin", ROLE_ADMIN, "General"),
    ("sup-it", "Sam Supervisor", ROLE_SUPERVISOR, "IT"),
    ("sup-research", "Riley Supervisor", ROLE_SUPERVISOR, "Research"),
    ("user-it", "Jordan User", ROLE_USER, "IT"),
    ("user-research", "Casey User", ROLE_USER, "Research"),
]


@dataclass(frozen=True)
class DemoData:
    users: list[UserRecord]
    equipment: list[EquipmentRecord]
    reservations: list[ReservationRecord]


def seed_demo_data(store: YamlDocumentStore, now: datetime | None = None, overwrite: bool = True) -> DemoData:
    """Fill the store with a small catalog, a few users and reservations spread over two weeks."""
    effective_now = now or datetime.now()
    if overwrite:
        for collection in ("equipment", "reservations", "users", "notifications"):
            store.clear(collection)

    directory = UserDirectory(store)
    users = [
        directory.register(name, role=role, department=department, user_id=user_id, email=f"{user_id}@example.org")
        for user_id, name, role, department in DEMO_USERS
    ]

    inventory = EquipmentInventory(store)
    equipment = [
        inventory.create(name, category, total, rental_terms=terms, now=effective_now)
        for name, category, total, terms in DEMO_CATALOG
    ]

    service = ReservationService(store, inventory=inventory, users=directory)
    rng = random.Random(f"demo:{effective_now.date().isoformat()}")
    borrowers = [user for user in users if user.role == ROLE_USER]
    reservations: list[ReservationRecord] = []
    for item in equipment:
        for _ in range(2):
            start_day = effective_now.date() + timedelta(days=rng.randint(1, 14))
            start = datetime(start_day.year, start_day.month, start_day.day, rng.choice([9, 10, 14]), 0)
            length = timedelta(days=rng.randint(0, max(0, item.rental_terms.max_rental_duration_days - 2)), hours=rng.randint(2, 6))
            try:
                reservations.append(
                    service.create(
                        rng.choice(borrowers),
                        item.equipment_id,
                        start,
                        start + length,
                        quantity=1,
                        purpose="Demo booking",
                        now=effective_now,
                    )
                )
            except BookingError:
                continue

    store.log_event(
        "DEMO_DATA_GENERATED",
        {"users": len(users), "equipment": len(equipment), "reservations": len(reservations), "overwrite": overwrite},
        effective_now,
    )
    return DemoData(users=users, equipment=equipment, reservations=reservations)
