from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterator

import holidays as pyholidays

from .booking import Interval, committed_quantity
from .conflicts import ConflictResolver
from .inventory import EquipmentInventory
from .models import EQUIPMENT_AVAILABLE, EquipmentRecord, ReservationRecord

_HOLIDAY_CACHE: dict[tuple[str, int], set[date]] = {}


@dataclass(frozen=True)
class DayAvailability:
    date: date
    available: bool
    available_quantity: int
    reserved_quantity: int
    is_holiday: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "available": self.available,
            "available_quantity": self.available_quantity,
            "reserved_quantity": self.reserved_quantity,
            "is_holiday": self.is_holiday,
        }


class AvailabilityCalendar:
    """Per-day availability over a fixed window.

    Days are computed while iterating, from the reservations captured when the
    calendar was built, so iterating again yields the same sequence.
    """

    def __init__(
        self,
        equipment: EquipmentRecord,
        reservations: list[ReservationRecord],
        from_date: date,
        days: int,
        holiday_country: str | None = None,
    ) -> None:
        if days <= 0:
            raise ValueError("days must be greater than zero")
        self.equipment = equipment
        self.from_date = from_date
        self.days = days
        self.holiday_country = holiday_country
        self._holdings = [(Interval(record.start_date, record.end_date), record.quantity) for record in reservations]

    def __len__(self) -> int:
        return self.days

    def __iter__(self) -> Iterator[DayAvailability]:
        total = self.equipment.total_quantity
        bookable = self.equipment.status == EQUIPMENT_AVAILABLE
        for offset in range(self.days):
            day = self.from_date + timedelta(days=offset)
            reserved = committed_quantity(
                datetime.combine(day, time.min),
                datetime.combine(day, time.max),
                self._holdings,
            )
            available_quantity = max(0, total - reserved) if bookable else 0
            yield DayAvailability(
                date=day,
                available=available_quantity > 0,
                available_quantity=available_quantity,
                reserved_quantity=reserved,
                is_holiday=_is_holiday(day, self.holiday_country),
            )

    def to_list(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self]


class AvailabilityProjector:
    def __init__(
        self,
        inventory: EquipmentInventory,
        resolver: ConflictResolver,
        holiday_country: str | None = None,
    ) -> None:
        self.inventory = inventory
        self.resolver = resolver
        self.holiday_country = holiday_country

    def project(self, equipment_id: str, from_date: date | datetime, days: int = 30) -> AvailabilityCalendar:
        if isinstance(from_date, datetime):
            from_date = from_date.date()
        equipment = self.inventory.get(equipment_id)
        reservations = self.resolver.reservations_for(equipment_id)
        return AvailabilityCalendar(equipment, reservations, from_date, days, self.holiday_country)


def _is_holiday(target_date: date, country: str | None) -> bool:
    if not country:
        return False
    key = (country, target_date.year)
    if key not in _HOLIDAY_CACHE:
        holiday_map = pyholidays.country_holidays(country, years=[target_date.year])
        _HOLIDAY_CACHE[key] = set(holiday_map.keys())
    return target_date in _HOLIDAY_CACHE[key]
