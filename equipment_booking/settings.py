from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os


DEFAULT_MAX_OPEN_RESERVATIONS = 10
DEFAULT_CALENDAR_WINDOW_DAYS = 30
DEFAULT_HOLIDAY_COUNTRY = "FR"
DEFAULT_CURRENCY = "EUR"


@dataclass(frozen=True)
class BookingSettings:
    data_dir: Path = Path("data")
    max_open_reservations_per_user: int = DEFAULT_MAX_OPEN_RESERVATIONS
    calendar_window_days: int = DEFAULT_CALENDAR_WINDOW_DAYS
    holiday_country: str | None = DEFAULT_HOLIDAY_COUNTRY
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        if self.max_open_reservations_per_user <= 0:
            raise ValueError("max_open_reservations_per_user must be greater than zero")
        if self.calendar_window_days <= 0:
            raise ValueError("calendar_window_days must be greater than zero")

    @classmethod
    def from_env(cls) -> "BookingSettings":
        country = os.environ.get("BOOKING_HOLIDAY_COUNTRY", DEFAULT_HOLIDAY_COUNTRY).strip()
        return cls(
            data_dir=Path(os.environ.get("BOOKING_DATA_DIR") or "data"),
            max_open_reservations_per_user=int(os.environ.get("BOOKING_MAX_OPEN_RESERVATIONS", DEFAULT_MAX_OPEN_RESERVATIONS)),
            calendar_window_days=int(os.environ.get("BOOKING_CALENDAR_DAYS", DEFAULT_CALENDAR_WINDOW_DAYS)),
            holiday_country=country or None,
            currency=os.environ.get("BOOKING_CURRENCY", DEFAULT_CURRENCY),
        )
