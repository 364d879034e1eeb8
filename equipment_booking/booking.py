from dataclasses import dataclass
from datetime import datetime
from typing import Iterable


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("Interval start must be earlier than end.")


def has_interval_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two date ranges share at least one instant.

    Intervals are closed: [start, end]. A range ending at 10:00 and another
    starting at 10:00 overlap, so same-instant hand-offs count as conflicts.
    """
    if new_start >= new_end:
        raise ValueError("new_start must be earlier than new_end.")
    if exist_start > exist_end:
        raise ValueError("exist_start must not be later than exist_end.")

    return new_start <= exist_end and exist_start <= new_end


def committed_quantity(new_start: datetime, new_end: datetime, existing: Iterable[tuple[Interval, int]]) -> int:
    """Sum the quantities of existing intervals overlapping [new_start, new_end]."""
    total = 0
    for interval, quantity in existing:
        if has_interval_overlap(new_start, new_end, interval.start, interval.end):
            total += quantity
    return total


def peak_committed_quantity(intervals: Iterable[tuple[Interval, int]]) -> int:
    """Largest quantity held at any single instant across the given intervals.

    Sweeps start/end events; starts sort before ends at the same instant so
    touching intervals are counted together.
    """
    events: list[tuple[datetime, int, int]] = []
    for interval, quantity in intervals:
        events.append((interval.start, 0, quantity))
        events.append((interval.end, 1, -quantity))
    events.sort(key=lambda item: (item[0], item[1]))

    running = 0
    peak = 0
    for _moment, _order, delta in events:
        running += delta
        peak = max(peak, running)
    return peak
