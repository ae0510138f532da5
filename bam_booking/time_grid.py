# time_grid.py
"""
Bookable time domain.

A grid is defined by operating hours [open_minute, close_minute) and a slot
size in minutes. Canonical slots are [s, s + g) starting at open_minute. A
requested interval may span several contiguous slots, but both of its ends
must fall on canonical boundaries.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from bam_booking.data_models import Interval
from bam_booking.errors import EngineError, ErrorCode


def parse_clock(value: str) -> int:
    """'09:30' -> 570"""
    try:
        hours, minutes = value.strip().split(":")
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid clock time {value!r}, expected HH:MM")
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or (hours == 24 and minutes):
        raise ValueError(f"Clock time {value!r} out of range")
    return hours * 60 + minutes


def format_clock(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


@dataclass(frozen=True)
class TimeGrid:
    open_minute: int
    close_minute: int
    slot_minutes: int

    def __post_init__(self):
        if self.slot_minutes <= 0:
            raise ValueError("Slot size must be positive")
        if not (0 <= self.open_minute < self.close_minute <= 24 * 60):
            raise ValueError(
                f"Invalid operating hours {format_clock(self.open_minute)}-{format_clock(self.close_minute)}"
            )

    @classmethod
    def from_clock(cls, open_time: str, close_time: str, slot_minutes: int) -> "TimeGrid":
        return cls(parse_clock(open_time), parse_clock(close_time), slot_minutes)

    @property
    def last_boundary(self) -> int:
        """Largest canonical boundary; equals close_minute when the grid divides the day evenly."""
        whole_slots = (self.close_minute - self.open_minute) // self.slot_minutes
        return self.open_minute + whole_slots * self.slot_minutes

    def slots(self) -> Tuple[Interval, ...]:
        return tuple(
            Interval(start, start + self.slot_minutes)
            for start in range(self.open_minute, self.last_boundary, self.slot_minutes)
        )

    def is_boundary(self, minute: int) -> bool:
        return (
            self.open_minute <= minute <= self.last_boundary
            and (minute - self.open_minute) % self.slot_minutes == 0
        )

    def validate(self, interval: Interval) -> Optional[EngineError]:
        """Return None when the interval is bookable on this grid, else the reason."""
        if interval.start < self.open_minute or interval.end > self.close_minute:
            return EngineError(
                ErrorCode.OUT_OF_BOUNDS,
                f"{interval} falls outside operating hours "
                f"{format_clock(self.open_minute)}-{format_clock(self.close_minute)}",
                interval=interval,
            )
        if not (self.is_boundary(interval.start) and self.is_boundary(interval.end)):
            return EngineError(
                ErrorCode.MISALIGNED,
                f"{interval} is not aligned to the {self.slot_minutes} minute grid",
                interval=interval,
            )
        return None
