"""Time-of-day arithmetic on ``HH:mm`` strings.

Pure functions, no I/O. Intervals are half-open: ``[start, end)``, so a
booking ending at 11:00 and one starting at 11:00 do not overlap.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol, TypeVar

MINUTES_PER_DAY = 24 * 60

# Python weekday() is Monday=0; stored day_of_week follows Sunday=0.
DAY_NAMES = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")


def to_minutes(time: str) -> int:
    """Parse ``HH:mm`` into minutes since midnight.

    ``24:00`` is accepted so a closing time of midnight can be expressed.

    Raises:
        ValueError: If the string is not a valid time of day.
    """
    try:
        hours_str, minutes_str = time.split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        msg = f"Invalid time of day: {time!r} (expected HH:mm)"
        raise ValueError(msg) from None
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or (hours == 24 and minutes != 0):
        msg = f"Invalid time of day: {time!r} (expected HH:mm)"
        raise ValueError(msg)
    return hours * 60 + minutes


def format_minutes(total_minutes: int) -> str:
    """Format minutes since midnight as ``HH:mm``, wrapping past midnight."""
    total_minutes %= MINUTES_PER_DAY
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def add_minutes(time: str, minutes: int) -> str:
    """Add minutes to a time of day. ``23:30`` + 60 → ``00:30``."""
    return format_minutes(to_minutes(time) + minutes)


def times_overlap(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """Half-open interval overlap: adjacent intervals do not overlap."""
    return to_minutes(start_a) < to_minutes(end_b) and to_minutes(end_a) > to_minutes(start_b)


def fits_before(start: str, duration_minutes: int, close: str) -> bool:
    """True if ``start + duration`` ends no later than ``close`` (no wrap-around)."""
    return to_minutes(start) + duration_minutes <= to_minutes(close)


def day_of_week(on_date: date) -> int:
    """Day of week with Sunday=0 .. Saturday=6."""
    return (on_date.weekday() + 1) % 7


def day_name(on_date: date) -> str:
    """Lowercase English day name, used as the working-hours key."""
    return DAY_NAMES[day_of_week(on_date)]


def current_time_of_day(now: datetime) -> str:
    """``HH:mm`` for a clock reading."""
    return f"{now.hour:02d}:{now.minute:02d}"


@dataclass(frozen=True)
class TimeSlotGrid:
    """Candidate slot starts from ``open`` up to (excluding) ``close``.

    Iterating yields the slots lazily; the grid can be iterated any number
    of times.
    """

    open: str
    close: str
    step_minutes: int

    def __post_init__(self) -> None:
        if self.step_minutes <= 0:
            msg = f"step_minutes must be positive, got {self.step_minutes}"
            raise ValueError(msg)
        # Validate eagerly so a bad grid fails at construction, not mid-iteration.
        to_minutes(self.open)
        to_minutes(self.close)

    def __iter__(self) -> Iterator[str]:
        current = to_minutes(self.open)
        end = to_minutes(self.close)
        while current < end:
            yield format_minutes(current)
            current += self.step_minutes

    def __len__(self) -> int:
        span = to_minutes(self.close) - to_minutes(self.open)
        if span <= 0:
            return 0
        return -(-span // self.step_minutes)


def generate_time_slots(open_time: str, close_time: str, step_minutes: int) -> TimeSlotGrid:
    """Slot starts from ``open_time`` every ``step_minutes`` while before ``close_time``."""
    return TimeSlotGrid(open_time, close_time, step_minutes)


class _HasTime(Protocol):
    time: str


SlotT = TypeVar("SlotT", bound=_HasTime)


def deduplicate_slots(slots: Iterable[SlotT]) -> list[SlotT]:
    """Keep the first slot for each distinct time, preserving order."""
    seen: set[str] = set()
    unique: list[SlotT] = []
    for slot in slots:
        if slot.time in seen:
            continue
        seen.add(slot.time)
        unique.append(slot)
    return unique
