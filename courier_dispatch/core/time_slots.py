# courier_dispatch/core/time_slots.py
"""
Courier time-slot parsing.

Couriers declare when they work using three string shapes:

- hour range   ``"09:00-12:00"`` or ``"9-12"``
- single hour  ``"14:00"`` or ``"14"`` (a one-hour window)
- named period ``"morning"`` / ``"afternoon"`` / ``"evening"``
  (Dutch ``"ochtend"`` / ``"middag"`` / ``"avond"`` are accepted too)

Strings are parsed once, when a profile is written, into one of the
frozen variants below.  Schedule checks only ever see parsed slots.

Windows are hour-granular: minutes are validated but not used, so
``"09:30-12:00"`` covers the 9 o'clock hour.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Union

from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "TimeSlotFormatError",
    "HourRange", "HourPoint", "NamedPeriod", "TimeSlot",
    "NAMED_PERIODS",
    "parse_time_slot", "parse_time_slots",
]


# name → (start_hour, end_hour)
NAMED_PERIODS: dict[str, tuple[int, int]] = {
    "morning": (6, 12),
    "afternoon": (12, 18),
    "evening": (18, 23),
}

_PERIOD_ALIASES: dict[str, str] = {
    "ochtend": "morning",
    "middag": "afternoon",
    "avond": "evening",
}

_RANGE_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*-\s*(\d{1,2})(?::(\d{2}))?$")
_POINT_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?$")


class TimeSlotFormatError(ValueError):
    """Raised for a time-slot string that matches none of the supported shapes."""


@dataclass(frozen=True)
class HourRange:
    """``start <= hour < end``; wraps past midnight when ``end < start``."""

    start: int
    end: int

    def contains(self, hour: int) -> bool:
        if self.start < self.end:
            return self.start <= hour < self.end
        return hour >= self.start or hour < self.end

    @property
    def label(self) -> str:
        return f"{self.start:02d}:00-{self.end:02d}:00"


@dataclass(frozen=True)
class HourPoint:
    """A single hour, treated as a one-hour window."""

    hour: int

    def contains(self, hour: int) -> bool:
        return hour == self.hour

    @property
    def label(self) -> str:
        return f"{self.hour:02d}:00"


@dataclass(frozen=True)
class NamedPeriod:
    name: str

    def contains(self, hour: int) -> bool:
        start, end = NAMED_PERIODS[self.name]
        return start <= hour < end

    @property
    def label(self) -> str:
        return self.name


TimeSlot = Union[HourRange, HourPoint, NamedPeriod]


def _hour(raw_hour: str, raw_minute: str | None, *, allow_24: bool, source: str) -> int:
    hour = int(raw_hour)
    minute = int(raw_minute) if raw_minute is not None else 0
    upper = 24 if allow_24 else 23
    if not 0 <= hour <= upper or not 0 <= minute <= 59:
        raise TimeSlotFormatError(f"Time out of range in slot '{source}'")
    if hour == 24 and minute != 0:
        raise TimeSlotFormatError(f"Time out of range in slot '{source}'")
    return hour


def parse_time_slot(raw: str) -> TimeSlot:
    """Parse one slot string into its normalized variant.

    Raises:
        TimeSlotFormatError: if the string matches no supported shape.
    """
    if not isinstance(raw, str):
        raise TimeSlotFormatError(f"Time slot must be a string, got {type(raw).__name__}")

    text = raw.strip().lower()
    if not text:
        raise TimeSlotFormatError("Time slot is empty")

    name = _PERIOD_ALIASES.get(text, text)
    if name in NAMED_PERIODS:
        return NamedPeriod(name)

    m = _RANGE_RE.match(text)
    if m:
        start = _hour(m.group(1), m.group(2), allow_24=False, source=raw)
        end = _hour(m.group(3), m.group(4), allow_24=True, source=raw)
        if start == end:
            raise TimeSlotFormatError(f"Empty time range '{raw}'")
        return HourRange(start, end)

    m = _POINT_RE.match(text)
    if m:
        return HourPoint(_hour(m.group(1), m.group(2), allow_24=False, source=raw))

    raise TimeSlotFormatError(f"Unrecognized time slot '{raw}'")


def parse_time_slots(raws: Iterable[str], *, strict: bool = True) -> tuple[TimeSlot, ...]:
    """Parse a collection of slot strings, dropping duplicates.

    ``strict=True`` (profile writes) raises on the first malformed slot.
    ``strict=False`` (loading stored rows) logs and skips it, so a
    malformed slot simply never matches.
    """
    slots: list[TimeSlot] = []
    for raw in raws:
        try:
            slot = parse_time_slot(raw)
        except TimeSlotFormatError as exc:
            if strict:
                raise
            logger.warning("Ignoring stored time slot: %s", exc)
            continue
        if slot not in slots:
            slots.append(slot)
    return tuple(slots)
