# courier_dispatch/core/availability.py
"""
Advisory schedule check run when a courier goes online.

The result never blocks the toggle: it only tells the courier that
they are online outside the days or hours they declared.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo

from courier_dispatch.core.domain import CourierProfile, Weekday


@dataclass(frozen=True)
class AvailabilityCheck:
    within_schedule: bool
    warning: str | None = None
    day_ok: bool = True
    time_ok: bool = True


def check_availability(
    profile: CourierProfile,
    now: datetime,
    *,
    lang: str = "en",
    tz: tzinfo | None = None,
) -> AvailabilityCheck:
    """
    Compare ``now`` against the profile's declared days and time slots.

    An empty day set or slot set means "any".  Aware datetimes are
    converted to ``tz`` first; naive ones are taken as local time.
    """
    if tz is not None and now.tzinfo is not None:
        now = now.astimezone(tz)

    weekday = Weekday.of(now)
    hour = now.hour

    day_ok = not profile.available_days or weekday in profile.available_days
    time_ok = not profile.time_slots or any(slot.contains(hour) for slot in profile.time_slots)

    if day_ok and time_ok:
        return AvailabilityCheck(within_schedule=True)

    texts = _TEXTS.get(lang, _TEXTS["en"])
    parts: list[str] = []
    if not day_ok:
        day_name = _DAY_NAMES.get(lang, _DAY_NAMES["en"])[weekday]
        parts.append(texts["day"].format(day=day_name))
    if not time_ok:
        slots = ", ".join(slot.label for slot in profile.time_slots)
        parts.append(texts["time"].format(time=now.strftime("%H:%M"), slots=slots))
    parts.append(texts["still_online"])

    return AvailabilityCheck(
        within_schedule=False,
        warning=" ".join(parts),
        day_ok=day_ok,
        time_ok=time_ok,
    )


# ---------------------------------------------------------------------------
# Localized texts
# ---------------------------------------------------------------------------

_TEXTS: dict[str, dict[str, str]] = {
    "en": {
        "day": "{day} is not one of your available days.",
        "time": "The current time ({time}) is outside your available time slots ({slots}).",
        "still_online": "You are online anyway.",
    },
    "nl": {
        "day": "{day} is geen van je beschikbare dagen.",
        "time": "Het huidige tijdstip ({time}) valt buiten je beschikbare tijdvakken ({slots}).",
        "still_online": "Je bent toch online.",
    },
}

_DAY_NAMES: dict[str, dict[Weekday, str]] = {
    "en": {
        Weekday.MONDAY: "Monday",
        Weekday.TUESDAY: "Tuesday",
        Weekday.WEDNESDAY: "Wednesday",
        Weekday.THURSDAY: "Thursday",
        Weekday.FRIDAY: "Friday",
        Weekday.SATURDAY: "Saturday",
        Weekday.SUNDAY: "Sunday",
    },
    "nl": {
        Weekday.MONDAY: "Maandag",
        Weekday.TUESDAY: "Dinsdag",
        Weekday.WEDNESDAY: "Woensdag",
        Weekday.THURSDAY: "Donderdag",
        Weekday.FRIDAY: "Vrijdag",
        Weekday.SATURDAY: "Zaterdag",
        Weekday.SUNDAY: "Zondag",
    },
}
