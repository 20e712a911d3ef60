from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timezone

from cleanops.constants import WEEKDAYS

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d)?$")
_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(h|m|min)?$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def weekday_name(value: date) -> str:
    return WEEKDAYS[value.weekday()]


def normalize_time(raw: str) -> str:
    """Return ``HH:mm`` for ``HH:mm`` or ``HH:mm:ss`` input."""
    value = str(raw).strip()
    if not _TIME_RE.match(value):
        raise ValueError(f"Invalid time of day: {raw!r}")
    return value[:5]


def time_to_minutes(raw: str) -> int:
    hours, minutes = normalize_time(raw).split(":")
    return int(hours) * 60 + int(minutes)


def parse_duration_minutes(raw: object) -> int:
    """Accept minutes as int, or strings like ``"90"``, ``"2h"``, ``"1.5h"``, ``"45m"``.

    Bare numbers are minutes.
    """
    if isinstance(raw, bool):
        raise ValueError(f"Invalid duration: {raw!r}")
    if isinstance(raw, (int, float)):
        minutes = int(round(raw))
    else:
        match = _DURATION_RE.match(str(raw).strip().lower())
        if not match:
            raise ValueError(f"Invalid duration: {raw!r}")
        amount = float(match.group(1))
        minutes = int(round(amount * 60)) if match.group(2) == "h" else int(round(amount))
    if minutes <= 0:
        raise ValueError(f"Duration must be positive: {raw!r}")
    return minutes


def booking_window(start_time: str, duration_minutes: int) -> tuple[int, int]:
    start = time_to_minutes(start_time)
    return start, start + duration_minutes


def windows_overlap(first: tuple[int, int], second: tuple[int, int]) -> bool:
    # half-open: [s1, e1) and [s2, e2)
    return first[0] < second[1] and second[0] < first[1]


def month_bounds(value: date) -> tuple[date, date]:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=1), value.replace(day=last_day)
