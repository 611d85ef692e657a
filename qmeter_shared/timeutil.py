from __future__ import annotations

import os
import re
from datetime import UTC, date, datetime, timedelta, tzinfo
from pathlib import Path

ROLLOVER_GRACE = timedelta(seconds=60)

_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
_MONTH_DAY_RE = re.compile(r"^([A-Za-z]{3})\s+(\d{1,2}),\s*(.+)$")
_CLOCK_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)$", re.IGNORECASE)


def iso_from_epoch_seconds(sec: float | None) -> datetime | None:
    if not sec or sec <= 0:
        return None
    return datetime.fromtimestamp(sec, tz=UTC)


def local_timezone_name() -> str:
    """Best-effort IANA name of the host time zone (e.g. ``Asia/Seoul``)."""
    env_tz = os.getenv("TZ", "").strip().lstrip(":")
    if env_tz:
        return env_tz
    localtime = Path("/etc/localtime")
    try:
        target = str(localtime.resolve(strict=True))
    except OSError:
        target = ""
    marker = "zoneinfo/"
    if marker in target:
        return target.split(marker, 1)[1]
    return datetime.now().astimezone().tzname() or "UTC"


def _localize(naive: datetime, tz: tzinfo | None) -> datetime:
    if tz is not None:
        return naive.replace(tzinfo=tz)
    return naive.astimezone()


def parse_local_reset_at(
    body: str,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> datetime | None:
    """Resolve a phrase like ``3am`` or ``Feb 28, 10:30pm`` to its next occurrence.

    The phrase is read as local wall time (``tz`` when given, otherwise the host
    zone). Times more than a minute in the past roll forward to the next day, or
    to the next year when a month and day were given. Returns a UTC datetime, or
    ``None`` when the phrase is not recognised.
    """
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.astimezone()
    local_now = current.astimezone(tz) if tz is not None else current.astimezone()

    month: int | None = None
    day: int | None = None
    time_part = body.strip()

    md = _MONTH_DAY_RE.match(time_part)
    if md:
        month = _MONTHS.get(md.group(1).lower())
        if month is None:
            return None
        day = int(md.group(2))
        time_part = md.group(3).strip()

    tm = _CLOCK_RE.match(time_part)
    if not tm:
        return None
    hour = int(tm.group(1))
    minute = int(tm.group(2)) if tm.group(2) else 0
    meridiem = tm.group(3).lower()
    if hour > 12 or minute > 59:
        return None
    if hour == 12:
        hour = 0 if meridiem == "am" else 12
    elif meridiem == "pm":
        hour += 12

    threshold = current - ROLLOVER_GRACE
    try:
        if month is not None and day is not None:
            candidate = _localize(datetime(local_now.year, month, day, hour, minute), tz)
            if candidate < threshold:
                candidate = _localize(datetime(local_now.year + 1, month, day, hour, minute), tz)
        else:
            today = local_now.date()
            candidate = _localize(datetime.combine(today, datetime.min.time()).replace(hour=hour, minute=minute), tz)
            if candidate < threshold:
                tomorrow: date = today + timedelta(days=1)
                candidate = _localize(
                    datetime.combine(tomorrow, datetime.min.time()).replace(hour=hour, minute=minute),
                    tz,
                )
    except ValueError:
        return None
    return candidate.astimezone(UTC)
