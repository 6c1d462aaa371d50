"""
Calendar-day arithmetic in a civil timezone.

Timestamps are stored in UTC, but a package's age is billed by the date a
wall clock in the mail center shows. Every "which day is this" question in
the backend goes through this module so nothing slices ISO strings on its
own. All functions accept an explicit ``as_of`` wherever "now" matters.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import DEFAULT_TIMEZONE
from app.errors import MalformedInstantError, ValidationError

Instant = Union[datetime, date, str]

_DATE_ONLY = re.compile(r"^(\d{4}-\d{2}-\d{2}|\d{8})$")


@lru_cache(maxsize=32)
def get_zone(tz: str) -> ZoneInfo:
    """Resolve an IANA timezone name, raising ValidationError if unknown."""
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz!r}")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_calendar_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise MalformedInstantError(value, f"Not a valid calendar day: {value!r}")


def parse_instant(value: Instant, tz: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Normalize a timestamp to an aware UTC datetime.

    Accepts:
    - aware datetimes (converted to UTC)
    - naive datetimes (taken to already be UTC, which is how rows are captured)
    - ISO-8601 strings with ``Z`` or an explicit offset; strings without an
      offset are taken as UTC
    - date-only values (``date``, ``"YYYY-MM-DD"`` or ``"YYYYMMDD"``), read as
      local midnight in ``tz``

    Raises:
        MalformedInstantError: if the value cannot be interpreted.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return start_of_calendar_day(value, tz)

    if not isinstance(value, str):
        raise MalformedInstantError(value)

    text = value.strip()
    if not text:
        raise MalformedInstantError(value)

    if _DATE_ONLY.match(text):
        return start_of_calendar_day(_parse_calendar_day(text), tz)

    # Postgres returns "2025-12-10 01:00:00+00"; fromisoformat wants a full offset.
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    elif re.search(r"[+-]\d{2}$", text):
        text = text + ":00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise MalformedInstantError(value)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_calendar_day(instant: Instant, tz: str = DEFAULT_TIMEZONE) -> str:
    """
    Return the ``YYYY-MM-DD`` date a wall clock in ``tz`` shows at ``instant``.

    A date-only string is already a calendar day and is returned as-is (the
    compact ``YYYYMMDD`` form gets its dashes back), so "2025-12-09" never
    drifts to the 8th by being read as UTC midnight.
    """
    if isinstance(instant, str) and _DATE_ONLY.match(instant.strip()):
        return _parse_calendar_day(instant.strip()).isoformat()
    if isinstance(instant, date) and not isinstance(instant, datetime):
        return instant.isoformat()
    return parse_instant(instant, tz).astimezone(get_zone(tz)).date().isoformat()


def _as_date(day: Union[str, date, datetime], tz: str) -> date:
    if isinstance(day, datetime):
        return date.fromisoformat(to_calendar_day(day, tz))
    if isinstance(day, date):
        return day
    return date.fromisoformat(to_calendar_day(day, tz))


def start_of_calendar_day(day: Union[str, date], tz: str = DEFAULT_TIMEZONE) -> datetime:
    """First instant (local 00:00) of a calendar day, as a UTC datetime."""
    local_midnight = datetime.combine(_as_date(day, tz), time(0), tzinfo=get_zone(tz))
    return local_midnight.astimezone(timezone.utc)


def end_of_calendar_day(day: Union[str, date], tz: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Last instant (local 23:59:59.999) of a calendar day, as a UTC datetime.

    Derived from the next day's midnight so 23- and 25-hour DST days are
    covered exactly.
    """
    next_day = _as_date(day, tz) + timedelta(days=1)
    return start_of_calendar_day(next_day, tz) - timedelta(milliseconds=1)


def calendar_days_elapsed(
    from_instant: Instant,
    to_instant: Instant,
    tz: str = DEFAULT_TIMEZONE,
) -> int:
    """
    Whole calendar days between two instants as observed in ``tz``.

    Both instants are projected to their local dates first and the dates are
    differenced, so 11:59 PM -> 12:01 AM is one day and 8 AM -> 11 PM on the
    same date is zero, regardless of DST. Negative when ``to_instant`` falls
    on an earlier local day.
    """
    start = date.fromisoformat(to_calendar_day(from_instant, tz))
    end = date.fromisoformat(to_calendar_day(to_instant, tz))
    return (end - start).days


def is_same_calendar_day(a: Instant, b: Instant, tz: str = DEFAULT_TIMEZONE) -> bool:
    return to_calendar_day(a, tz) == to_calendar_day(b, tz)


def is_before_calendar_day(a: Instant, b: Instant, tz: str = DEFAULT_TIMEZONE) -> bool:
    """True when ``a`` falls on an earlier local date than ``b``."""
    return to_calendar_day(a, tz) < to_calendar_day(b, tz)


def is_after_calendar_day(a: Instant, b: Instant, tz: str = DEFAULT_TIMEZONE) -> bool:
    """True when ``a`` falls on a later local date than ``b``."""
    return to_calendar_day(a, tz) > to_calendar_day(b, tz)


def now_as_calendar_day(tz: str = DEFAULT_TIMEZONE, as_of: Optional[Instant] = None) -> str:
    return to_calendar_day(as_of if as_of is not None else utc_now(), tz)


def days_ago_as_calendar_day(
    days: int,
    tz: str = DEFAULT_TIMEZONE,
    as_of: Optional[Instant] = None,
) -> str:
    """Calendar day ``days`` local dates before today (or before ``as_of``)."""
    today = date.fromisoformat(now_as_calendar_day(tz, as_of))
    return (today - timedelta(days=days)).isoformat()


def is_today(instant: Instant, tz: str = DEFAULT_TIMEZONE, as_of: Optional[Instant] = None) -> bool:
    return to_calendar_day(instant, tz) == now_as_calendar_day(tz, as_of)


def chart_day_range(
    days: int,
    tz: str = DEFAULT_TIMEZONE,
    as_of: Optional[Instant] = None,
) -> List[Tuple[str, str]]:
    """
    The last ``days`` calendar days ending today, oldest first.

    Each entry is ``(calendar_day, label)`` with a short label such as
    ``"Dec 9"`` for chart axes.
    """
    today = date.fromisoformat(now_as_calendar_day(tz, as_of))
    result = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        result.append((day.isoformat(), f"{day:%b} {day.day}"))
    return result


def format_for_persistence(instant: Instant, tz: str = DEFAULT_TIMEZONE) -> str:
    """
    ISO-8601 string carrying the local offset, e.g. ``2025-12-09T20:30:45.000-05:00``.

    The date column in the database takes offsets literally; a ``Z`` string
    would put late-evening rows on the next day in reports.
    """
    local = parse_instant(instant, tz).astimezone(get_zone(tz))
    return local.isoformat(timespec="milliseconds")


def format_for_display(instant: Instant, tz: str = DEFAULT_TIMEZONE) -> str:
    """Human-readable local time, e.g. ``Dec 9, 2025, 8:00 PM``."""
    local = parse_instant(instant, tz).astimezone(get_zone(tz))
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local:%b} {local.day}, {local.year}, {hour}:{local.minute:02d} {meridiem}"
