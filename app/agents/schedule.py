"""Cadence arithmetic for agent schedules.

All results are timezone-aware UTC datetimes. Calendar cadences land on
09:00 in the schedule's local timezone so check-ins arrive during the working
day regardless of where the company is.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..core.errors import ValidationError
from .schemas import CADENCES, AgentSchedule

DISPATCH_HOUR = time(9, 0)
ONCE_DELAY = timedelta(hours=1)


def resolve_timezone(name: str) -> ZoneInfo:
    """Return the :class:`ZoneInfo` for ``name`` or raise ``ValidationError``."""

    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone '{name}'", field="timezone") from exc


def validate_cadence(cadence: str) -> str:
    if cadence not in CADENCES:
        raise ValidationError(f"Unknown cadence '{cadence}'", field="cadence")
    return cadence


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _at_dispatch_hour(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, DISPATCH_HOUR, tzinfo=tz).astimezone(timezone.utc)


def _first_of_next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def next_run(cadence: str, from_ts: datetime, tz_name: str) -> datetime:
    """Compute the next trigger time for ``cadence`` after ``from_ts``.

    ``once`` defers by one hour so an admin can still cancel. ``weekly``
    always moves to the *next* Monday: running on a Monday schedules the
    following one, seven days later.
    """

    validate_cadence(cadence)
    tz = resolve_timezone(tz_name)
    start = _as_utc(from_ts)
    if cadence == "once":
        return start + ONCE_DELAY

    local_day = start.astimezone(tz).date()
    if cadence == "daily":
        return _at_dispatch_hour(local_day + timedelta(days=1), tz)
    if cadence == "weekly":
        days_until_monday = (7 - local_day.weekday()) % 7 or 7
        return _at_dispatch_hour(local_day + timedelta(days=days_until_monday), tz)
    if cadence == "biweekly":
        return _at_dispatch_hour(local_day + timedelta(days=14), tz)
    return _at_dispatch_hour(_first_of_next_month(local_day), tz)


def is_due(schedule: AgentSchedule, now: datetime) -> bool:
    """Return whether ``schedule`` should fire at ``now``."""

    return schedule.is_active and _as_utc(schedule.next_run_at) <= _as_utc(now)


__all__ = ["is_due", "next_run", "resolve_timezone", "validate_cadence"]
