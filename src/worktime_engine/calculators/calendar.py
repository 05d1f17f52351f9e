"""Mapping instants onto local calendar days and ISO weeks."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def local_date(instant: datetime, zone: ZoneInfo) -> date:
    """Calendar date of ``instant`` in ``zone``."""
    return instant.astimezone(zone).date()


def day_bounds(day: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC instants ``[start, end)`` covering local ``day``."""
    start = datetime.combine(day, time(0, 0), tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def week_bounds(day: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC instants covering the ISO week (Monday to Sunday) containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    start, _ = day_bounds(monday, zone)
    end, _ = day_bounds(monday + timedelta(days=7), zone)
    return start, end
