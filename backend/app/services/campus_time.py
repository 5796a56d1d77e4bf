from __future__ import annotations

from datetime import date, datetime, time, timezone
import re
from zoneinfo import ZoneInfo

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def campus_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def to_local(value: datetime, zone: ZoneInfo) -> datetime:
    return as_utc(value).astimezone(zone)


def weekday_index(local_value: datetime) -> int:
    """0 = Sunday ... 6 = Saturday, matching TimetableSlot.day_of_week."""
    return local_value.isoweekday() % 7


def format_hhmm(local_value: datetime) -> str:
    return local_value.strftime("%H:%M")


def format_clock(value: datetime, zone: ZoneInfo) -> str:
    return to_local(value, zone).strftime("%I:%M %p").lstrip("0")


def parse_hhmm(value: str) -> time:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def local_day_cutoff(day: date, cutoff: str, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, parse_hhmm(cutoff), tzinfo=zone)


def local_day_bounds(day: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day, time.max, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
