"""
Time helpers shared by the availability checker and the hold manager.

All stored instants are UTC. Working hours and break windows are wall-clock
"HH:mm" strings in the tenant's IANA time zone, so every comparison goes
through zoneinfo rather than a fixed UTC offset (weekday boundaries and DST
shift per zone).
"""

import re
from datetime import datetime, time, timezone
from typing import Iterable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

HHMM_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value) -> datetime | None:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Naive values are taken as UTC. Returns None when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def parse_hhmm(value: str) -> time | None:
    if not isinstance(value, str):
        return None
    match = HHMM_PATTERN.match(value.strip())
    if not match:
        return None
    return time(int(match.group(1)), int(match.group(2)))


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def get_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone: {tz_name}") from exc


def to_local(dt: datetime, tz_name: str) -> datetime:
    return ensure_utc(dt).astimezone(get_zone(tz_name))


def local_weekday(dt: datetime, tz_name: str) -> int:
    """Weekday of ``dt`` in ``tz_name`` with Sunday = 0 ... Saturday = 6."""
    return (to_local(dt, tz_name).weekday() + 1) % 7


def local_hhmm(dt: datetime, tz_name: str) -> str:
    return to_local(dt, tz_name).strftime("%H:%M")


def crosses_local_midnight(start: datetime, end: datetime, tz_name: str) -> bool:
    """True when the window ends on a later local calendar day than it starts."""
    return to_local(end, tz_name).date() > to_local(start, tz_name).date()


def is_within_working_hours(local_start: str, local_end: str, schedule_start: str, schedule_end: str) -> bool:
    """Start must fall in [open, close); the end may land exactly on close."""
    start = parse_hhmm(local_start)
    end = parse_hhmm(local_end)
    open_at = parse_hhmm(schedule_start)
    close_at = parse_hhmm(schedule_end)
    if None in (start, end, open_at, close_at):
        return False

    start_m, end_m = minutes_of_day(start), minutes_of_day(end)
    open_m, close_m = minutes_of_day(open_at), minutes_of_day(close_at)
    if not open_m <= start_m < close_m:
        return False
    return open_m < end_m <= close_m


def touches_break(local_start: str, local_end: str, break_windows: Iterable[Mapping]) -> bool:
    """True when the start or the end of the appointment falls inside a break."""
    start = parse_hhmm(local_start)
    end = parse_hhmm(local_end)
    if start is None or end is None:
        return False
    start_m, end_m = minutes_of_day(start), minutes_of_day(end)

    for window in break_windows or []:
        b_start = parse_hhmm(window.get("start", ""))
        b_end = parse_hhmm(window.get("end", ""))
        if b_start is None or b_end is None:
            continue
        b_start_m, b_end_m = minutes_of_day(b_start), minutes_of_day(b_end)
        if b_start_m <= start_m < b_end_m or b_start_m < end_m <= b_end_m:
            return True
    return False
