"""
Datetime helpers.

All timestamps are stored in UTC. SQLite hands back naive datetimes, so
anything read from the database or received from a client goes through
ensure_utc() before it is compared.
"""
from datetime import datetime, time, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_zone(name: Optional[str], default: Optional[str] = "UTC") -> Optional[tzinfo]:
    """Look up an IANA zone, falling back to `default`. None if neither exists."""
    for candidate in (name, default):
        if not candidate:
            continue
        if candidate.upper() == "UTC":
            return timezone.utc
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            continue
    return None


def parse_hhmm(value: str) -> Optional[time]:
    """Parse a 24-hour "HH:MM" string. None if malformed."""
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return time(hour, minute)
