"""UTC timestamp helpers shared by the store, transformer and sync engine.

All timestamps crossing a module boundary are ISO-8601 strings in UTC with
millisecond precision and a trailing "Z", e.g. "2024-01-01T00:00:00.000Z".
"""
from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime, timespec: str = "milliseconds") -> str:
    """Render an aware (or naive-as-UTC) datetime as an ISO-8601 UTC string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec=timespec).replace("+00:00", "Z")


def now_iso(timespec: str = "milliseconds") -> str:
    return to_iso(utcnow(), timespec=timespec)


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Accepts a trailing "Z", explicit offsets, a space instead of "T", and
    date-only strings (midnight UTC). Returns None for anything unparsable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
