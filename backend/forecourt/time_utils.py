from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """JSON-safe decimal rendering (never a float)."""
    if value is None:
        return None
    return format(value, "f")
