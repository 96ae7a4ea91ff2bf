"""Timestamp normalisation helpers.

All business logic works on timezone-aware UTC datetimes. SQLite hands back
naive values, so anything read from storage goes through ``coerce_utc``.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def coerce_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


def facility_zone(timezone_name: str | None) -> ZoneInfo:
    """Return the facility zone, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(timezone_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_date(dt: datetime, timezone_name: str | None) -> date:
    return coerce_utc(dt).astimezone(facility_zone(timezone_name)).date()
