from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# 03/14/2025 09:26:53 AM
DISPLAY_FORMAT = "%m/%d/%Y %I:%M:%S %p"


def _tz_name() -> str:
    """Preferred TZ name from environment (Docker/Unix TZ)."""
    return (os.getenv("TZ") or "UTC").strip() or "UTC"


def get_local_tzinfo():
    """Return tzinfo for local display; UTC when the zone is unknown."""
    name = _tz_name()
    if name.upper() in {"UTC", "GMT", "ETC/UTC", "ETC/GMT"}:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


LOCAL_TZ = get_local_tzinfo()


def to_local_dt(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert a timestamp to local tz. Naive datetimes are treated as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(LOCAL_TZ)
    except (OverflowError, ValueError):
        return dt


def format_local(dt: Optional[datetime], fmt: str = DISPLAY_FORMAT) -> str:
    local = to_local_dt(dt)
    if local is None:
        return ""
    return local.strftime(fmt)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, truncated toward zero."""
    return int((end - start) / timedelta(days=1))
