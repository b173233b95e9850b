from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

# AD stores "never" as either 0 or the max signed 64-bit value.
FILETIME_NEVER = ("0", "9223372036854775807")

_FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)


def escape_ldap_filter_value(value: str) -> str:
    """RFC 4515 escaping for LDAP filter values."""
    out: list[str] = []
    for ch in value:
        if ch == "\\":
            out.append("\\5c")
        elif ch == "*":
            out.append("\\2a")
        elif ch == "(":
            out.append("\\28")
        elif ch == ")":
            out.append("\\29")
        elif ch == "\x00":
            out.append("\\00")
        else:
            out.append(ch)
    return "".join(out)


def is_filetime_never(v: Any) -> bool:
    return str(v if v is not None else "").strip() in FILETIME_NEVER


def filetime_to_datetime(v: Any) -> datetime | None:
    """Convert Windows FILETIME (100ns since 1601-01-01 UTC) to an aware datetime.

    Returns None for "never" markers and for anything that is not a valid tick count.
    """
    try:
        n = int(str(v).strip())
    except (TypeError, ValueError):
        return None
    if n <= 0 or is_filetime_never(n):
        return None
    try:
        return _FILETIME_EPOCH + timedelta(microseconds=n // 10)
    except OverflowError:
        return None
