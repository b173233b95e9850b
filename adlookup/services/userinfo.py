from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from ..ad import NOT_AVAILABLE
from ..ad.utils import filetime_to_datetime, is_filetime_never
from ..timezone_utils import days_between, format_local
from ..utils import dn_first_component_value

# Attributes read from AD for a user info request (order matters for the UI).
USER_ATTRIBUTES = [
    "badPasswordTime",
    "lastLogon",
    "pwdLastSet",
    "accountExpires",
    "employeeID",
    "displayName",
    "otherMailbox",
    "mailNickname",
    "lockoutTime",
    "badPwdCount",
    "memberOf",
    "userPrincipalName",
    "userAccountControl",
]

# ADS_UF_DONT_EXPIRE_PASSWD
DONT_EXPIRE_PASSWORD = 0x00010000

NEVER = "Never"
INFINITY = "∞"

_FILETIME_ATTRIBUTES = {"badPasswordTime", "lastLogon", "pwdLastSet", "accountExpires"}
# Read for computing other fields, not sent on their own.
_INTERNAL_ATTRIBUTES = {"userPrincipalName", "userAccountControl"}


def format_filetime(v: Any) -> str:
    if is_filetime_never(v):
        return NEVER
    dt = filetime_to_datetime(v)
    return format_local(dt) if dt is not None else NOT_AVAILABLE


def _parse_uac(v: Any) -> int:
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return 0


def password_expiry(pwd_last_set: Any, uac: int, duration_days: int, now: datetime) -> tuple[str, str]:
    """(expiry date, days left) for the password, or (Never, ∞) when it cannot expire."""
    if uac & DONT_EXPIRE_PASSWORD:
        return NEVER, INFINITY
    set_at = filetime_to_datetime(pwd_last_set)
    if set_at is None:
        return NEVER, INFINITY
    expires = set_at + timedelta(days=duration_days)
    return format_local(expires), str(days_between(now, expires))


def group_names(member_of: str) -> list[str]:
    if not member_of or member_of == NOT_AVAILABLE:
        return []
    return [dn_first_component_value(dn) for dn in member_of.split("\n") if dn.strip()]


def mail_address(alias: str, upn: str, mail_domain: str) -> str:
    if alias and alias != NOT_AVAILABLE:
        return f"{alias}{mail_domain}"
    return upn or NOT_AVAILABLE


def build_user_info(
    values: Mapping[str, str],
    *,
    pwd_duration_days: int,
    mail_domain: str = "",
    now: datetime | None = None,
) -> dict[str, Any]:
    """Turn the raw attribute map from ADClient.search into the `userinfo` message."""
    now = now or datetime.now(timezone.utc)

    expires, days_left = password_expiry(
        values.get("pwdLastSet"),
        _parse_uac(values.get("userAccountControl")),
        pwd_duration_days,
        now,
    )

    out: dict[str, Any] = {}
    for name in USER_ATTRIBUTES:
        if name in _INTERNAL_ATTRIBUTES:
            continue
        v: Any = values.get(name) or NOT_AVAILABLE
        if name in _FILETIME_ATTRIBUTES:
            v = format_filetime(v)
        elif name == "mailNickname":
            v = mail_address(v, values.get("userPrincipalName") or "", mail_domain)
        elif name == "memberOf":
            v = group_names(v)
        out[name.lower()] = v

    out["action"] = "userinfo"
    out["daysleft"] = days_left
    out["passwordsettoexpire"] = expires
    return out
