from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List

from ..ad_utils import split_group_dns

if TYPE_CHECKING:
    from .pool import ConnectionPool


@dataclass
class ADConfig:
    url: str  # ldap://dc1.example.com:389 or ldaps://dc1.example.com:636
    base_dn: str
    service_user: str
    service_password: str
    auth_group: str = ""  # ';' separated group DNs, empty disables the check
    starttls: bool = False
    tls_validate: bool = False
    connect_timeout_ms: int = 500
    read_timeout_ms: int = 5000
    pool_timeout_s: int = 60

    @property
    def required_groups(self) -> list[str]:
        return split_group_dns(self.auth_group)

    @property
    def connect_timeout_s(self) -> float:
        return max(0.001, self.connect_timeout_ms / 1000.0)

    @property
    def read_timeout_s(self) -> int:
        # ldap3 takes whole seconds for receive_timeout
        return max(1, round(self.read_timeout_ms / 1000.0))


@dataclass
class Identity:
    """An authenticated directory principal and its pooled bound connections."""

    dn: str
    sam: str
    member_of: List[str]
    pool: "ConnectionPool" = field(repr=False)
    # Serializes attribute modifications made on behalf of this identity.
    modify_lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def close(self) -> None:
        self.pool.close()
