from __future__ import annotations

import logging
import ssl
from typing import Any, Iterable

from ldap3 import (
    Server,
    Connection,
    NONE,
    SUBTREE,
    SYNC,
    Tls,
    MODIFY_REPLACE,
)
from ldap3.core.exceptions import LDAPException

from ..errors import DirectoryUnavailable, InvalidCredentials, NotFound, Unauthorized
from .models import ADConfig, Identity
from .pool import ConnectionPool, safe_unbind
from .utils import escape_ldap_filter_value

log = logging.getLogger(__name__)

# Marker for attributes that are absent or carry no values.
NOT_AVAILABLE = "N/A"

# lockoutTime value meaning "not locked"
UNLOCKED_LOCKOUT_TIME = "0"


def _decode(v: Any) -> str:
    if isinstance(v, (bytes, bytearray)):
        return bytes(v).decode("utf-8", errors="replace")
    return str(v)


def _raw_attrs(entry) -> dict[str, list[str]]:
    """Raw (schema-unformatted) attribute values keyed by lower-cased name.

    File-time attributes must stay integers, so ldap3's formatters are bypassed.
    """
    out: dict[str, list[str]] = {}
    for k, vals in (entry.entry_raw_attributes or {}).items():
        items = vals if isinstance(vals, (list, tuple)) else [vals]
        out[str(k).lower()] = [_decode(v) for v in items if v is not None]
    return out


class ADClient:
    """Directory gateway: login against AD and per-identity lookups/modifications."""

    def __init__(self, cfg: ADConfig, *, client_strategy: str = SYNC, server: Server | None = None) -> None:
        self.cfg = cfg
        self.client_strategy = client_strategy
        if server is None:
            tls = Tls(validate=ssl.CERT_REQUIRED if cfg.tls_validate else ssl.CERT_NONE)
            server = Server(
                cfg.url,
                get_info=NONE,
                tls=tls,
                connect_timeout=cfg.connect_timeout_s,
            )
        self.server = server

    def _conn(self, user: str, password: str) -> Connection:
        conn = Connection(
            self.server,
            user=user,
            password=password,
            auto_bind=False,
            client_strategy=self.client_strategy,
            receive_timeout=self.cfg.read_timeout_s,
        )
        conn.open()
        if self.cfg.starttls:
            conn.start_tls()
        return conn

    def _bind_or_raise(self, user: str, password: str, exc_type: type[Exception]) -> Connection:
        conn = self._conn(user, password)
        try:
            ok = bool(conn.bind())
        except LDAPException:
            safe_unbind(conn)
            raise
        if not ok:
            res = dict(conn.result or {})
            safe_unbind(conn)
            raise exc_type(f"bind rejected for {user!r}: {res.get('description', 'unknown error')}")
        return conn

    @staticmethod
    def _user_filter(login: str) -> str:
        return f"(&(objectClass=user)(sAMAccountName={escape_ldap_filter_value(login)}))"

    def _find_user(self, conn: Connection, login: str, attributes: list[str]):
        ok = conn.search(
            search_base=self.cfg.base_dn,
            search_filter=self._user_filter(login),
            search_scope=SUBTREE,
            attributes=attributes,
            size_limit=1,
        )
        if not ok or not conn.entries:
            return None
        return conn.entries[0]

    def service_bind(self) -> tuple[bool, dict]:
        """Check that the service identity can bind (used at startup)."""
        conn: Connection | None = None
        try:
            conn = self._conn(self.cfg.service_user, self.cfg.service_password)
            ok = bool(conn.bind())
            return ok, dict(conn.result or {})
        except LDAPException as e:
            return False, {"description": str(e)}
        finally:
            safe_unbind(conn)

    def authenticate(self, username: str, password: str) -> Identity:
        """Full login procedure.

        1) bind with the service identity and find the account by sAMAccountName
        2) check membership in the required group(s)
        3) bind as the account itself: this is the actual password check

        Raises NotFound, Unauthorized, InvalidCredentials or DirectoryUnavailable.
        """
        login = (username or "").strip()
        # An empty password turns a simple bind into an anonymous one.
        if not login or not password:
            raise InvalidCredentials("empty username or password")

        conn: Connection | None = None
        try:
            conn = self._bind_or_raise(self.cfg.service_user, self.cfg.service_password, DirectoryUnavailable)
            entry = self._find_user(conn, login, ["sAMAccountName", "memberOf"])
            if entry is None:
                raise NotFound(f"no account with sAMAccountName={login!r}")
            dn = str(entry.entry_dn)
            attrs = _raw_attrs(entry)
        except LDAPException as e:
            raise DirectoryUnavailable(f"service lookup failed: {e}") from e
        finally:
            safe_unbind(conn)

        sam = (attrs.get("samaccountname") or [login])[0]
        member_of = list(attrs.get("memberof") or [])

        required = self.cfg.required_groups
        if required:
            user_groups = {g.lower() for g in member_of}
            if not any(g.lower() in user_groups for g in required):
                raise Unauthorized(f"{dn!r} is not a member of the required group")

        try:
            user_conn = self._bind_or_raise(dn, password, InvalidCredentials)
        except LDAPException as e:
            raise DirectoryUnavailable(f"user bind failed: {e}") from e

        pool = ConnectionPool(
            lambda: self._bind_or_raise(dn, password, DirectoryUnavailable),
            idle_timeout_s=self.cfg.pool_timeout_s,
        )
        pool.add_idle(user_conn)
        log.info("Authenticated %s", dn)
        return Identity(dn=dn, sam=sam, member_of=member_of, pool=pool)

    def search(self, identity: Identity, attributes: Iterable[str], username: str) -> dict[str, str] | None:
        """Read attributes of one account using the identity's own connections.

        Multiple values are joined with a newline; absent/empty attributes map to "N/A".
        Returns None when the account is not found.
        """
        names = list(attributes)
        login = (username or "").strip()
        if not login:
            return None

        try:
            with identity.pool.connection() as conn:
                entry = self._find_user(conn, login, names)
                raw = _raw_attrs(entry) if entry is not None else None
        except LDAPException as e:
            raise DirectoryUnavailable(f"search for {login!r} failed: {e}") from e

        if raw is None:
            return None

        out: dict[str, str] = {}
        for name in names:
            joined = "\n".join(raw.get(name.lower()) or [])
            out[name] = joined if joined else NOT_AVAILABLE
        return out

    def set_attribute(self, identity: Identity, username: str, attribute: str, value: str) -> bool:
        """Replace a single attribute of an account. Returns False on any failure."""
        login = (username or "").strip()
        if not login:
            return False

        with identity.modify_lock:
            try:
                with identity.pool.connection() as conn:
                    entry = self._find_user(conn, login, ["distinguishedName"])
                    if entry is None:
                        log.info("Modify %s: account %r not found", attribute, login)
                        return False
                    dn = str(entry.entry_dn)
                    ok = bool(conn.modify(dn, {attribute: [(MODIFY_REPLACE, [value])]}))
                    if not ok:
                        res = dict(conn.result or {})
                        log.warning("Modify %s on %s failed: %s", attribute, dn, res.get("description", "unknown error"))
                    return ok
            except (LDAPException, DirectoryUnavailable):
                log.warning("Modify %s for %r failed", attribute, login, exc_info=True)
                return False

    def unlock_user(self, identity: Identity, username: str) -> bool:
        """Unlock an account (reset lockoutTime to 0)."""
        return self.set_attribute(identity, username, "lockoutTime", UNLOCKED_LOCKOUT_TIME)
