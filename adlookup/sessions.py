"""Channel and login bookkeeping.

A channel is one client connection. A login context (authenticated identity +
coverage cache) is stored under the id of the channel that created it; that id
doubles as the token a reconnecting client presents to reattach.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Optional, TypeVar

from .ad import Identity
from .coverage import CoverageCache
from .errors import InvalidToken

log = logging.getLogger(__name__)

# 36-char channel id wrapped in quotes, as the client echoes it back.
TOKEN_LENGTH = 38

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ExpiringStore(Generic[K, V]):
    """Map whose entries expire after `ttl_s` without access (sliding expiration)."""

    def __init__(
        self,
        ttl_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_expire: Optional[Callable[[K, V], None]] = None,
    ) -> None:
        self.ttl_s = float(ttl_s)
        self._clock = clock
        self._on_expire = on_expire
        self._items: dict[K, tuple[V, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _expired(self, deadline: float, now: float) -> bool:
        return now >= deadline

    def _notify(self, expired: list[tuple[K, V]]) -> None:
        if self._on_expire is None:
            return
        for k, v in expired:
            self._on_expire(k, v)

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._items[key] = (value, self._clock() + self.ttl_s)

    def get(self, key: K) -> Optional[V]:
        """Return the live value and push its deadline forward."""
        expired: list[tuple[K, V]] = []
        value: Optional[V] = None
        with self._lock:
            item = self._items.get(key)
            if item is not None:
                now = self._clock()
                if self._expired(item[1], now):
                    del self._items[key]
                    expired.append((key, item[0]))
                else:
                    value = item[0]
                    self._items[key] = (value, now + self.ttl_s)
        self._notify(expired)
        return value

    def pop(self, key: K) -> Optional[V]:
        """Remove and return the live value (without calling on_expire)."""
        expired: list[tuple[K, V]] = []
        value: Optional[V] = None
        with self._lock:
            item = self._items.pop(key, None)
            if item is not None:
                if self._expired(item[1], self._clock()):
                    expired.append((key, item[0]))
                else:
                    value = item[0]
        self._notify(expired)
        return value

    def values(self) -> list[V]:
        """Live values, without refreshing them."""
        now = self._clock()
        with self._lock:
            return [v for v, deadline in self._items.values() if not self._expired(deadline, now)]

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [(k, v) for k, (v, deadline) in self._items.items() if self._expired(deadline, now)]
            for k, _ in expired:
                del self._items[k]
        self._notify(expired)
        return len(expired)


@dataclass
class Channel:
    id: str
    sender: Optional[Callable[[dict], None]] = field(default=None, repr=False)

    def send(self, message: dict) -> bool:
        if self.sender is None:
            return False
        try:
            self.sender(message)
            return True
        except Exception:
            log.warning("Send to channel %s failed", self.id, exc_info=True)
            return False


@dataclass
class LoginContext:
    identity: Identity
    coverage: CoverageCache = field(default_factory=CoverageCache)

    def close(self) -> None:
        self.coverage.clear()
        self.identity.close()


class SessionRegistry:
    def __init__(
        self,
        authenticate: Callable[[str, str], Identity],
        *,
        timeout_s: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._authenticate = authenticate
        self._channels: dict[str, Channel] = {}
        self._channels_lock = threading.Lock()
        self._logins: ExpiringStore[str, LoginContext] = ExpiringStore(
            timeout_s, clock=clock, on_expire=self._on_expire,
        )
        # Serializes moves of a login between channel ids.
        self._move_lock = threading.Lock()

    @property
    def timeout_s(self) -> float:
        return self._logins.ttl_s

    @staticmethod
    def _on_expire(channel_id: str, ctx: LoginContext) -> None:
        log.info("Login for %s (channel %s) expired", ctx.identity.dn, channel_id)
        ctx.close()

    # ---------------------------
    # Channels
    # ---------------------------

    def open(self, channel_id: str, sender: Optional[Callable[[dict], None]] = None) -> Channel:
        ch = Channel(id=channel_id, sender=sender)
        with self._channels_lock:
            self._channels[channel_id] = ch
        return ch

    def close(self, channel_id: str) -> None:
        """Forget the channel; its login stays available to a token login."""
        with self._channels_lock:
            self._channels.pop(channel_id, None)

    def channel(self, channel_id: str) -> Optional[Channel]:
        with self._channels_lock:
            return self._channels.get(channel_id)

    def channels(self) -> list[Channel]:
        with self._channels_lock:
            return list(self._channels.values())

    # ---------------------------
    # Logins
    # ---------------------------

    def _attach(self, channel_id: str, ctx: LoginContext) -> None:
        previous = self._logins.pop(channel_id)
        self._logins.put(channel_id, ctx)
        if previous is not None and previous is not ctx:
            previous.close()

    def login(self, channel_id: str, username: str, password: str) -> LoginContext:
        """Authenticate and attach a new login to the channel. Raises AuthError."""
        identity = self._authenticate(username, password)
        ctx = LoginContext(identity=identity)
        with self._move_lock:
            self._attach(channel_id, ctx)
        return ctx

    def login_by_token(self, channel_id: str, token: str) -> LoginContext:
        """Move the login stored under `token` to `channel_id` and forget the old channel.

        Raises InvalidToken.
        """
        if not token or len(token) != TOKEN_LENGTH:
            raise InvalidToken("token has an invalid size")
        old_id = token[1:-1]

        with self._move_lock:
            ctx = self._logins.pop(old_id)
            if ctx is None:
                raise InvalidToken("no login for token")
            self._attach(channel_id, ctx)
        if old_id != channel_id:
            # the old channel no longer gets broadcasts or replies
            self.close(old_id)
        log.info("Login for %s moved from %s to %s", ctx.identity.dn, old_id, channel_id)
        return ctx

    def logout(self, channel_id: str) -> None:
        with self._move_lock:
            ctx = self._logins.pop(channel_id)
        if ctx is not None:
            log.info("Logout for %s", ctx.identity.dn)
            ctx.close()

    def context(self, channel_id: str) -> Optional[LoginContext]:
        return self._logins.get(channel_id)

    def touch(self, channel_id: str) -> bool:
        return self._logins.get(channel_id) is not None

    # ---------------------------
    # Housekeeping
    # ---------------------------

    def sweep(self) -> int:
        return self._logins.sweep()

    def clear_coverage(self) -> int:
        contexts = self._logins.values()
        for ctx in contexts:
            ctx.coverage.clear()
        return len(contexts)
