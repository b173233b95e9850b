from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from ldap3 import Connection

log = logging.getLogger(__name__)


def safe_unbind(conn: Connection | None) -> None:
    try:
        if conn:
            conn.unbind()
    except Exception:
        pass


class ConnectionPool:
    """Bound ldap3 connections for one principal, reused across calls.

    Connections idle for longer than `idle_timeout_s` are unbound on the next
    acquire instead of being handed out. A connection that raised during use
    is dropped, never returned to the pool.
    """

    def __init__(
        self,
        connect: Callable[[], Connection],
        *,
        idle_timeout_s: float = 60.0,
        max_idle: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._connect = connect
        self._idle_timeout_s = float(idle_timeout_s)
        self._max_idle = max(1, int(max_idle))
        self._clock = clock
        self._idle: list[tuple[Connection, float]] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    def add_idle(self, conn: Connection) -> None:
        """Hand an already bound connection to the pool."""
        self._release(conn)

    def _acquire(self) -> Connection:
        stale: list[Connection] = []
        conn: Connection | None = None
        now = self._clock()
        with self._lock:
            while self._idle:
                candidate, last_used = self._idle.pop()
                if now - last_used > self._idle_timeout_s:
                    stale.append(candidate)
                    continue
                conn = candidate
                break
            # anything older than the freshest connection is older still
            if conn is not None:
                keep = [(c, t) for c, t in self._idle if now - t <= self._idle_timeout_s]
                stale.extend(c for c, t in self._idle if now - t > self._idle_timeout_s)
                self._idle = keep

        for c in stale:
            safe_unbind(c)
        if stale:
            log.debug("Evicted %d idle LDAP connection(s)", len(stale))

        if conn is None:
            conn = self._connect()
        return conn

    def _release(self, conn: Connection) -> None:
        with self._lock:
            if not self._closed and len(self._idle) < self._max_idle:
                self._idle.append((conn, self._clock()))
                return
        safe_unbind(conn)

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        conn = self._acquire()
        ok = False
        try:
            yield conn
            ok = True
        finally:
            if ok:
                self._release(conn)
            else:
                safe_unbind(conn)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for conn, _ in idle:
            safe_unbind(conn)
