"""Action messages in, action messages out.

The transport hands every raw message to `Dispatcher.handle`. Validation runs
on the caller's thread, the action itself on the worker pool. Replies carry
an action tag and payload, never error details.
"""
from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Optional

from .ad import ADClient
from .errors import AuthError, DirectoryUnavailable, InvalidToken, MalformedRequest
from .services import USER_ATTRIBUTES, SearchCoordinator, build_user_info
from .sessions import Channel, SessionRegistry

log = logging.getLogger(__name__)


def _decode(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise MalformedRequest(f"unsupported message type {type(raw).__name__}")
    try:
        msg = json.loads(raw)
    except ValueError as e:
        raise MalformedRequest(f"invalid JSON: {e}") from e
    if not isinstance(msg, dict):
        raise MalformedRequest("message is not an object")
    return msg


def _str_field(msg: dict, name: str) -> str:
    v = msg.get(name)
    if not isinstance(v, str):
        raise MalformedRequest(f"field {name!r} missing or not a string")
    return v


def _int_field(msg: dict, name: str) -> int:
    v = msg.get(name)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise MalformedRequest(f"field {name!r} missing or not a number")
    return int(v)


class Dispatcher:
    def __init__(
        self,
        registry: SessionRegistry,
        gateway: ADClient,
        coordinator: SearchCoordinator,
        *,
        pwd_duration_days: int = 143,
        mail_domain: str = "",
        executor: Optional[ThreadPoolExecutor] = None,
        workers: int = 16,
    ) -> None:
        self.registry = registry
        self.gateway = gateway
        self.coordinator = coordinator
        self.pwd_duration_days = pwd_duration_days
        self.mail_domain = mail_domain
        self._executor = executor or ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="adlookup")

    # ---------------------------
    # Transport-facing surface
    # ---------------------------

    def open(self, channel_id: str, sender: Optional[Callable[[dict], None]] = None) -> Channel:
        return self.registry.open(channel_id, sender)

    def close(self, channel_id: str) -> None:
        self.registry.close(channel_id)

    def handle(self, channel_id: str, raw: Any) -> Optional[Future]:
        """Validate one inbound message and schedule it. Returns None if rejected."""
        try:
            msg = _decode(raw)
            action = _str_field(msg, "action")
            job = self._prepare(channel_id, action, msg)
        except MalformedRequest as e:
            log.warning("Rejected message on channel %s: %s", channel_id, e)
            return None
        return self._executor.submit(self._run, action, channel_id, job)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _prepare(self, channel_id: str, action: str, msg: dict) -> Callable[[], None]:
        if action == "login":
            return partial(self.login, channel_id, _str_field(msg, "username"), _str_field(msg, "password"))
        if action == "cachedlogin":
            if "token" not in msg:
                raise MalformedRequest("field 'token' missing")
            # The token is checked in its JSON form, quotes included.
            return partial(self.cached_login, channel_id, json.dumps(msg["token"]))
        if action == "logout":
            return partial(self.logout, channel_id)
        if action == "unlock":
            return partial(self.unlock, channel_id, _str_field(msg, "user"))
        if action == "getuserinfo":
            return partial(self.get_user_info, channel_id, _str_field(msg, "user"))
        if action == "suggestion":
            return partial(self.suggest, channel_id, _str_field(msg, "user"), _int_field(msg, "timestamp"))
        if action == "keepalive":
            return partial(self.keepalive, channel_id)
        raise MalformedRequest(f"invalid action {action!r}")

    @staticmethod
    def _run(action: str, channel_id: str, job: Callable[[], None]) -> None:
        try:
            job()
        except Exception:
            log.exception("Action %s failed on channel %s", action, channel_id)
            raise

    def _send(self, channel_id: str, message: dict) -> bool:
        ch = self.registry.channel(channel_id)
        if ch is None:
            log.debug("Dropping %s for closed channel %s", message.get("action"), channel_id)
            return False
        return ch.send(message)

    # ---------------------------
    # Actions
    # ---------------------------

    def login(self, channel_id: str, username: str, password: str) -> None:
        try:
            self.registry.login(channel_id, username, password)
        except AuthError as e:
            log.info("Login failed for %r: %s", username, e)
            self._send(channel_id, {"action": "loginresponse", "message": "fail"})
            return
        log.info("Login success for %r on channel %s", username, channel_id)
        self._send(channel_id, {"action": "loginresponse", "message": "success", "token": channel_id})

    def cached_login(self, channel_id: str, token: str) -> None:
        try:
            self.registry.login_by_token(channel_id, token)
        except InvalidToken as e:
            log.info("Token login failed on channel %s: %s", channel_id, e)
            self._send(channel_id, {"action": "cachedlogin", "message": "failed"})
            return
        self._send(channel_id, {"action": "loginresponse", "message": "success", "token": channel_id})

    def logout(self, channel_id: str) -> None:
        self.registry.logout(channel_id)

    def unlock(self, channel_id: str, user: str) -> None:
        ctx = self.registry.context(channel_id)
        if ctx is None:
            self._send(channel_id, {"action": "nologin"})
            return
        ok = self.gateway.unlock_user(ctx.identity, user)
        if ok:
            log.info("%s unlocked %r", ctx.identity.dn, user)
        self._send(channel_id, {"action": "unlocked" if ok else "locked"})

    def get_user_info(self, channel_id: str, user: str) -> None:
        ctx = self.registry.context(channel_id)
        if ctx is None:
            self._send(channel_id, {"action": "nologin"})
            return
        try:
            values = self.gateway.search(ctx.identity, USER_ATTRIBUTES, user)
        except DirectoryUnavailable:
            log.warning("User info lookup for %r failed", user, exc_info=True)
            values = None
        if values is None:
            self._send(channel_id, {"action": "nouser"})
            return
        self._send(
            channel_id,
            build_user_info(values, pwd_duration_days=self.pwd_duration_days, mail_domain=self.mail_domain),
        )

    def suggest(self, channel_id: str, user: str, sent_at_ms: int) -> None:
        ctx = self.registry.context(channel_id)
        if ctx is None or not user:
            return
        self.coordinator.search(
            ctx.coverage,
            user,
            sent_at_ms,
            lambda rows: self._send(channel_id, {"action": "suggestion", "suggestion": rows}),
        )

    def keepalive(self, channel_id: str) -> None:
        self.registry.touch(channel_id)

    def broadcast_keepalive(self) -> int:
        sent = 0
        for ch in self.registry.channels():
            if ch.send({"action": "keepalive"}):
                sent += 1
        return sent
