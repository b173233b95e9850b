import json
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from adlookup.dispatcher import Dispatcher
from adlookup.services import SearchCoordinator
from adlookup.sessions import SessionRegistry


@pytest.fixture
def registry(directory, clock):
    return SessionRegistry(directory.authenticate, timeout_s=100, clock=clock)


@pytest.fixture
def dispatcher(registry, directory, index, add_users, clock):
    add_users(["alan", "albert", "alice", "bob"])
    coordinator = SearchCoordinator(index, page_size=2, max_pages=5, timeout_ms=100, clock=clock)
    d = Dispatcher(
        registry,
        directory,
        coordinator,
        pwd_duration_days=143,
        mail_domain="@example.com",
        executor=ThreadPoolExecutor(max_workers=2),
    )
    yield d
    d.shutdown()


def _open(dispatcher):
    cid = str(uuid.uuid4())
    sent = []
    dispatcher.open(cid, sent.append)
    return cid, sent


def _call(dispatcher, cid, message):
    fut = dispatcher.handle(cid, json.dumps(message))
    assert fut is not None
    fut.result(timeout=5)


def _login(dispatcher, cid, sent):
    _call(dispatcher, cid, {"action": "login", "username": "alice", "password": "alice-pw"})
    assert sent.pop() == {"action": "loginresponse", "message": "success", "token": cid}


def test_login_success_and_failure(dispatcher):
    cid, sent = _open(dispatcher)
    _call(dispatcher, cid, {"action": "login", "username": "alice", "password": "bad"})
    assert sent == [{"action": "loginresponse", "message": "fail"}]
    sent.clear()
    _login(dispatcher, cid, sent)


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    json.dumps({"action": "reboot"}),
    json.dumps({"username": "alice"}),
    json.dumps({"action": "login", "username": "alice"}),
    json.dumps({"action": "unlock"}),
    json.dumps({"action": "suggestion", "user": "al"}),
    json.dumps({"action": "suggestion", "user": "al", "timestamp": "soon"}),
    json.dumps({"action": "cachedlogin"}),
])
def test_malformed_messages_are_dropped(dispatcher, raw):
    cid, sent = _open(dispatcher)
    assert dispatcher.handle(cid, raw) is None
    assert sent == []


def test_requests_without_login(dispatcher):
    cid, sent = _open(dispatcher)
    _call(dispatcher, cid, {"action": "unlock", "user": "bob"})
    _call(dispatcher, cid, {"action": "getuserinfo", "user": "bob"})
    _call(dispatcher, cid, {"action": "suggestion", "user": "al", "timestamp": 0})
    assert sent == [{"action": "nologin"}, {"action": "nologin"}]


def test_unlock(dispatcher, directory):
    directory.users["bob"] = {"displayName": "Bob"}
    cid, sent = _open(dispatcher)
    _login(dispatcher, cid, sent)

    _call(dispatcher, cid, {"action": "unlock", "user": "bob"})
    _call(dispatcher, cid, {"action": "unlock", "user": "mallory"})

    assert sent == [{"action": "unlocked"}, {"action": "locked"}]
    assert directory.unlocked == ["bob"]


def test_getuserinfo(dispatcher, directory):
    directory.users["bob"] = {"displayName": "Bob Builder", "mailNickname": "bob", "pwdLastSet": "0"}
    cid, sent = _open(dispatcher)
    _login(dispatcher, cid, sent)

    _call(dispatcher, cid, {"action": "getuserinfo", "user": "bob"})
    _call(dispatcher, cid, {"action": "getuserinfo", "user": "mallory"})

    info, missing = sent
    assert info["action"] == "userinfo"
    assert info["displayname"] == "Bob Builder"
    assert info["mailnickname"] == "bob@example.com"
    assert info["daysleft"] == "∞"
    assert missing == {"action": "nouser"}


def test_suggestion_pages(dispatcher, clock):
    cid, sent = _open(dispatcher)
    _login(dispatcher, cid, sent)

    _call(dispatcher, cid, {"action": "suggestion", "user": "al", "timestamp": clock.now})
    assert sent == [
        {"action": "suggestion", "suggestion": ["alan", "albert"]},
        {"action": "suggestion", "suggestion": ["alice"]},
    ]
    sent.clear()

    # already delivered in full
    _call(dispatcher, cid, {"action": "suggestion", "user": "ali", "timestamp": clock.now})
    assert sent == []


def test_cachedlogin(dispatcher):
    old, sent_old = _open(dispatcher)
    _login(dispatcher, old, sent_old)
    dispatcher.close(old)

    new, sent_new = _open(dispatcher)
    _call(dispatcher, new, {"action": "cachedlogin", "token": old})
    assert sent_new == [{"action": "loginresponse", "message": "success", "token": new}]
    sent_new.clear()

    _call(dispatcher, new, {"action": "unlock", "user": "mallory"})
    assert sent_new == [{"action": "locked"}]


@pytest.mark.parametrize("token", ["abc", None, str(uuid.uuid4())])
def test_cachedlogin_failure(dispatcher, token):
    cid, sent = _open(dispatcher)
    _call(dispatcher, cid, {"action": "cachedlogin", "token": token})
    assert sent == [{"action": "cachedlogin", "message": "failed"}]


def test_logout(dispatcher, registry):
    cid, sent = _open(dispatcher)
    _login(dispatcher, cid, sent)
    _call(dispatcher, cid, {"action": "logout"})
    assert registry.context(cid) is None
    _call(dispatcher, cid, {"action": "unlock", "user": "bob"})
    assert sent == [{"action": "nologin"}]


def test_keepalive_refreshes_login(dispatcher, registry, clock):
    cid, sent = _open(dispatcher)
    _login(dispatcher, cid, sent)
    clock.advance(90)
    _call(dispatcher, cid, {"action": "keepalive"})
    clock.advance(90)
    assert registry.context(cid) is not None
    assert sent == []


def test_broadcast_keepalive(dispatcher):
    _, sent_a = _open(dispatcher)
    _, sent_b = _open(dispatcher)
    assert dispatcher.broadcast_keepalive() == 2
    assert sent_a == sent_b == [{"action": "keepalive"}]
