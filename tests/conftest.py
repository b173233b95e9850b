from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

import pytest
from ldap3 import MOCK_SYNC, NONE, Connection, Server
from sqlalchemy import select

from adlookup.ad import ADConfig, Identity
from adlookup.db import Base, make_engine, make_sessionmaker
from adlookup.errors import InvalidCredentials, NotFound
from adlookup.models import IndexedUser
from adlookup.repo import UsernameIndex, db_session

BASE_DN = "dc=example,dc=com"
SERVICE_DN = "cn=svc-lookup,ou=service,dc=example,dc=com"
SERVICE_PASSWORD = "svc-secret"
HELPDESK_GROUP = "CN=Helpdesk,OU=Groups,DC=example,DC=com"
ALICE_DN = "cn=Alice Admin,ou=people,dc=example,dc=com"
BOB_DN = "cn=Bob Builder,ou=people,dc=example,dc=com"


# ---------- Username index ----------

@pytest.fixture
def index_engine():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(index_engine):
    return make_sessionmaker(index_engine)


@pytest.fixture
def index(session_factory) -> UsernameIndex:
    return UsernameIndex(session_factory)


def add_usernames(db, usernames) -> int:
    """Insert index rows, skipping blanks and names already present."""
    names = sorted({u.strip() for u in usernames if u and u.strip()})
    if not names:
        return 0
    existing = set(db.scalars(select(IndexedUser.username).where(IndexedUser.username.in_(names))).all())
    rows = [IndexedUser(username=n) for n in names if n not in existing]
    db.add_all(rows)
    db.commit()
    return len(rows)


@pytest.fixture
def add_users(session_factory):
    def _add(names):
        with db_session(session_factory) as db:
            return add_usernames(db, names)

    return _add


class FakeClock:
    def __init__(self, now: float = 0) -> None:
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, delta: float) -> None:
        self.now += delta


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_000_000)


# ---------- Directory ----------

@pytest.fixture
def ad_server() -> Server:
    """In-memory DIT shared by every MOCK_SYNC connection on this server."""
    server = Server("fake-dc", get_info=NONE)
    seed = Connection(server, client_strategy=MOCK_SYNC)
    dit = seed.strategy
    dit.add_entry(BASE_DN, {"objectClass": ["top", "domain"]})
    dit.add_entry(SERVICE_DN, {
        "objectClass": ["top", "person", "user"],
        "sAMAccountName": "svc-lookup",
        "userPassword": SERVICE_PASSWORD,
    })
    dit.add_entry(ALICE_DN, {
        "objectClass": ["top", "person", "user"],
        "sAMAccountName": "alice",
        "userPassword": "alice-pw",
        "memberOf": [HELPDESK_GROUP, "CN=VPN Users,OU=Groups,DC=example,DC=com"],
        "displayName": "Alice Admin",
        "pwdLastSet": "133801632000000000",
        "lockoutTime": "133801632000000000",
        "userPrincipalName": "alice@example.com",
        "userAccountControl": "512",
    })
    dit.add_entry(BOB_DN, {
        "objectClass": ["top", "person", "user"],
        "sAMAccountName": "bob",
        "userPassword": "bob-pw",
        "displayName": "Bob Builder",
    })
    return server


@pytest.fixture
def ad_cfg() -> ADConfig:
    return ADConfig(
        url="ldap://fake-dc",
        base_dn=BASE_DN,
        service_user=SERVICE_DN,
        service_password=SERVICE_PASSWORD,
        auth_group=HELPDESK_GROUP.lower(),
    )


# ---------- Identities without a directory ----------

class FakePool:
    def __init__(self) -> None:
        self.closed = 0

    @contextmanager
    def connection(self) -> Iterator[object]:
        yield object()

    def close(self) -> None:
        self.closed += 1


def make_identity(name: str = "alice") -> Identity:
    return Identity(dn=f"cn={name},ou=people,{BASE_DN}", sam=name, member_of=[], pool=FakePool())


@dataclass
class FakeDirectory:
    """Stands in for ADClient where only the call contract matters."""

    passwords: dict = field(default_factory=lambda: {"alice": "alice-pw"})
    users: dict = field(default_factory=dict)
    unlocked: list = field(default_factory=list)
    identities: list = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def authenticate(self, username: str, password: str) -> Identity:
        if username not in self.passwords:
            raise NotFound(username)
        if not password or self.passwords[username] != password:
            raise InvalidCredentials(username)
        ident = make_identity(username)
        with self.lock:
            self.identities.append(ident)
        return ident

    def search(self, identity, attributes, username):
        values = self.users.get(username)
        if values is None:
            return None
        return {a: values.get(a, "N/A") for a in attributes}

    def unlock_user(self, identity, username) -> bool:
        if username not in self.users:
            return False
        self.unlocked.append(username)
        return True


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()
