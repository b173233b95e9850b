import pytest
from sqlalchemy.exc import OperationalError

from adlookup.errors import IndexUnavailable
from adlookup.repo import db_session, fetch_username_page


def test_page_is_prefix_filtered_and_ordered(add_users, session_factory):
    add_users(["alice", "alan", "albert", "bob", "al"])
    with db_session(session_factory) as db:
        assert fetch_username_page(db, "al", [], 0, 10) == ["al", "alan", "albert", "alice"]
        assert fetch_username_page(db, "al", [], 1, 2) == ["alan", "albert"]


def test_exclusions_are_inclusive(add_users, session_factory):
    add_users(["ala", "alb", "alc", "ald", "ale"])
    with db_session(session_factory) as db:
        assert fetch_username_page(db, "al", [("alb", "ald")], 0, 10) == ["ala", "ale"]
        assert fetch_username_page(db, "al", [("ala", "ala"), ("ale", "am")], 0, 10) == ["alb", "alc", "ald"]


def test_wildcards_in_prefix_are_literal(add_users, session_factory):
    add_users(["a%b", "axb", "a_c", "abc"])
    with db_session(session_factory) as db:
        assert fetch_username_page(db, "a%", [], 0, 10) == ["a%b"]
        assert fetch_username_page(db, "a_", [], 0, 10) == ["a_c"]


def test_index_page_offsets_by_page_number(add_users, index):
    add_users([f"user{i:02d}" for i in range(25)])
    with index.session() as db:
        assert index.page(db, "user", [], 2, 10) == [f"user{i:02d}" for i in range(20, 25)]


def test_index_wraps_database_errors(index, monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr("adlookup.repo.fetch_username_page", boom)
    with index.session() as db:
        with pytest.raises(IndexUnavailable):
            index.page(db, "al", [], 0, 10)
