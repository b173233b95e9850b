from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import IndexUnavailable
from .models import IndexedUser


@contextmanager
def db_session(factory: sessionmaker) -> Iterator[Session]:
    db = factory()
    try:
        yield db
    finally:
        db.close()


def fetch_username_page(
    db: Session,
    prefix: str,
    exclusions: Sequence[tuple[str, str]],
    offset: int,
    limit: int,
) -> list[str]:
    """Usernames starting with `prefix`, outside every [lo, hi] exclusion, in key order.

    LIKE is case-insensitive on SQLite/MySQL while ordering and BETWEEN use the
    column collation.
    """
    stmt = select(IndexedUser.username).where(IndexedUser.username.startswith(prefix, autoescape=True))
    for lo, hi in exclusions:
        stmt = stmt.where(~IndexedUser.username.between(lo, hi))
    stmt = stmt.order_by(IndexedUser.username).offset(offset).limit(limit)
    return list(db.scalars(stmt).all())


class UsernameIndex:
    """Paged prefix queries over the `users` table."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._factory = session_factory

    def session(self):
        return db_session(self._factory)

    def page(
        self,
        db: Session,
        prefix: str,
        exclusions: Sequence[tuple[str, str]],
        page_num: int,
        page_size: int,
    ) -> list[str]:
        try:
            return fetch_username_page(db, prefix, exclusions, page_num * page_size, page_size)
        except SQLAlchemyError as e:
            raise IndexUnavailable(f"username query for {prefix!r} failed: {e}") from e
