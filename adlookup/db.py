from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from .env_settings import get_env


class Base(DeclarativeBase):
    pass


def _db_url() -> str:
    url = (get_env().index_db_url or "").strip() or "sqlite:///data/users.db"
    prefix = "sqlite:///"
    if not url.startswith(prefix) or url == prefix + ":memory:":
        return url

    p = Path(url[len(prefix):])
    if not p.is_absolute():
        # Resolve relative DB paths against project root, not process CWD.
        project_root = Path(__file__).resolve().parents[1]
        p = (project_root / p).resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return f"{prefix}{p.as_posix()}"


def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA busy_timeout=5000")
    finally:
        cursor.close()


def make_engine(url: str | None = None) -> Engine:
    url = url or _db_url()
    kwargs: dict = {"echo": False, "future": True}
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(url, **kwargs)
    if is_sqlite:
        event.listen(engine, "connect", _set_sqlite_pragma)
    return engine


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
