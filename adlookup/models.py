from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class IndexedUser(Base):
    """One row per directory logon name; the autocomplete source."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(256), primary_key=True)
