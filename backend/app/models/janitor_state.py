"""
models/janitor_state.py — Orphan janitor cursor state.

Keyset cursors let each tick scan the next bounded page of friend rows and
groups instead of always re-reading the first page. A cursor resets to NULL
once its table has been fully scanned.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import utcnow


class JanitorState(db.Model):
    __tablename__ = "janitor_state"

    id: Mapped[int] = mapped_column(primary_key=True)

    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Last account_friends.id processed.
    friends_cursor: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Last groups.id processed.
    groups_cursor: Mapped[str | None] = mapped_column(String(64), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
