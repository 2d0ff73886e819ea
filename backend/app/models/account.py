"""
models/account.py — Account table definition.

One row per real authenticated user. Created on first successful
authentication (POST /accounts/store); deleted by self-delete, admin hard
delete or the orphan janitor.

Identity fields:
  - `id`                 the auth provider's stable subject ID.
  - `member_id`          the canonical member ID, the single source of truth
                         for "who is this person" inside groups and expenses.
  - `alias_member_ids`   denormalized cache of member IDs aliased onto
                         `member_id`. The member_aliases table is authoritative.
  - `linked_member_id`   deprecated; only read by services/legacy_lookup.py.

No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import utcnow


class Account(db.Model):
    __tablename__ = "accounts"

    __table_args__ = (
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_accounts_email_format",
        ),
    )

    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Stored normalized (trimmed, lowercase); unique case-insensitively.
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    display_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    member_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
    )

    alias_member_ids: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    # Deprecated. Kept so pre-canonical rows still resolve.
    linked_member_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    profile_avatar_color: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Account id={self.id!r} email={self.email!r} member_id={self.member_id!r}>"
