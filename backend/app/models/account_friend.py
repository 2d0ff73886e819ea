"""
models/account_friend.py — Friend row table definition.

One viewer's (account_email) knowledge of one other person (member_id).
Rows that resolve to the same real identity may coexist in storage; the
friend list read path collapses them (services/friend_service.py).

`status` is stored as the raw string clients historically sent ("friend",
"accepted", "request_sent", "rejected", or nothing at all). It is only ever
interpreted through FriendStatus and friend_service.classify_friend_status().

No business logic. No imports from services or routes.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import utcnow


class FriendStatus(str, enum.Enum):
    """Closed set of friend-row states recognised by the service layer."""
    PENDING      = "pending"
    FRIEND       = "friend"
    REJECTED     = "rejected"
    LEGACY_UNSET = "legacy_unset"


class AccountFriend(db.Model):
    __tablename__ = "account_friends"

    __table_args__ = (
        UniqueConstraint(
            "account_email",
            "member_id",
            name="uq_account_friends_owner_member",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Owner (viewer) of this row.
    account_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    member_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    nickname: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Audit copies kept when the claim pipeline replaces a placeholder name.
    original_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    original_nickname: Mapped[str | None] = mapped_column(String(255), nullable=True)

    profile_avatar_color: Mapped[str | None] = mapped_column(String(32), nullable=True)

    has_linked_account: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    linked_account_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    linked_account_email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    linked_member_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<AccountFriend owner={self.account_email!r} "
            f"member_id={self.member_id!r} linked={self.has_linked_account}>"
        )
