"""
models/group.py — Group table definition.

`id` is the client-generated UUID string. `members` is a denormalized
snapshot of the member list at write time:

    [{"id": "<member uuid>", "name": "Alice", "is_current_user": false}, ...]

Member IDs inside the snapshot are never rewritten when an alias is created.
Every read path that asks "is X in this group" must go through
alias_service.get_all_equivalent_member_ids(). The claim pipeline only
rewrites member *names*.

No foreign keys: the owner may be deleted out-of-band; the orphan janitor
cleans groups whose owner_email no longer matches an account.

No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import utcnow


class Group(db.Model):
    # 'groups' is a reserved word in some SQL dialects; SQLAlchemy handles quoting.
    __tablename__ = "groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    members: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    owner_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    owner_account_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    # Two-person "direct" group backing a one-to-one expense thread.
    is_direct: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
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

    @property
    def member_ids(self) -> list[str]:
        """Member IDs exactly as stored in the snapshot."""
        return [m.get("id") for m in (self.members or []) if m.get("id")]

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id!r} name={self.name!r}>"
