"""
models/member_alias.py — Alias edge table definition.

Each row is a directed edge alias_member_id → canonical_member_id.

Graph invariants:
  - Functional: alias_member_id is UNIQUE, so an alias has at most one
    outgoing edge. A racing second insert fails at the database and surfaces
    as CONCURRENT_WRITE_CONFLICT.
  - Acyclic: enforced by services/alias_service.py before every insert.
  - Never updated in place. Re-pointing an alias is a conflict, not an update.

No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import utcnow


class MemberAlias(db.Model):
    __tablename__ = "member_aliases"

    __table_args__ = (
        CheckConstraint(
            "alias_member_id <> canonical_member_id",
            name="ck_member_aliases_no_self_edge",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    alias_member_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    canonical_member_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    # The account that created the edge (derived from the verified caller).
    account_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<MemberAlias {self.alias_member_id!r} -> {self.canonical_member_id!r}>"
