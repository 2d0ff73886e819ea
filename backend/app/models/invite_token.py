"""
models/invite_token.py — Invite token table definition.

A single-use capability: "whoever claims this becomes <target_member_id>".

State machine:
  pending  (claimed_by IS NULL, expires_at in the future)
  claimed  (claimed_by set; terminal, written exactly once)
  expired  (expires_at passed while pending; terminal, time-based)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import as_utc, utcnow


class InviteToken(db.Model):
    __tablename__ = "invite_tokens"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    creator_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    creator_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    target_member_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    target_member_name: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Account.id of the claimer. Single-writer transition guarded in
    # invite_service.claim_invite().
    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_claimed(self) -> bool:
        return self.claimed_by is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return as_utc(self.expires_at) < now

    def __repr__(self) -> str:  # pragma: no cover
        return f"<InviteToken id={self.id!r} target={self.target_member_id!r} claimed={self.is_claimed}>"
