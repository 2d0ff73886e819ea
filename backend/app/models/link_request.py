"""
models/link_request.py — Link request table definition.

A requester asks the recipient (by email) to link their account to one of
the requester's member placeholders. Accepting runs the same claim pipeline
as an invite token, with the requester as the creator.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import as_utc, utcnow


class LinkRequestStatus(str, enum.Enum):
    PENDING  = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class LinkRequest(db.Model):
    __tablename__ = "link_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    requester_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    requester_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    requester_name: Mapped[str] = mapped_column(String(255), nullable=False)

    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    target_member_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_member_name: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[LinkRequestStatus] = mapped_column(
        Enum(
            LinkRequestStatus,
            name="link_request_status_enum",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=LinkRequestStatus.PENDING,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return as_utc(self.expires_at) < now

    def __repr__(self) -> str:  # pragma: no cover
        return f"<LinkRequest id={self.id!r} status={self.status}>"
