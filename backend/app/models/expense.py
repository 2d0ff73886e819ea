"""
models/expense.py — Expense table definition.

Key design points:
  - `id` is the client-generated UUID string.
  - `total_amount` uses Numeric(12, 2). Never Float. Split amounts inside the
    `splits` JSON are stored as decimal strings for the same reason.
  - `participant_emails` is the denormalized visibility list the fan-out
    reconciler reads. The owner's email is always present.
  - `deleted_at` is NULL for active expenses, non-null for soft-deleted ones.
    A soft-deleted expense has no fan-out rows.
  - Member IDs inside `involved_member_ids`, `splits` and `participants` are
    snapshots and are never rewritten on alias creation.
  - SplitMode is a Python enum so it can be imported by schemas and services
    without repeating string literals.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import utcnow


# ── Enum Definitions ───────────────────────────────────────────────────────

class SplitMode(str, enum.Enum):
    EQUAL  = "equal"
    CUSTOM = "custom"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'custom'), not names ('CUSTOM')."""
    return [member.value for member in enum_cls]


# ── Model ──────────────────────────────────────────────────────────────────

class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        Index(
            "idx_expenses_active",
            "group_id",
            postgresql_where="deleted_at IS NULL",
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    group_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    split_mode: Mapped[SplitMode] = mapped_column(
        Enum(
            SplitMode,
            name="split_mode_enum",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitMode.CUSTOM,
    )

    paid_by_member_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    involved_member_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # [{"member_id": "...", "amount": "12.50"}]
    splits: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # [{"member_id", "name", "linked_account_id", "linked_account_email"}]
    participants: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    participant_emails: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

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

    is_settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

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

    # NULL = active; NOT NULL = soft-deleted.
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Convenience property ───────────────────────────────────────────────
    @property
    def is_deleted(self) -> bool:
        """True if this expense has been soft-deleted."""
        return self.deleted_at is not None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id!r} "
            f"group_id={self.group_id!r} "
            f"amount={self.total_amount} "
            f"deleted={self.is_deleted}>"
        )
