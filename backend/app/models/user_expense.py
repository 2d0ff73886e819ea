"""
models/user_expense.py — Fan-out table definition.

One row per (viewer account, expense) pair that should appear in that
viewer's expense list. A materialized view: only the fan-out reconciler
writes it, and it can always be rebuilt from expenses.participant_emails.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.extensions import db
from backend.app.timeutil import utcnow


class UserExpense(db.Model):
    __tablename__ = "user_expenses"

    __table_args__ = (
        UniqueConstraint("user_id", "expense_id", name="uq_user_expenses_pair"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Account.id of the viewer.
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    expense_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<UserExpense user_id={self.user_id!r} expense_id={self.expense_id!r}>"
