"""
services/fanout_service.py — user_expenses fan-out reconciliation.

user_expenses is a materialized "who can see this expense" index so that an
account's expense list is one indexed read instead of a scan of every
expense.

Invariant:
  After reconcile_user_expenses(expense_id, targets), the set of user_ids
  with a row for expense_id is exactly `targets`. Because each call is a
  symmetric-difference update, the table is always derivable by replaying
  reconcile for every expense (rebuild_all_user_expenses).

Layer rules:
  - No Flask imports. Session parameter only.
  - Commits are the route's responsibility. Only flush here.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from backend.app.models.account import Account
from backend.app.models.expense import Expense
from backend.app.models.user_expense import UserExpense
from backend.app.services.identity import normalize_email
from backend.app.timeutil import utcnow

logger = logging.getLogger(__name__)


def reconcile_user_expenses(
        session: Session,
        expense_id: str,
        target_user_ids: Iterable[str],
) -> dict:
    """
    Inserts fan-out rows for users in `target_user_ids` that lack one and
    deletes rows for users no longer in it. Rows in both sets are kept and
    their updated_at refreshed.

    Returns: {"added": [...], "removed": [...]}
    """
    targets = {uid for uid in target_user_ids if uid}

    existing_rows = list(session.execute(
        select(UserExpense).where(UserExpense.expense_id == expense_id)
    ).scalars().all())
    existing = {row.user_id for row in existing_rows}

    to_add = sorted(targets - existing)
    to_remove = sorted(existing - targets)
    now = utcnow()

    for user_id in to_add:
        session.add(UserExpense(user_id=user_id, expense_id=expense_id, updated_at=now))

    for row in existing_rows:
        if row.user_id in to_remove:
            session.delete(row)
        else:
            row.updated_at = now

    session.flush()

    if to_add or to_remove:
        logger.debug(
            "fanout_reconciled expense_id=%s added=%d removed=%d",
            expense_id,
            len(to_add),
            len(to_remove),
        )
    return {"added": to_add, "removed": to_remove}


def resolve_participant_user_ids(session: Session, participant_emails: Iterable[str]) -> list[str]:
    """Maps participant emails onto Account.ids. Unknown emails are skipped."""
    emails = sorted({normalize_email(e) for e in participant_emails or [] if normalize_email(e)})
    if not emails:
        return []
    return list(session.execute(
        select(Account.id).where(Account.email.in_(emails))
    ).scalars().all())


def reconcile_expense(session: Session, expense: Expense) -> dict:
    """
    Reconciles one expense against its current participant_emails. A
    soft-deleted expense is visible to nobody.
    """
    if expense.is_deleted:
        targets: list[str] = []
    else:
        targets = resolve_participant_user_ids(session, expense.participant_emails)
    return reconcile_user_expenses(session, expense.id, targets)


def delete_fanout_for_expenses(session: Session, expense_ids: Iterable[str]) -> int:
    """Removes every fan-out row for the given expenses. Returns rows deleted."""
    ids = list(expense_ids)
    if not ids:
        return 0
    result = session.execute(
        delete(UserExpense).where(UserExpense.expense_id.in_(ids))
    )
    return result.rowcount or 0


def rebuild_all_user_expenses(session: Session, batch_size: int = 200) -> dict:
    """
    Replays reconcile_expense() over every expense, in id order, flushing
    per batch. Orphaned fan-out rows whose expense no longer exists are
    removed as well.

    Returns: {"expenses_processed", "rows_added", "rows_removed", "orphan_rows_removed"}
    """
    processed = added = removed = 0
    last_id: str | None = None

    while True:
        stmt = select(Expense).order_by(Expense.id).limit(batch_size)
        if last_id is not None:
            stmt = stmt.where(Expense.id > last_id)
        batch = list(session.execute(stmt).scalars().all())
        if not batch:
            break
        for expense in batch:
            result = reconcile_expense(session, expense)
            added += len(result["added"])
            removed += len(result["removed"])
            processed += 1
        last_id = batch[-1].id

    orphan_rows_removed = session.execute(
        delete(UserExpense).where(
            UserExpense.expense_id.not_in(select(Expense.id))
        )
    ).rowcount or 0
    session.flush()

    logger.info(
        "fanout_rebuild_complete expenses_processed=%d rows_added=%d rows_removed=%d orphan_rows_removed=%d",
        processed,
        added,
        removed,
        orphan_rows_removed,
    )
    return {
        "expenses_processed": processed,
        "rows_added": added,
        "rows_removed": removed,
        "orphan_rows_removed": orphan_rows_removed,
    }
