"""
services/expense_service.py — Expense business logic.

Rules enforced here:
  PAYER_NOT_MEMBER (422)         — paid_by_member_id must be a group member (by equivalence)
  SPLIT_MEMBER_NOT_MEMBER (422)  — every involved/split member must be a group member
  SPLIT_SUM_MISMATCH (422)       — sum(splits.amount) == total_amount exactly
  NOT_DIRECT_FRIEND (422)        — a direct-group expense needs an eligible friend row
  EXPENSE_DELETED (422)          — cannot edit a soft-deleted expense
  FORBIDDEN (403)                — caller cannot see the group / does not own the expense

Authorization rules:
  - Create: caller must be the group's owner or a member by equivalence
  - List:   fan-out rows only (user_expenses), so exactly what the
            reconciler granted
  - Get:    caller owns the expense or has a fan-out row for it
  - Edit:   expense owner only
  - Delete: expense owner only (soft delete; idempotent)

Equal split computation:
  - Server divides total_amount among the involved members using ROUND_DOWN.
  - Remainder (at most a few cents) is added to the payer's split.
  - This guarantees sum(splits) == total_amount.

Visibility:
  Every write rebuilds `participants` and `participant_emails` from the
  involved member IDs and reconciles the fan-out table.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import uuid
from decimal import ROUND_DOWN, Decimal

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.account import Account
from backend.app.models.expense import Expense, SplitMode
from backend.app.models.group import Group
from backend.app.models.user_expense import UserExpense
from backend.app.services import alias_service, fanout_service, group_service, legacy_lookup
from backend.app.services.friend_service import is_eligible_direct_friend
from backend.app.services.identity import (
    normalize_email,
    normalize_member_id,
    normalize_member_ids,
)
from backend.app.services.legacy_lookup import normalized
from backend.app.timeutil import isoformat, utcnow


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(session: Session, expense_id: str) -> Expense:
    """Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _require_group_access(session: Session, group: Group, account: Account) -> None:
    if not group_service.can_view_group(session, group, account):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group.id}.",
            403,
        )


def _require_owner(expense: Expense, account: Account, action: str) -> None:
    is_owner = (
        normalize_email(expense.owner_email) == normalize_email(account.email)
        or (expense.owner_account_id is not None and expense.owner_account_id == account.id)
    )
    if not is_owner:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the creator of this expense may {action} it.",
            403,
        )


def _validate_payer_is_member(
        session: Session,
        group: Group,
        paid_by_member_id: str,
) -> None:
    if not group_service.is_group_member(session, group, paid_by_member_id):
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"Member {paid_by_member_id} is not a member of group {group.id}.",
            422,
            field="paid_by_member_id",
        )


def _validate_members_in_group(
        session: Session,
        group: Group,
        member_ids: list[str],
        field: str,
) -> None:
    """Raises SPLIT_MEMBER_NOT_MEMBER (422) for the first ID not in the group."""
    for member_id in member_ids:
        if not group_service.is_group_member(session, group, member_id):
            raise AppError(
                ErrorCode.SPLIT_MEMBER_NOT_MEMBER,
                f"Member {member_id} is not a member of group {group.id}.",
                422,
                field=field,
            )


def _validate_split_sum(splits: list[dict], expected_amount: Decimal) -> None:
    """
    Raises SPLIT_SUM_MISMATCH (422) if sum(splits.amount) != expected_amount.
    Uses Decimal arithmetic — never float.
    """
    total = sum((Decimal(str(s["amount"])) for s in splits), Decimal("0"))
    if total != expected_amount:
        raise AppError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Split amounts ({total}) do not equal expense amount ({expected_amount}).",
            422,
            field="splits",
        )


def _compute_equal_splits(
        amount: Decimal,
        participant_ids: list[str],
        payer_id: str,
) -> list[dict]:
    """
    Divides amount evenly among all participants using ROUND_DOWN.
    The remainder is added to the payer's split.
    Guarantees: sum(result amounts) == amount.

    Returns:
        List of {"member_id": str, "amount": Decimal} dicts.
    """
    n = len(participant_ids)
    base = (amount / Decimal(n)).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    remainder = amount - (base * n)

    splits = [{"member_id": mid, "amount": base} for mid in participant_ids]

    if remainder > Decimal("0"):
        # Payer not among the participants: the first participant takes it.
        payer_split = next(
            (s for s in splits if s["member_id"] == payer_id),
            splits[0],
        )
        payer_split["amount"] += remainder

    # Must always hold; a failure here is a programming error.
    computed_sum = sum(s["amount"] for s in splits)
    if computed_sum != amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split computation produced sum {computed_sum} for amount {amount}. "
            f"This is a bug — please report it.",
            500,
        )

    return splits


def _require_direct_friend(session: Session, group: Group, account: Account, involved: list[str]) -> None:
    """
    A direct group backs a one-to-one thread: everyone involved other than
    the caller must be an eligible friend of the caller.
    """
    caller_ids = group_service.account_member_ids(session, account)
    for member_id in involved:
        if member_id in caller_ids:
            continue
        equivalent = alias_service.get_all_equivalent_member_ids(session, member_id)
        rows = [
            legacy_lookup.find_friend_by_member_id(session, account.email, mid)
            for mid in sorted(equivalent)
        ]
        if not any(row is not None and is_eligible_direct_friend(row) for row in rows):
            raise AppError(
                ErrorCode.NOT_DIRECT_FRIEND,
                f"Member {member_id} is not an accepted friend; direct expenses need one.",
                422,
                field="involved_member_ids",
            )


def _build_participants(
        session: Session,
        group: Group,
        owner: Account,
        member_ids: list[str],
) -> tuple[list[dict], list[str]]:
    """
    Participants (name from the group snapshot, linkage from the account the
    ID resolves to) and the visibility email list. The owner is always
    visible.
    """
    names = {normalize_member_id(m.get("id")): m.get("name") for m in group.members or []}
    participants: list[dict] = []
    emails = [normalize_email(owner.email)]

    for member_id in member_ids:
        account = legacy_lookup.find_account_by_member_id(session, member_id)
        if account is None:
            canonical = alias_service.resolve_canonical_member_id(session, member_id)
            if canonical != member_id:
                account = legacy_lookup.find_account_by_member_id(session, canonical)
        participants.append({
            "member_id": member_id,
            "name": names.get(member_id) or (account.display_name if account else "Unknown"),
            "linked_account_id": account.id if account else None,
            "linked_account_email": normalize_email(account.email) if account else None,
        })
        if account is not None and normalize_email(account.email) not in emails:
            emails.append(normalize_email(account.email))

    return participants, emails


def _apply_amounts(
        session: Session,
        group: Group,
        split_mode: SplitMode,
        total_amount: Decimal,
        paid_by_member_id: str,
        involved: list[str],
        custom_splits: list[dict] | None,
) -> list[dict]:
    """Validates membership and returns the splits to store (amounts as strings)."""
    _validate_payer_is_member(session, group, paid_by_member_id)

    if split_mode == SplitMode.EQUAL:
        if not involved:
            raise AppError(
                ErrorCode.MISSING_FIELD,
                "An equal split needs at least one involved member.",
                400,
                field="involved_member_ids",
            )
        _validate_members_in_group(session, group, involved, "involved_member_ids")
        splits = _compute_equal_splits(total_amount, involved, paid_by_member_id)
    else:
        splits = [
            {"member_id": normalize_member_id(s["member_id"]), "amount": Decimal(str(s["amount"]))}
            for s in custom_splits or []
        ]
        _validate_members_in_group(session, group, [s["member_id"] for s in splits], "splits")
        _validate_split_sum(splits, total_amount)

    return [{"member_id": s["member_id"], "amount": str(s["amount"])} for s in splits]


def _refresh_visibility(session: Session, expense: Expense, group: Group, owner: Account) -> None:
    member_ids = normalize_member_ids(
        [expense.paid_by_member_id, *expense.involved_member_ids, *(s["member_id"] for s in expense.splits)]
    )
    expense.participants, expense.participant_emails = _build_participants(session, group, owner, member_ids)
    session.flush()
    fanout_service.reconcile_expense(session, expense)


def serialize_expense(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "description": expense.description,
        "total_amount": expense.total_amount,
        "split_mode": expense.split_mode.value if isinstance(expense.split_mode, SplitMode) else expense.split_mode,
        "paid_by_member_id": expense.paid_by_member_id,
        "involved_member_ids": list(expense.involved_member_ids or []),
        "splits": [
            {"member_id": s["member_id"], "amount": Decimal(str(s["amount"]))}
            for s in expense.splits or []
        ],
        "participants": list(expense.participants or []),
        "participant_emails": list(expense.participant_emails or []),
        "owner_email": expense.owner_email,
        "is_settled": expense.is_settled,
        "created_at": isoformat(expense.created_at),
        "updated_at": isoformat(expense.updated_at),
        "deleted_at": isoformat(expense.deleted_at),
    }


# ── Public service functions ───────────────────────────────────────────────

def create_expense(session: Session, account: Account, data: dict) -> tuple[Expense, bool]:
    """
    Records a new expense.

    Args:
        account: the authenticated caller (becomes the expense owner).
        data:    validated dict from CreateExpenseSchema.

    Equal mode: splits are computed server-side across involved_member_ids
    (default: every member of the group). The client must not send splits.

    Returns: (expense, created)
    """
    group = group_service.get_group(session, account, data["group_id"])

    expense_id = (data.get("id") or "").strip() or str(uuid.uuid4())
    existing = session.get(Expense, expense_id)
    if existing is not None:
        # Client retry with the same ID.
        _require_owner(existing, account, "recreate")
        return existing, False

    paid_by = normalize_member_id(data["paid_by_member_id"])
    total_amount: Decimal = data["total_amount"]
    split_mode: SplitMode = data.get("split_mode", SplitMode.EQUAL)
    involved = normalize_member_ids(data.get("involved_member_ids") or group.member_ids)

    if group.is_direct:
        _require_direct_friend(session, group, account, involved)

    splits = _apply_amounts(
        session, group, split_mode, total_amount, paid_by, involved, data.get("splits"),
    )
    if split_mode == SplitMode.CUSTOM and not data.get("involved_member_ids"):
        involved = normalize_member_ids(s["member_id"] for s in splits)

    expense = Expense(
        id=expense_id,
        group_id=group.id,
        description=data["description"].strip(),
        total_amount=total_amount,
        split_mode=split_mode,
        paid_by_member_id=paid_by,
        involved_member_ids=involved,
        splits=splits,
        participants=[],
        participant_emails=[],
        owner_email=normalize_email(account.email),
        owner_account_id=account.id,
        is_settled=bool(data.get("is_settled", False)),
    )
    session.add(expense)
    session.flush()

    _refresh_visibility(session, expense, group, account)
    return expense, True


def list_expenses(session: Session, account: Account, group_id: str | None = None) -> list[Expense]:
    """
    The caller's active expenses, newest first, read through the fan-out
    table. Optionally restricted to one group.
    """
    stmt = (
        select(Expense)
        .join(UserExpense, UserExpense.expense_id == Expense.id)
        .where(
            UserExpense.user_id == account.id,
            Expense.deleted_at.is_(None),
        )
        .order_by(Expense.created_at.desc(), Expense.id)
    )
    if group_id is not None:
        stmt = stmt.where(Expense.group_id == group_id)
    return list(session.execute(stmt).scalars().all())


def get_expense(session: Session, account: Account, expense_id: str) -> Expense:
    """
    Returns a single expense. Soft-deleted expenses are returned to their
    owner only (deleted_at is in the response).
    """
    expense = _get_expense_or_404(session, expense_id)

    is_owner = normalize_email(expense.owner_email) == normalize_email(account.email)
    if is_owner:
        return expense

    visible = session.execute(
        select(UserExpense.id).where(
            UserExpense.expense_id == expense.id,
            UserExpense.user_id == account.id,
        )
    ).first()
    if visible is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You do not have access to expense {expense_id}.",
            403,
        )
    return expense


def update_expense(session: Session, account: Account, expense_id: str, data: dict) -> Expense:
    """
    Partially updates an expense.

      - Only the owner may edit (FORBIDDEN, 403).
      - Cannot edit a soft-deleted expense (EXPENSE_DELETED, 422).
      - Equal mode: splits are recomputed whenever amount, payer, involved
        members or the mode change.
      - Custom mode: the schema requires total_amount and splits together;
        the split sum is re-validated before any write.
      - updated_at is set on every successful PATCH.
    """
    expense = _get_expense_or_404(session, expense_id)
    _require_owner(expense, account, "edit")

    if expense.is_deleted:
        raise AppError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
            422,
        )

    group = session.get(Group, expense.group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {expense.group_id} does not exist.",
            404,
        )

    split_mode = data.get("split_mode", expense.split_mode)
    total_amount = data.get("total_amount", expense.total_amount)
    paid_by = normalize_member_id(data.get("paid_by_member_id", expense.paid_by_member_id))
    involved = normalize_member_ids(data.get("involved_member_ids", expense.involved_member_ids))

    amounts_touched = any(
        key in data for key in ("split_mode", "total_amount", "paid_by_member_id", "involved_member_ids", "splits")
    )
    if amounts_touched:
        custom_splits = data.get("splits", expense.splits)
        if group.is_direct:
            _require_direct_friend(session, group, account, involved)
        expense.splits = _apply_amounts(
            session, group, split_mode, Decimal(str(total_amount)), paid_by, involved, custom_splits,
        )
        expense.split_mode = split_mode
        expense.total_amount = total_amount
        expense.paid_by_member_id = paid_by
        expense.involved_member_ids = involved

    if "description" in data:
        expense.description = data["description"].strip()
    if "is_settled" in data:
        expense.is_settled = bool(data["is_settled"])

    expense.updated_at = utcnow()
    session.flush()

    _refresh_visibility(session, expense, group, account)
    return expense


def delete_expense(session: Session, account: Account, expense_id: str) -> Expense:
    """
    Soft-deletes an expense. The row stays; its fan-out rows are removed.
    Idempotent: re-deleting is a no-op success.
    """
    expense = _get_expense_or_404(session, expense_id)
    _require_owner(expense, account, "delete")

    if not expense.is_deleted:
        expense.deleted_at = utcnow()
        expense.updated_at = expense.deleted_at
        session.flush()

    fanout_service.reconcile_expense(session, expense)
    return expense


def clear_all_expenses_for_user(session: Session, account: Account) -> dict:
    """
    Hard-deletes every expense the caller owns with its fan-out rows, and
    drops the caller's fan-out rows for expenses owned by others.

    Returns: {"expenses_deleted", "fanout_rows_deleted"}
    """
    owner_filter = [normalized(Expense.owner_email) == normalize_email(account.email)]
    if account.id:
        owner_filter.append(Expense.owner_account_id == account.id)
    owned_ids = list(session.execute(
        select(Expense.id).where(or_(*owner_filter))
    ).scalars().all())

    fanout_rows = fanout_service.delete_fanout_for_expenses(session, owned_ids)
    expenses_deleted = 0
    if owned_ids:
        expenses_deleted = session.execute(
            delete(Expense).where(Expense.id.in_(owned_ids))
        ).rowcount or 0
    fanout_rows += session.execute(
        delete(UserExpense).where(UserExpense.user_id == account.id)
    ).rowcount or 0

    session.flush()
    return {"expenses_deleted": expenses_deleted, "fanout_rows_deleted": fanout_rows}
