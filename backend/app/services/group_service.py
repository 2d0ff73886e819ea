"""
services/group_service.py — Group snapshots and membership by equivalence.

A group stores a snapshot of its members ({"id", "name", "is_current_user"}).
Member IDs in that snapshot are never rewritten when an alias is created,
so "is this account in this group" is always answered through the alias
graph: the caller is a member if any ID equivalent to one of the caller's
IDs appears in the snapshot.

Authorization rules:
  - Create/update/delete: the group owner (owner_email) only
  - Read:                 the owner, or any account that is a member by equivalence
  - Leave:                any member by equivalence; every snapshot entry
                          equivalent to the caller is removed

Deleting a group hard-deletes its expenses and their fan-out rows. A group
left with no members is deleted the same way.

Layer rules:
  - No Flask imports. Session parameter only.
  - Commits are the route's responsibility. Only flush here.
"""

from __future__ import annotations

import uuid
from typing import Iterator

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.account import Account
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.services import alias_service, fanout_service
from backend.app.services.identity import (
    normalize_email,
    normalize_member_id,
    normalize_member_ids,
)
from backend.app.services.legacy_lookup import normalized
from backend.app.timeutil import as_utc, isoformat, utcnow

# Groups are scanned in keyset pages of this size.
GROUP_SCAN_PAGE_SIZE = 200


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(session: Session, group_id: str) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def _normalize_members(members: list[dict]) -> list[dict]:
    """Normalizes member IDs and drops duplicates, keeping the first entry."""
    result: list[dict] = []
    seen: set[str] = set()
    for member in members or []:
        member_id = normalize_member_id(member.get("id"))
        if not member_id or member_id in seen:
            continue
        seen.add(member_id)
        result.append({
            "id": member_id,
            "name": (member.get("name") or "").strip() or "Unknown",
            "is_current_user": bool(member.get("is_current_user", False)),
        })
    return result


def serialize_group(group: Group) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "members": list(group.members or []),
        "owner_email": group.owner_email,
        "owner_account_id": group.owner_account_id,
        "is_direct": group.is_direct,
        "created_at": isoformat(group.created_at),
        "updated_at": isoformat(group.updated_at),
    }


# ── Membership ─────────────────────────────────────────────────────────────

def account_member_ids(session: Session, account: Account) -> set[str]:
    """Every member ID that currently means `account`."""
    ids = set(normalize_member_ids(account.alias_member_ids))
    canonical = normalize_member_id(account.member_id)
    if canonical:
        ids |= alias_service.get_all_equivalent_member_ids(session, canonical)
    return ids


def group_equivalent_member_ids(session: Session, group: Group) -> set[str]:
    """The snapshot's member IDs plus everything equivalent to them."""
    ids: set[str] = set()
    for member_id in normalize_member_ids(group.member_ids):
        ids |= alias_service.get_all_equivalent_member_ids(session, member_id)
    return ids


def is_group_member(session: Session, group: Group, member_id: str) -> bool:
    """True if `member_id`, or any ID equivalent to it, is in the snapshot."""
    snapshot = set(normalize_member_ids(group.member_ids))
    return bool(alias_service.get_all_equivalent_member_ids(session, member_id) & snapshot)


def can_view_group(session: Session, group: Group, account: Account, caller_ids: set[str] | None = None) -> bool:
    if normalize_email(group.owner_email) == normalize_email(account.email):
        return True
    if caller_ids is None:
        caller_ids = account_member_ids(session, account)
    return bool(caller_ids & set(normalize_member_ids(group.member_ids)))


def iter_groups_containing(session: Session, member_ids: set[str]) -> Iterator[Group]:
    """Keyset scan over all groups, yielding those whose snapshot lists any of `member_ids`."""
    last_id: str | None = None
    while True:
        stmt = select(Group).order_by(Group.id).limit(GROUP_SCAN_PAGE_SIZE)
        if last_id is not None:
            stmt = stmt.where(Group.id > last_id)
        page = list(session.execute(stmt).scalars().all())
        if not page:
            return
        for group in page:
            if any(normalize_member_id(m) in member_ids for m in group.member_ids):
                yield group
        last_id = page[-1].id


# ── Public service functions ───────────────────────────────────────────────

def upsert_group(session: Session, account: Account, data: dict) -> tuple[Group, bool]:
    """
    Creates a group, or replaces the name/member snapshot of an existing one.

    `data["id"]` is client-generated; it is optional on create. Only the
    owner may update an existing group.

    Returns: (group, created)
    """
    group_id = (data.get("id") or "").strip() or str(uuid.uuid4())
    members = _normalize_members(data.get("members") or [])
    owner_email = normalize_email(account.email)

    group = session.get(Group, group_id)
    created = group is None

    if group is None:
        group = Group(
            id=group_id,
            name=data["name"].strip(),
            members=members,
            owner_email=owner_email,
            owner_account_id=account.id,
            is_direct=bool(data.get("is_direct", False)),
        )
        session.add(group)
    else:
        if normalize_email(group.owner_email) != owner_email:
            raise AppError(
                ErrorCode.FORBIDDEN,
                "Only the group owner may update this group.",
                403,
            )
        group.name = data["name"].strip()
        group.members = members
        if "is_direct" in data:
            group.is_direct = bool(data["is_direct"])
        group.updated_at = utcnow()

    session.flush()
    return group, created


def list_groups(session: Session, account: Account) -> list[Group]:
    """
    Groups the caller owns or belongs to (by equivalence), oldest first.
    """
    caller_ids = account_member_ids(session, account)

    owned = session.execute(
        select(Group).where(Group.owner_email == normalize_email(account.email))
    ).scalars().all()

    by_id = {g.id: g for g in owned}
    for group in iter_groups_containing(session, caller_ids):
        by_id.setdefault(group.id, group)

    return sorted(by_id.values(), key=lambda g: (as_utc(g.created_at), g.id))


def get_group(session: Session, account: Account, group_id: str) -> Group:
    """
    Returns one group.

    Raises:
      GROUP_NOT_FOUND (404)
      FORBIDDEN       (403) — caller is neither owner nor member
    """
    group = _get_group_or_404(session, group_id)
    if not can_view_group(session, group, account):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )
    return group


# ── Delete and leave ───────────────────────────────────────────────────────

def _is_owner(group: Group, account: Account) -> bool:
    if account.id and group.owner_account_id == account.id:
        return True
    return normalize_email(group.owner_email) == normalize_email(account.email)


def _delete_group_with_expenses(session: Session, group: Group) -> int:
    """Hard-deletes `group`, its expenses and their fan-out rows. Returns expenses deleted."""
    expense_ids = list(session.execute(
        select(Expense.id).where(Expense.group_id == group.id)
    ).scalars().all())
    fanout_service.delete_fanout_for_expenses(session, expense_ids)
    deleted = 0
    if expense_ids:
        deleted = session.execute(
            delete(Expense).where(Expense.id.in_(expense_ids))
        ).rowcount or 0
    session.delete(group)
    session.flush()
    return deleted


def _remove_members(group: Group, member_ids: set[str]) -> list[dict]:
    return [m for m in group.members or [] if normalize_member_id(m.get("id")) not in member_ids]


def delete_group(session: Session, account: Account, group_id: str) -> dict:
    """
    Deletes one owned group with its expenses. A group that does not exist
    is a no-op success, so a retried delete succeeds.

    Raises:
      FORBIDDEN (403) — caller does not own the group
    """
    group = session.get(Group, group_id)
    if group is None:
        return {"id": group_id, "deleted": False, "expenses_deleted": 0}
    if not _is_owner(group, account):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the group owner may delete this group.",
            403,
        )
    return {"id": group_id, "deleted": True, "expenses_deleted": _delete_group_with_expenses(session, group)}


def delete_groups(session: Session, account: Account, group_ids: list[str]) -> dict:
    """Bulk delete. Missing groups and groups owned by someone else are skipped."""
    deleted_ids: list[str] = []
    skipped_ids: list[str] = []
    expenses_deleted = 0
    for group_id in group_ids:
        group = session.get(Group, group_id)
        if group is None or not _is_owner(group, account):
            skipped_ids.append(group_id)
            continue
        expenses_deleted += _delete_group_with_expenses(session, group)
        deleted_ids.append(group_id)
    return {"deleted_ids": deleted_ids, "skipped_ids": skipped_ids, "expenses_deleted": expenses_deleted}


def leave_group(session: Session, account: Account, group_id: str) -> dict:
    """
    Removes every snapshot entry equivalent to the caller. When nobody is
    left, the group is deleted with its expenses.

    Raises:
      GROUP_NOT_FOUND (404)
      FORBIDDEN       (403) — no snapshot entry is equivalent to the caller
    """
    group = _get_group_or_404(session, group_id)
    caller_ids = account_member_ids(session, account)
    remaining = _remove_members(group, caller_ids)

    if len(remaining) == len(group.members or []):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )

    if not remaining:
        expenses_deleted = _delete_group_with_expenses(session, group)
        return {"id": group_id, "group_deleted": True, "remaining_members": 0, "expenses_deleted": expenses_deleted}

    group.members = remaining
    group.updated_at = utcnow()
    session.flush()
    return {"id": group_id, "group_deleted": False, "remaining_members": len(remaining), "expenses_deleted": 0}


def clear_all_groups_for_user(session: Session, account: Account) -> dict:
    """
    Deletes every group the caller owns, then leaves every other group the
    caller belongs to by equivalence. Shared groups that end up empty are
    deleted too.
    """
    owner_filter = [normalized(Group.owner_email) == normalize_email(account.email)]
    if account.id:
        owner_filter.append(Group.owner_account_id == account.id)
    owned = list(session.execute(select(Group).where(or_(*owner_filter))).scalars().all())
    owned_ids = {g.id for g in owned}

    caller_ids = account_member_ids(session, account)
    shared = [g for g in iter_groups_containing(session, caller_ids) if g.id not in owned_ids]

    counts = {
        "owned_groups_deleted": 0,
        "shared_groups_left": 0,
        "empty_shared_groups_deleted": 0,
        "expenses_deleted": 0,
    }
    for group in owned:
        counts["expenses_deleted"] += _delete_group_with_expenses(session, group)
        counts["owned_groups_deleted"] += 1

    for group in shared:
        remaining = _remove_members(group, caller_ids)
        if not remaining:
            counts["expenses_deleted"] += _delete_group_with_expenses(session, group)
            counts["empty_shared_groups_deleted"] += 1
            continue
        group.members = remaining
        group.updated_at = utcnow()
        counts["shared_groups_left"] += 1

    session.flush()
    return counts
