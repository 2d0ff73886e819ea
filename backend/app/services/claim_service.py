"""
services/claim_service.py — Binds an authenticated account to a member placeholder.

Shared core of invite-token claims (invite_service.claim_invite) and
link-request acceptance (link_request_service.accept_link_request).

Account B claims placeholder P created by account A:

  1. Preconditions (fail fast, no writes):
       SELF_CLAIM     (409): B is A
       ALREADY_LINKED (409): P is bound to a different existing account
       ALIAS_CONFLICT (409): P already resolves to a canonical other than
                              itself or B's canonical ID
  2. Token/request state transition. Done by the caller, after step 1,
     as a guarded single-writer update.
  3. Alias edge P → B.member_id unless P already resolves there.
  4. P appended to B's cached alias_member_ids.
  5. Friend rows for P owned by A, and by every account that shares a group
     containing P, are linked to B. Rows already linked to another account
     are left alone and reported as warnings.
  6. Reciprocal friend row so B sees A.
  7. The member *name* for P is rewritten in every group snapshot that
     contains it. Member IDs in snapshots are never rewritten.
  8. Expenses in those groups that involve P get B's email in
     participant_emails, B's linkage on P's participant entry, and a fan-out
     reconcile.

Steps 3–8 are each idempotent. The whole pipeline may be re-run after a
partial failure and converges to the same state.

Layer rules:
  - No Flask imports. Session parameter only.
  - Commits are the route's responsibility. Only flush here.
"""

from __future__ import annotations

import logging
import random
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode, WarningCode
from backend.app.models.account import Account
from backend.app.models.account_friend import AccountFriend, FriendStatus
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.services import alias_service, fanout_service, group_service, legacy_lookup
from backend.app.services.friend_service import AVATAR_COLORS
from backend.app.services.identity import (
    LINKING_CONTRACT_VERSION,
    normalize_email,
    normalize_member_id,
    normalize_member_ids,
)
from backend.app.timeutil import utcnow

logger = logging.getLogger(__name__)

# Expenses are loaded for this many groups per query.
EXPENSE_GROUP_CHUNK = 200


# ── Private helpers ────────────────────────────────────────────────────────

def _ensure_member_id(account: Account) -> str:
    """Accounts created before canonical IDs existed get one on first claim."""
    if not account.member_id:
        account.member_id = normalize_member_id(account.linked_member_id) or str(uuid.uuid4())
        logger.info(
            "account_member_id_backfilled account_id=%s member_id=%s",
            account.id,
            account.member_id,
        )
    return normalize_member_id(account.member_id)


def check_claim_preconditions(
        session: Session,
        account: Account,
        target_member_id: str,
        creator_email: str,
        creator_id: str | None,
) -> None:
    """
    Step 1. Raises a named conflict instead of writing anything.
    Runs inside the claiming transaction, so a racing claim that committed
    first is observed here.
    """
    target = normalize_member_id(target_member_id)
    claimer_email = normalize_email(account.email)

    if claimer_email == normalize_email(creator_email) or (creator_id and creator_id == account.id):
        raise AppError(
            ErrorCode.SELF_CLAIM,
            "You cannot claim your own invite.",
            409,
        )

    canonical = normalize_member_id(account.member_id)

    owner = legacy_lookup.find_account_by_member_id(session, target)
    if owner is not None and owner.id != account.id:
        raise AppError(
            ErrorCode.ALREADY_LINKED,
            "This person is already linked to another account.",
            409,
        )

    resolved = alias_service.resolve_canonical_member_id(session, target)
    if resolved not in (target, canonical):
        bound = legacy_lookup.find_account_by_member_id(session, resolved)
        if bound is not None and bound.id != account.id:
            raise AppError(
                ErrorCode.ALREADY_LINKED,
                "This person is already linked to another account.",
                409,
            )
        raise AppError(
            ErrorCode.ALIAS_CONFLICT,
            f"Member {target} already resolves to {resolved}.",
            409,
        )


def _link_friend_row(row: AccountFriend, claimer: Account, canonical: str) -> bool:
    """
    Points `row` at `claimer` and swaps the placeholder name for the real
    display name. Returns False (and leaves the row untouched) if it is
    already linked to a different account.
    """
    if row.has_linked_account and row.linked_account_id not in (None, claimer.id):
        linked_email = normalize_email(row.linked_account_email)
        if linked_email and linked_email != normalize_email(claimer.email):
            return False

    real_name = claimer.display_name or claimer.email or "Unknown"
    if row.name != real_name:
        if row.original_name is None:
            row.original_name = row.name
        row.name = real_name
    if row.nickname and row.nickname.strip().lower() == real_name.strip().lower():
        row.original_nickname = row.nickname
        row.nickname = None

    row.member_id = normalize_member_id(row.member_id)
    row.has_linked_account = True
    row.linked_account_id = claimer.id
    row.linked_account_email = normalize_email(claimer.email)
    row.linked_member_id = canonical
    row.updated_at = utcnow()
    return True


def _update_owner_friend_rows(
        session: Session,
        owner_email: str,
        target: str,
        claimer: Account,
        canonical: str,
        warnings: list[dict],
) -> int:
    """Step 5 for one owner. Returns rows linked."""
    row = legacy_lookup.find_friend_by_member_id(session, owner_email, target)
    if row is None:
        return 0

    canonical_row = legacy_lookup.find_friend_by_member_id(session, owner_email, canonical)
    if canonical_row is not None and canonical_row.id != row.id:
        # The owner already knows B under B's canonical ID: keep that row,
        # drop the placeholder duplicate.
        if _link_friend_row(canonical_row, claimer, canonical):
            session.delete(row)
            return 1
        warnings.append({"code": WarningCode.FRIEND_LINK_PRESERVED, "owner_email": owner_email})
        return 0

    if _link_friend_row(row, claimer, canonical):
        return 1
    warnings.append({"code": WarningCode.FRIEND_LINK_PRESERVED, "owner_email": owner_email})
    return 0


def _ensure_reciprocal_friend(session: Session, claimer: Account, creator: Account) -> None:
    """Step 6: B sees A."""
    creator_member_id = normalize_member_id(creator.member_id)
    if not creator_member_id:
        return

    row = legacy_lookup.find_friend_by_member_id(session, claimer.email, creator_member_id)
    if row is None:
        session.add(AccountFriend(
            account_email=normalize_email(claimer.email),
            member_id=creator_member_id,
            name=creator.display_name or creator.email,
            profile_avatar_color=creator.profile_avatar_color or random.choice(AVATAR_COLORS),
            has_linked_account=True,
            linked_account_id=creator.id,
            linked_account_email=normalize_email(creator.email),
            linked_member_id=creator_member_id,
            status=FriendStatus.FRIEND.value,
            updated_at=utcnow(),
        ))
        return

    _link_friend_row(row, creator, creator_member_id)


def _rename_group_member(group: Group, target: str, real_name: str) -> bool:
    """Step 7 for one group. IDs untouched. Returns True when changed."""
    changed = False
    members = []
    for member in group.members or []:
        entry = dict(member)
        if normalize_member_id(entry.get("id")) == target and entry.get("name") != real_name:
            entry["name"] = real_name
            changed = True
        members.append(entry)
    if changed:
        # New list object so SQLAlchemy detects the JSON change.
        group.members = members
        group.updated_at = utcnow()
    return changed


def _expense_involves(expense: Expense, target: str) -> bool:
    if normalize_member_id(expense.paid_by_member_id) == target:
        return True
    if target in normalize_member_ids(expense.involved_member_ids):
        return True
    if any(normalize_member_id(s.get("member_id")) == target for s in expense.splits or []):
        return True
    return any(normalize_member_id(p.get("member_id")) == target for p in expense.participants or [])


def _backfill_expense(session: Session, expense: Expense, target: str, claimer: Account) -> bool:
    """Step 8 for one expense. Returns True when the row changed."""
    claimer_email = normalize_email(claimer.email)
    changed = False

    emails = [normalize_email(e) for e in expense.participant_emails or []]
    if claimer_email not in emails:
        expense.participant_emails = emails + [claimer_email]
        changed = True

    participants = []
    for participant in expense.participants or []:
        entry = dict(participant)
        if normalize_member_id(entry.get("member_id")) == target and (
            entry.get("linked_account_id") != claimer.id
            or entry.get("linked_account_email") != claimer_email
        ):
            entry["linked_account_id"] = claimer.id
            entry["linked_account_email"] = claimer_email
            changed = True
        participants.append(entry)
    if changed:
        expense.participants = participants
        expense.updated_at = utcnow()

    fanout_service.reconcile_expense(session, expense)
    return changed


# ── Public service function ────────────────────────────────────────────────

def claim_for_account(
        session: Session,
        account: Account,
        target_member_id: str,
        creator_email: str,
        creator_id: str | None = None,
        operation_id: str | None = None,
) -> dict:
    """
    Runs steps 1 and 3–8 for `account` claiming `target_member_id`.

    Callers that guard a token or request must call
    check_claim_preconditions() themselves before their state transition;
    this function re-checks them so it is safe to call on its own.

    Returns:
        {"contract_version", "target_member_id", "canonical_member_id",
         "alias_member_ids", "linked_member_id", "linked_account_id",
         "linked_account_email", "friends_linked", "groups_renamed",
         "expenses_updated", "warnings"}
    """
    operation_id = operation_id or uuid.uuid4().hex[:12]
    target = normalize_member_id(target_member_id)
    creator_email = normalize_email(creator_email)
    canonical = _ensure_member_id(account)
    warnings: list[dict] = []

    check_claim_preconditions(session, account, target, creator_email, creator_id)

    # ── Step 3: alias edge ─────────────────────────────────────────────────
    if target != canonical:
        alias_service.ensure_alias_edge(session, target, canonical, account.email)

    # ── Step 4: cached alias set ───────────────────────────────────────────
    alias_service.add_to_alias_cache(account, target)
    account.updated_at = utcnow()
    session.flush()

    # ── Step 5: friend rows of the creator and of group co-members ─────────
    friends_linked = _update_owner_friend_rows(
        session, creator_email, target, account, canonical, warnings,
    )

    identity_ids = {target, canonical}
    groups = list(group_service.iter_groups_containing(session, identity_ids))

    shared_emails: set[str] = set()
    for group in groups:
        shared_emails.add(normalize_email(group.owner_email))
        for member_id in group.member_ids:
            normalized = normalize_member_id(member_id)
            if normalized in identity_ids:
                continue
            co_member = legacy_lookup.find_account_by_member_id(session, normalized)
            if co_member is not None:
                shared_emails.add(normalize_email(co_member.email))
    shared_emails.discard(creator_email)
    shared_emails.discard(normalize_email(account.email))
    shared_emails.discard("")

    for owner_email in sorted(shared_emails):
        friends_linked += _update_owner_friend_rows(
            session, owner_email, target, account, canonical, warnings,
        )

    # ── Step 6: reciprocal friend row ──────────────────────────────────────
    creator = legacy_lookup.find_account_by_email(session, creator_email)
    if creator is None and creator_id:
        creator = session.get(Account, creator_id)
    if creator is not None:
        _ensure_reciprocal_friend(session, account, creator)

    # ── Step 7: member names in group snapshots ────────────────────────────
    real_name = account.display_name or account.email
    groups_renamed = sum(1 for group in groups if _rename_group_member(group, target, real_name))
    session.flush()

    # ── Step 8: expense visibility ─────────────────────────────────────────
    expenses_updated = 0
    group_ids = [group.id for group in groups]
    for start in range(0, len(group_ids), EXPENSE_GROUP_CHUNK):
        chunk = group_ids[start:start + EXPENSE_GROUP_CHUNK]
        expenses = session.execute(
            select(Expense).where(Expense.group_id.in_(chunk)).order_by(Expense.id)
        ).scalars().all()
        for expense in expenses:
            if _expense_involves(expense, target):
                if _backfill_expense(session, expense, target, account):
                    expenses_updated += 1
    session.flush()

    logger.info(
        "claim_complete operation_id=%s account_id=%s target=%s canonical=%s "
        "friends_linked=%d groups_renamed=%d expenses_updated=%d warnings=%d",
        operation_id,
        account.id,
        target,
        canonical,
        friends_linked,
        groups_renamed,
        expenses_updated,
        len(warnings),
    )

    return {
        "contract_version": LINKING_CONTRACT_VERSION,
        "target_member_id": target,
        "canonical_member_id": canonical,
        "alias_member_ids": normalize_member_ids(account.alias_member_ids),
        "linked_member_id": canonical,
        "linked_account_id": account.id,
        "linked_account_email": normalize_email(account.email),
        "friends_linked": friends_linked,
        "groups_renamed": groups_renamed,
        "expenses_updated": expenses_updated,
        "warnings": warnings,
    }
