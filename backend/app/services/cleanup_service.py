"""
services/cleanup_service.py — Account teardown.

Two modes:

  self-delete    The user leaves. Expense and group history stays intact for
                 everyone else; only the departing account's friend list,
                 its fan-out rows and every other account's link to it are
                 removed.

  hard cleanup   Everything the account owns goes: friend rows, owned groups
                 with their expenses, owned standalone expenses, alias edges
                 touching any of its member IDs, invite tokens and link
                 requests it sent or received. Used by the admin hard delete
                 and by the orphan janitor for owners whose account row is
                 already gone.

Every path is idempotent: a janitor retry after a partial failure finds
nothing left to delete for the parts that already succeeded.

Counts returned by every path use the same keys (COUNT_KEYS).

Layer rules:
  - No Flask imports. ADMIN_EMAILS is passed in by the route.
  - Commits are the route's (or janitor's) responsibility. Only flush here.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.account import Account
from backend.app.models.account_friend import AccountFriend
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.invite_token import InviteToken
from backend.app.models.link_request import LinkRequest
from backend.app.models.member_alias import MemberAlias
from backend.app.models.user_expense import UserExpense
from backend.app.services import legacy_lookup
from backend.app.services.identity import (
    normalize_email,
    normalize_member_id,
    normalize_member_ids,
)
from backend.app.services.legacy_lookup import normalized
from backend.app.timeutil import utcnow

logger = logging.getLogger(__name__)

COUNT_KEYS = (
    "friends_deleted",
    "friends_unlinked",
    "groups_deleted",
    "expenses_deleted",
    "aliases_deleted",
    "invite_tokens_deleted",
    "link_requests_deleted",
    "fanout_rows_deleted",
)

# Page size of the reverse-link full-table scan.
REVERSE_SCAN_PAGE_SIZE = 500

VALID_SCOPES = ("self", "admin")


def _empty_counts() -> dict:
    return {key: 0 for key in COUNT_KEYS}


# ── Authorization ──────────────────────────────────────────────────────────

def is_admin(email: str | None, admin_emails: Iterable[str]) -> bool:
    caller = normalize_email(email)
    return bool(caller) and caller in {normalize_email(e) for e in admin_emails}


def require_admin(email: str | None, admin_emails: Iterable[str]) -> None:
    """Raises FORBIDDEN (403) unless `email` is a configured admin."""
    if not is_admin(email, admin_emails):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Admin access required.",
            403,
        )


# ── Private helpers ────────────────────────────────────────────────────────

def _unlink(row: AccountFriend) -> None:
    row.has_linked_account = False
    row.linked_account_id = None
    row.linked_account_email = None
    row.linked_member_id = None
    row.updated_at = utcnow()


def _account_member_ids(session: Session, email: str, account: Account | None) -> set[str]:
    """
    Every member ID that identified the account: canonical, cached aliases,
    the legacy linked ID, direct alias edges, and (when the account row is
    already gone) whatever other users' linked rows recorded for it.
    """
    ids: set[str] = set()
    if account is not None:
        ids.update(normalize_member_ids(
            [account.member_id, account.linked_member_id, *(account.alias_member_ids or [])]
        ))

    recorded = session.execute(
        select(AccountFriend.linked_member_id).where(
            normalized(AccountFriend.linked_account_email) == email,
            AccountFriend.linked_member_id.is_not(None),
        )
    ).scalars().all()
    ids.update(normalize_member_ids(recorded))

    if ids:
        edges = session.execute(
            select(MemberAlias.alias_member_id).where(
                normalized(MemberAlias.canonical_member_id).in_(sorted(ids))
            )
        ).scalars().all()
        ids.update(normalize_member_ids(edges))
    return ids


def _unlink_reverse_links(
        session: Session,
        email: str,
        account_id: str | None,
        member_ids: set[str],
) -> int:
    """
    Unlinks every *other* account's friend row that points at the departing
    account. The linked_account_email index catches clean rows; a paged scan
    of the whole table catches case variants and rows linked only by
    account ID or member ID.
    """
    unlinked: set[int] = set()

    indexed = session.execute(
        select(AccountFriend).where(
            normalized(AccountFriend.linked_account_email) == email,
            normalized(AccountFriend.account_email) != email,
        )
    ).scalars().all()
    for row in indexed:
        _unlink(row)
        unlinked.add(row.id)

    last_id = 0
    while True:
        page = list(session.execute(
            select(AccountFriend)
            .where(AccountFriend.id > last_id, AccountFriend.has_linked_account.is_(True))
            .order_by(AccountFriend.id)
            .limit(REVERSE_SCAN_PAGE_SIZE)
        ).scalars().all())
        if not page:
            break
        for row in page:
            if row.id in unlinked or normalize_email(row.account_email) == email:
                continue
            if (
                normalize_email(row.linked_account_email) == email
                or (account_id and row.linked_account_id == account_id)
                or normalize_member_id(row.linked_member_id) in member_ids
            ):
                _unlink(row)
                unlinked.add(row.id)
        last_id = page[-1].id

    session.flush()
    return len(unlinked)


def _delete_owned_friend_rows(session: Session, email: str) -> int:
    return session.execute(
        delete(AccountFriend).where(normalized(AccountFriend.account_email) == email)
    ).rowcount or 0


def _delete_expenses(session: Session, expense_ids: list[str], counts: dict) -> None:
    if not expense_ids:
        return
    counts["fanout_rows_deleted"] += session.execute(
        delete(UserExpense).where(UserExpense.expense_id.in_(expense_ids))
    ).rowcount or 0
    counts["expenses_deleted"] += session.execute(
        delete(Expense).where(Expense.id.in_(expense_ids))
    ).rowcount or 0


# ── Public service functions ───────────────────────────────────────────────

def self_delete_account(session: Session, account: Account) -> dict:
    """
    The caller deletes their own account. Groups and expenses survive; the
    account disappears from other users' linked friend rows.
    """
    email = normalize_email(account.email)
    counts = _empty_counts()

    member_ids = _account_member_ids(session, email, account)
    counts["friends_unlinked"] = _unlink_reverse_links(session, email, account.id, member_ids)
    counts["friends_deleted"] = _delete_owned_friend_rows(session, email)
    counts["fanout_rows_deleted"] = session.execute(
        delete(UserExpense).where(UserExpense.user_id == account.id)
    ).rowcount or 0

    session.delete(account)
    session.flush()

    logger.info("account_self_deleted account_id=%s counts=%s", account.id, counts)
    return counts


def hard_cleanup_account(session: Session, email: str, account: Account | None = None) -> dict:
    """
    Removes everything owned by `email` and every reference to it. Does not
    delete the account row itself. Safe on an email with no account.
    """
    email = normalize_email(email)
    if account is None:
        account = legacy_lookup.find_account_by_email(session, email)
    account_id = account.id if account is not None else None
    counts = _empty_counts()

    member_ids = _account_member_ids(session, email, account)

    # ── Friend rows ────────────────────────────────────────────────────────
    counts["friends_deleted"] = _delete_owned_friend_rows(session, email)
    counts["friends_unlinked"] = _unlink_reverse_links(session, email, account_id, member_ids)

    # ── Owned groups and their expenses ────────────────────────────────────
    owner_filter = [normalized(Group.owner_email) == email]
    if account_id:
        owner_filter.append(Group.owner_account_id == account_id)
    group_ids = list(session.execute(
        select(Group.id).where(or_(*owner_filter))
    ).scalars().all())

    if group_ids:
        group_expense_ids = list(session.execute(
            select(Expense.id).where(Expense.group_id.in_(group_ids))
        ).scalars().all())
        _delete_expenses(session, group_expense_ids, counts)
        counts["groups_deleted"] = session.execute(
            delete(Group).where(Group.id.in_(group_ids))
        ).rowcount or 0

    # ── Owned standalone expenses ──────────────────────────────────────────
    expense_filter = [normalized(Expense.owner_email) == email]
    if account_id:
        expense_filter.append(Expense.owner_account_id == account_id)
    standalone_ids = list(session.execute(
        select(Expense.id).where(or_(*expense_filter))
    ).scalars().all())
    _delete_expenses(session, standalone_ids, counts)

    # ── Alias edges with any of the account's IDs at either end ────────────
    if member_ids:
        ids = sorted(member_ids)
        counts["aliases_deleted"] = session.execute(
            delete(MemberAlias).where(or_(
                normalized(MemberAlias.alias_member_id).in_(ids),
                normalized(MemberAlias.canonical_member_id).in_(ids),
            ))
        ).rowcount or 0

    # ── Invite tokens and link requests ────────────────────────────────────
    token_filter = [normalized(InviteToken.creator_email) == email]
    request_filter = [
        normalized(LinkRequest.requester_email) == email,
        normalized(LinkRequest.recipient_email) == email,
    ]
    if account_id:
        token_filter += [InviteToken.creator_id == account_id, InviteToken.claimed_by == account_id]
        request_filter.append(LinkRequest.requester_id == account_id)
    counts["invite_tokens_deleted"] = session.execute(
        delete(InviteToken).where(or_(*token_filter))
    ).rowcount or 0
    counts["link_requests_deleted"] = session.execute(
        delete(LinkRequest).where(or_(*request_filter))
    ).rowcount or 0

    # ── The account's own fan-out rows ─────────────────────────────────────
    if account_id:
        counts["fanout_rows_deleted"] += session.execute(
            delete(UserExpense).where(UserExpense.user_id == account_id)
        ).rowcount or 0

    session.flush()
    logger.info("account_hard_cleanup email=%s account_id=%s counts=%s", email, account_id, counts)
    return counts


def hard_delete_user(session: Session, email: str) -> dict:
    """
    Admin path: hard cleanup, then the account row.

    Returns: {"status": "deleted" | "not_found_but_scrubbed", "email", "counts"}
    """
    normalized = normalize_email(email)
    account = legacy_lookup.find_account_by_email(session, normalized)
    counts = hard_cleanup_account(session, normalized, account)

    if account is None:
        return {"status": "not_found_but_scrubbed", "email": normalized, "counts": counts}

    session.delete(account)
    session.flush()
    logger.info("account_hard_deleted email=%s account_id=%s", normalized, account.id)
    return {"status": "deleted", "email": normalized, "counts": counts}


def delete_account(
        session: Session,
        caller,
        scope: str,
        target_email: str | None = None,
        admin_emails: Iterable[str] = (),
) -> dict:
    """
    scope="self":  `caller` (an Account) deletes itself.
    scope="admin": `caller` (anything with .email) must be an admin and
                   hard-deletes `target_email`.

    Raises:
      INVALID_DELETE_SCOPE (400), FORBIDDEN (403), MISSING_FIELD (400)
    """
    if scope not in VALID_SCOPES:
        raise AppError(
            ErrorCode.INVALID_DELETE_SCOPE,
            f"scope must be one of: {', '.join(VALID_SCOPES)}.",
            400,
            field="scope",
        )

    if scope == "self":
        return {"status": "deleted", "email": normalize_email(caller.email),
                "counts": self_delete_account(session, caller)}

    require_admin(caller.email, admin_emails)
    if not normalize_email(target_email):
        raise AppError(
            ErrorCode.MISSING_FIELD,
            "email is required for an admin delete.",
            400,
            field="email",
        )
    return hard_delete_user(session, target_email)
