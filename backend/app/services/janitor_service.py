"""
services/janitor_service.py — Periodic orphan cleanup.

Accounts can disappear without going through the cascade deleter (manual
database deletes, a crashed delete). The janitor finds data that still
references a missing account and removes it, a few orphans per tick.

One tick:
  1. Read one keyset page of account_friends and one of groups, continuing
     from the cursors stored in janitor_state. A cursor resets once its
     table is exhausted, so every row is visited eventually.
  2. Collect owner emails, linked emails, linked account IDs and linked
     member IDs from those pages, and keep the ones with no account.
  3. Clean at most `max_orphans_per_run`, in the order:
        linked email → linked account ID → linked member ID → owner email
     Linked kinds delete the dangling friend rows. Owner emails run the
     full hard cleanup.

Transactions:
  Unlike request-scoped services, the janitor owns its transactions. The
  cursor update commits on its own, and every orphan is cleaned in its own
  transaction: commit on success, rollback on failure. Existence is
  re-checked inside that transaction, so an account that re-authenticated
  since the scan is skipped. An orphan counts as cleaned only when no row
  still references it afterwards, matching stored values case- and
  whitespace-insensitively. One failure never aborts the rest of the tick.

Every step is logged as a structured record carrying the tick's
operation_id.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from backend.app.models.account import Account
from backend.app.models.account_friend import AccountFriend
from backend.app.models.group import Group
from backend.app.models.janitor_state import JanitorState
from backend.app.services import alias_service, cleanup_service, legacy_lookup
from backend.app.services.identity import normalize_email, normalize_member_id
from backend.app.services.legacy_lookup import normalized
from backend.app.timeutil import utcnow

logger = logging.getLogger(__name__)

STATE_KEY = "default"
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_ORPHANS_PER_RUN = 5

# Order in which orphan kinds consume the per-tick budget.
ORPHAN_KINDS = ("linked_email", "linked_account_id", "linked_member_id", "owner_email")


def _log(step: str, operation_id: str, level: int = logging.INFO, **fields) -> None:
    payload = {"scope": "janitor.cleanup_orphans", "operation_id": operation_id, "step": step, **fields}
    logger.log(
        level,
        "janitor step=%s operation_id=%s %s",
        step,
        operation_id,
        json.dumps(payload, sort_keys=True, default=str),
    )


# ── Scan ───────────────────────────────────────────────────────────────────

def _get_or_create_state(session: Session) -> JanitorState:
    state = session.execute(
        select(JanitorState).where(JanitorState.key == STATE_KEY)
    ).scalar_one_or_none()
    if state is None:
        state = JanitorState(key=STATE_KEY)
        session.add(state)
        session.flush()
    return state


def _scan_pages(session: Session, page_size: int) -> dict:
    """Reads the next page of each table and advances the cursors."""
    state = _get_or_create_state(session)

    friend_stmt = select(AccountFriend).order_by(AccountFriend.id).limit(page_size)
    if state.friends_cursor is not None:
        friend_stmt = friend_stmt.where(AccountFriend.id > state.friends_cursor)
    friends = list(session.execute(friend_stmt).scalars().all())

    group_stmt = select(Group).order_by(Group.id).limit(page_size)
    if state.groups_cursor is not None:
        group_stmt = group_stmt.where(Group.id > state.groups_cursor)
    groups = list(session.execute(group_stmt).scalars().all())

    friends_cursor_was_null = state.friends_cursor is None
    state.friends_cursor = friends[-1].id if len(friends) == page_size else None
    state.groups_cursor = groups[-1].id if len(groups) == page_size else None
    state.updated_at = utcnow()

    owner_emails = {normalize_email(f.account_email) for f in friends}
    owner_emails |= {normalize_email(g.owner_email) for g in groups}

    return {
        "owner_email": {e for e in owner_emails if e},
        "linked_email": {normalize_email(f.linked_account_email) for f in friends if f.linked_account_email},
        "linked_account_id": {f.linked_account_id for f in friends if f.linked_account_id},
        "linked_member_id": {normalize_member_id(f.linked_member_id) for f in friends if f.linked_member_id},
        "friend_page_size": len(friends),
        "group_page_size": len(groups),
        "friends_cursor_was_null": friends_cursor_was_null,
    }


# ── Existence checks ───────────────────────────────────────────────────────

def _email_exists(session: Session, email: str) -> bool:
    return legacy_lookup.find_account_by_email(session, email) is not None


def _account_id_exists(session: Session, account_id: str) -> bool:
    return session.get(Account, account_id) is not None


def _member_id_exists(session: Session, member_id: str) -> bool:
    if legacy_lookup.find_account_by_member_id(session, member_id) is not None:
        return True
    canonical = alias_service.resolve_canonical_member_id(session, member_id)
    return canonical != member_id and legacy_lookup.find_account_by_member_id(session, canonical) is not None


_EXISTS: dict[str, Callable[[Session, str], bool]] = {
    "owner_email":       _email_exists,
    "linked_email":      _email_exists,
    "linked_account_id": _account_id_exists,
    "linked_member_id":  _member_id_exists,
}


# ── Cleaners ───────────────────────────────────────────────────────────────

# Friend-row column each linked kind points through. Stored values may
# predate normalization, so matches go through legacy_lookup.normalized().
_LINK_COLUMNS = {
    "linked_email":      normalized(AccountFriend.linked_account_email),
    "linked_account_id": AccountFriend.linked_account_id,
    "linked_member_id":  normalized(AccountFriend.linked_member_id),
}


def _clean(session: Session, kind: str, value: str) -> dict:
    if kind in _LINK_COLUMNS:
        deleted = session.execute(
            delete(AccountFriend).where(_LINK_COLUMNS[kind] == value)
        ).rowcount or 0
        return {"friends_deleted": deleted}
    return cleanup_service.hard_cleanup_account(session, value)


def _still_referenced(session: Session, kind: str, value: str) -> bool:
    """True if rows that made `value` an orphan survived its cleanup."""
    if kind in _LINK_COLUMNS:
        statements = [select(AccountFriend.id).where(_LINK_COLUMNS[kind] == value)]
    else:
        statements = [
            select(AccountFriend.id).where(normalized(AccountFriend.account_email) == value),
            select(Group.id).where(normalized(Group.owner_email) == value),
        ]
    return any(session.execute(stmt.limit(1)).first() is not None for stmt in statements)


# ── Public service function ────────────────────────────────────────────────

def select_orphans_for_run(orphans: dict[str, list[str]], max_orphans_per_run: int) -> list[tuple[str, str]]:
    """
    Spends the per-tick budget across orphan kinds in ORPHAN_KINDS order.
    Pure; exposed for tests.
    """
    selected: list[tuple[str, str]] = []
    for kind in ORPHAN_KINDS:
        remaining = max(0, max_orphans_per_run - len(selected))
        selected.extend((kind, value) for value in orphans.get(kind, [])[:remaining])
    return selected


def cleanup_orphans(
        session: Session,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_orphans_per_run: int = DEFAULT_MAX_ORPHANS_PER_RUN,
        operation_id: str | None = None,
) -> dict:
    """
    Runs one janitor tick.

    Returns: {"orphans_found", "orphans_cleaned", "remaining_orphans", "failures"}
    """
    operation_id = operation_id or str(uuid.uuid4())
    _log("start", operation_id, page_size=page_size, max_orphans_per_run=max_orphans_per_run)

    scan = _scan_pages(session, page_size)
    session.commit()

    _log(
        "scan_complete",
        operation_id,
        owner_email_count=len(scan["owner_email"]),
        linked_email_count=len(scan["linked_email"]),
        linked_account_id_count=len(scan["linked_account_id"]),
        linked_member_id_count=len(scan["linked_member_id"]),
        friend_page_size=scan["friend_page_size"],
        group_page_size=scan["group_page_size"],
        friends_cursor_was_null=scan["friends_cursor_was_null"],
    )

    orphans = {
        kind: sorted(value for value in scan[kind] if not _EXISTS[kind](session, value))
        for kind in ORPHAN_KINDS
    }
    orphans_found = sum(len(values) for values in orphans.values())

    _log(
        "orphans_identified",
        operation_id,
        **{f"{kind}_count": len(values) for kind, values in orphans.items()},
        **{f"{kind}_sample": values[:10] for kind, values in orphans.items()},
    )

    if orphans_found == 0:
        _log("complete", operation_id, orphans_found=0, message="No orphans found")
        return {"orphans_found": 0, "orphans_cleaned": 0, "remaining_orphans": 0, "failures": 0}

    cleaned = failures = 0
    results: list[dict] = []
    for kind, value in select_orphans_for_run(orphans, max_orphans_per_run):
        try:
            if _EXISTS[kind](session, value):
                # Re-authenticated since the scan.
                session.rollback()
                results.append({"kind": kind, "value": value, "success": True, "skipped": True})
                cleaned += 1
                continue
            stats = _clean(session, kind, value)
            session.flush()
            if _still_referenced(session, kind, value):
                # Counted as a failure so the tick reports it; rows that did
                # go are kept and the next tick retries the rest.
                session.commit()
                failures += 1
                _log(f"{kind}_cleanup_incomplete", operation_id, level=logging.WARNING,
                     kind=kind, value=value, **stats)
                results.append({"kind": kind, "value": value, "success": False, "error": "rows_remaining", **stats})
                continue
            session.commit()
            results.append({"kind": kind, "value": value, "success": True, **stats})
            cleaned += 1
        except Exception as exc:
            session.rollback()
            failures += 1
            _log(
                f"{kind}_cleanup_error",
                operation_id,
                level=logging.ERROR,
                kind=kind,
                value=value,
                error=repr(exc),
            )
            results.append({"kind": kind, "value": value, "success": False, "error": repr(exc)})

    remaining = orphans_found - cleaned - failures
    _log(
        "complete",
        operation_id,
        orphans_found=orphans_found,
        orphans_cleaned=cleaned,
        remaining_orphans=remaining,
        failures=failures,
        results=results,
    )
    return {
        "orphans_found": orphans_found,
        "orphans_cleaned": cleaned,
        "remaining_orphans": remaining,
        "failures": failures,
    }
