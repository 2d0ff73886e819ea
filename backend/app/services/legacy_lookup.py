"""
services/legacy_lookup.py — Backward-compatible identity lookups.

Rows written before member IDs and emails were normalized on write may
still carry mixed case or stray whitespace, and pre-canonical accounts
identify themselves through the deprecated `linked_member_id` field. Every
fallback for that data lives here and nowhere else.

Each lookup tries, in order:
  1. the normalized value against its index      (the only path for clean data)
  2. the raw value against the same index        (un-normalized writes)
  3. the normalized value against lower(trim(column))   (everything else)

Step 3 cannot use the column index, but it is a single filtered query: it
never reads rows that cannot match and never truncates.

Once a migration has normalized every stored row, steps 2 and 3 can be
deleted by bumping COMPAT_LOOKUP_VERSION to a version that only does step 1.

Layer rules:
  - No Flask imports. Session parameter only. Read-only.
"""

from __future__ import annotations

import logging

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.orm import Session

from backend.app.models.account import Account
from backend.app.models.account_friend import AccountFriend
from backend.app.models.member_alias import MemberAlias
from backend.app.services.identity import normalize_email, normalize_member_id

logger = logging.getLogger(__name__)

COMPAT_LOOKUP_VERSION = 1


def _log_fallback(kind: str, value: str) -> None:
    logger.info(
        "legacy_lookup_fallback kind=%s value=%s compat_version=%s",
        kind,
        value,
        COMPAT_LOOKUP_VERSION,
    )


def normalized(column):
    """SQL form of normalize_email / normalize_member_id applied to `column`."""
    return func.lower(func.trim(column))


# ── Accounts ───────────────────────────────────────────────────────────────

def find_account_by_email(session: Session, email: str | None) -> Account | None:
    target = normalize_email(email)
    if not target:
        return None

    account = session.execute(
        select(Account).where(Account.email == target)
    ).scalar_one_or_none()
    if account is not None:
        return account

    raw = (email or "").strip()
    if raw and raw != target:
        account = session.execute(
            select(Account).where(Account.email == raw)
        ).scalars().first()
        if account is not None:
            _log_fallback("account_email_raw", raw)
            return account

    account = session.execute(
        select(Account).where(normalized(Account.email) == target)
    ).scalars().first()
    if account is not None:
        _log_fallback("account_email_normalized", target)
    return account


def find_account_by_member_id(session: Session, member_id: str | None) -> Account | None:
    """
    Returns the account whose canonical member ID, cached alias set, or
    legacy linked_member_id equals `member_id` (after normalization).
    """
    target = normalize_member_id(member_id)
    if not target:
        return None

    account = session.execute(
        select(Account).where(Account.member_id == target)
    ).scalar_one_or_none()
    if account is not None:
        return account

    raw = (member_id or "").strip()
    if raw and raw != target:
        account = session.execute(
            select(Account).where(Account.member_id == raw)
        ).scalars().first()
        if account is not None:
            _log_fallback("account_member_id_raw", raw)
            return account

    account = session.execute(
        select(Account).where(Account.linked_member_id == target)
    ).scalars().first()
    if account is not None:
        _log_fallback("account_linked_member_id", target)
        return account

    # alias_member_ids is a JSON list, so its text form holds every entry
    # in double quotes. The LIKE narrows the candidates; Python confirms.
    candidates = session.execute(
        select(Account).where(or_(
            normalized(Account.member_id) == target,
            normalized(Account.linked_member_id) == target,
            func.lower(cast(Account.alias_member_ids, String)).contains(f'"{target}"', autoescape=True),
        ))
    ).scalars().all()
    for candidate in candidates:
        if normalize_member_id(candidate.member_id) == target:
            _log_fallback("account_member_id_normalized", target)
            return candidate
    for candidate in candidates:
        if normalize_member_id(candidate.linked_member_id) == target:
            _log_fallback("account_linked_member_id_normalized", target)
            return candidate
        cached = {normalize_member_id(a) for a in (candidate.alias_member_ids or [])}
        if target in cached:
            _log_fallback("account_alias_cache", target)
            return candidate
    return None


# ── Alias edges ────────────────────────────────────────────────────────────

def find_alias_by_alias_member_id(session: Session, member_id: str | None) -> MemberAlias | None:
    """Returns the outgoing alias edge of `member_id`, if any."""
    target = normalize_member_id(member_id)
    if not target:
        return None

    edge = session.execute(
        select(MemberAlias).where(MemberAlias.alias_member_id == target)
    ).scalar_one_or_none()
    if edge is not None:
        return edge

    raw = (member_id or "").strip()
    if raw and raw != target:
        edge = session.execute(
            select(MemberAlias).where(MemberAlias.alias_member_id == raw)
        ).scalars().first()
        if edge is not None:
            _log_fallback("alias_raw", raw)
            return edge
    return None


def find_aliases_by_canonical_member_id(session: Session, canonical_member_id: str | None) -> list[MemberAlias]:
    """Returns every edge pointing directly at `canonical_member_id`."""
    target = normalize_member_id(canonical_member_id)
    if not target:
        return []

    edges = list(session.execute(
        select(MemberAlias).where(MemberAlias.canonical_member_id == target)
    ).scalars().all())
    if edges:
        return edges

    raw = (canonical_member_id or "").strip()
    if raw and raw != target:
        edges = list(session.execute(
            select(MemberAlias).where(MemberAlias.canonical_member_id == raw)
        ).scalars().all())
        if edges:
            _log_fallback("aliases_by_canonical_raw", raw)
    return edges


# ── Friend rows ────────────────────────────────────────────────────────────

def find_friend_by_member_id(
        session: Session,
        account_email: str,
        member_id: str | None,
) -> AccountFriend | None:
    """Returns `account_email`'s friend row for `member_id`, if any."""
    owner = normalize_email(account_email)
    target = normalize_member_id(member_id)
    if not owner or not target:
        return None

    row = session.execute(
        select(AccountFriend).where(
            AccountFriend.account_email == owner,
            AccountFriend.member_id == target,
        )
    ).scalar_one_or_none()
    if row is not None:
        return row

    raw = (member_id or "").strip()
    if raw and raw != target:
        row = session.execute(
            select(AccountFriend).where(
                AccountFriend.account_email == owner,
                AccountFriend.member_id == raw,
            )
        ).scalars().first()
        if row is not None:
            _log_fallback("friend_member_id_raw", raw)
            return row

    row = session.execute(
        select(AccountFriend).where(
            normalized(AccountFriend.account_email) == owner,
            normalized(AccountFriend.member_id) == target,
        )
    ).scalars().first()
    if row is not None:
        _log_fallback("friend_member_id_normalized", target)
    return row
