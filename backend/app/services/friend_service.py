"""
services/friend_service.py — Friend list read model and friend-row writes.

Read-time deduplication (list_friends):
  A viewer may hold several rows for one real person: a stale unlinked
  placeholder row next to the linked row the claim pipeline produced, or
  rows for two member IDs that were later aliased together. Storage is
  never rewritten to fix this. list_friends() collapses them into one row
  per identity every time it is read.

  Precedence inside one identity group (first difference wins):
    1. linked over unlinked
    2. more alias member IDs over fewer
    3. newer updated_at over older
    4. lexicographically smaller member_id   (total order: result is
                                              independent of row order)

  A linked row whose account can no longer be found is returned demoted to
  unlinked instead of raising. The orphan janitor repairs storage later.

Friend status:
  Stored statuses are whatever clients historically sent. They are only
  interpreted through classify_friend_status(), which maps them onto the
  closed FriendStatus enum.

Layer rules:
  - No Flask imports. Session parameter only.
  - dedupe_friend_rows() and classify_friend_status() are pure.
  - Commits are the route's responsibility. Only flush here.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from backend.app.models.account import Account
from backend.app.models.account_friend import AccountFriend, FriendStatus
from backend.app.services import alias_service, legacy_lookup
from backend.app.services.identity import (
    normalize_email,
    normalize_member_id,
    normalize_member_ids,
)
from backend.app.timeutil import as_utc, isoformat, utcnow

AVATAR_COLORS = (
    "#F44336", "#E91E63", "#9C27B0", "#673AB7", "#3F51B5",
    "#2196F3", "#009688", "#4CAF50", "#FF9800", "#795548",
)

_STATUS_ALIASES: dict[str, FriendStatus] = {
    "friend":           FriendStatus.FRIEND,
    "accepted":         FriendStatus.FRIEND,
    "pending":          FriendStatus.PENDING,
    "request_sent":     FriendStatus.PENDING,
    "request_received": FriendStatus.PENDING,
    "rejected":         FriendStatus.REJECTED,
    "declined":         FriendStatus.REJECTED,
    "legacy_unset":     FriendStatus.LEGACY_UNSET,
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ── Status classification ──────────────────────────────────────────────────

def classify_friend_status(raw: str | None) -> FriendStatus:
    """
    Maps a stored status string onto FriendStatus.

    Absent or blank values are LEGACY_UNSET (rows written before statuses
    existed). Unrecognised values are treated as PENDING: they are never
    silently upgraded to FRIEND.
    """
    if raw is None or not str(raw).strip():
        return FriendStatus.LEGACY_UNSET
    return _STATUS_ALIASES.get(str(raw).strip().lower(), FriendStatus.PENDING)


def is_eligible_direct_friend(row) -> bool:
    """
    True if `row` may back a one-to-one (direct group) expense.
    Rejected rows never qualify; linked rows, accepted friends and legacy
    rows without a status do.
    """
    status = classify_friend_status(getattr(row, "status", None))
    if status == FriendStatus.REJECTED:
        return False
    if getattr(row, "has_linked_account", False):
        return True
    return status in (FriendStatus.FRIEND, FriendStatus.LEGACY_UNSET)


# ── Deduplication (pure) ───────────────────────────────────────────────────

@dataclass(frozen=True)
class LinkedIdentity:
    """The live account behind a linked friend row."""
    account_id: str
    email: str
    member_id: str
    display_name: str
    alias_ids: frozenset[str] = field(default_factory=frozenset)

    @property
    def key(self) -> str:
        return f"linked:{self.email or self.account_id}"


def _base_view(row) -> dict:
    return {
        "member_id": normalize_member_id(row.member_id),
        "name": row.name,
        "nickname": row.nickname,
        "original_name": row.original_name,
        "original_nickname": row.original_nickname,
        "profile_avatar_color": row.profile_avatar_color,
        "has_linked_account": bool(row.has_linked_account),
        "linked_account_id": row.linked_account_id,
        "linked_account_email": normalize_email(row.linked_account_email) or None,
        "linked_member_id": normalize_member_id(row.linked_member_id) or None,
        "status": classify_friend_status(row.status).value,
        "updated_at": as_utc(row.updated_at),
        "alias_member_ids": [],
    }


def _should_replace(current: dict, candidate: dict) -> bool:
    """True if `candidate` outranks `current` for the same identity."""
    if candidate["has_linked_account"] != current["has_linked_account"]:
        return candidate["has_linked_account"]
    if len(candidate["alias_member_ids"]) != len(current["alias_member_ids"]):
        return len(candidate["alias_member_ids"]) > len(current["alias_member_ids"])
    candidate_ts = candidate["updated_at"] or _EPOCH
    current_ts = current["updated_at"] or _EPOCH
    if candidate_ts != current_ts:
        return candidate_ts > current_ts
    return candidate["member_id"] < current["member_id"]


def dedupe_friend_rows(
        rows: Iterable,
        resolve_linked_identity: Callable[[object], LinkedIdentity | None],
) -> tuple[list[dict], int]:
    """
    Collapses one viewer's friend rows into one view per real identity.

    Args:
        rows:                    the viewer's AccountFriend rows (any objects
                                 with the same attributes).
        resolve_linked_identity: returns the live LinkedIdentity for a linked
                                 row, or None if its account is gone.

    Returns:
        (views, demoted_count). Views are sorted by name, then member_id.
    """
    views: list[dict] = []
    identity_of_view: list[LinkedIdentity | None] = []
    demoted = 0

    # 1. Validate linked rows against live accounts.
    for row in rows:
        view = _base_view(row)
        identity = None
        if view["has_linked_account"]:
            identity = resolve_linked_identity(row)
            if identity is None:
                view.update(
                    has_linked_account=False,
                    linked_account_id=None,
                    linked_account_email=None,
                    linked_member_id=None,
                )
                demoted += 1
            else:
                own_ids = set(identity.alias_ids) | {view["member_id"]}
                if identity.member_id:
                    own_ids.add(identity.member_id)
                view.update(
                    linked_account_id=identity.account_id,
                    linked_account_email=identity.email,
                    linked_member_id=identity.member_id or None,
                    alias_member_ids=sorted(own_ids),
                )
        views.append(view)
        identity_of_view.append(identity)

    # 2. Every member ID inside a linked identity's alias set maps to that identity.
    alias_to_key: dict[str, str] = {}
    for view, identity in zip(views, identity_of_view):
        if identity is None:
            continue
        for member_id in view["alias_member_ids"]:
            alias_to_key.setdefault(member_id, identity.key)

    # 3. Group all rows, linked and unlinked, by identity key.
    groups: dict[str, list[dict]] = {}
    for view, identity in zip(views, identity_of_view):
        if identity is not None:
            key = identity.key
        else:
            key = alias_to_key.get(view["member_id"], f"member:{view['member_id']}")
        groups.setdefault(key, []).append(view)

    # 4. One winner per group; it carries the union of every member's IDs.
    result: list[dict] = []
    for members in groups.values():
        winner = members[0]
        for candidate in members[1:]:
            if _should_replace(winner, candidate):
                winner = candidate

        merged = dict(winner)
        if len(members) > 1:
            union: set[str] = set()
            for member in members:
                union.add(member["member_id"])
                union.update(member["alias_member_ids"])
            merged["alias_member_ids"] = sorted(union)
        result.append(merged)

    result.sort(key=lambda v: ((v["name"] or "").lower(), v["member_id"]))
    return result, demoted


# ── Private helpers ────────────────────────────────────────────────────────

def _identity_resolver(session: Session) -> Callable[[object], LinkedIdentity | None]:
    """
    Builds a cached resolver for linked rows: by linked email, then linked
    account ID, then legacy member-ID lookup.
    """
    cache: dict[str, LinkedIdentity | None] = {}

    def resolve(row) -> LinkedIdentity | None:
        email = normalize_email(row.linked_account_email)
        account_id = (row.linked_account_id or "").strip()
        linked_member_id = normalize_member_id(row.linked_member_id)
        cache_key = f"e:{email}|a:{account_id}|m:{linked_member_id}"
        if cache_key in cache:
            return cache[cache_key]

        account: Account | None = None
        if email:
            account = legacy_lookup.find_account_by_email(session, email)
        if account is None and account_id:
            account = session.get(Account, account_id)
        if account is None and linked_member_id:
            account = legacy_lookup.find_account_by_member_id(session, linked_member_id)

        identity = None
        if account is not None:
            canonical = normalize_member_id(account.member_id)
            alias_ids = set(normalize_member_ids(account.alias_member_ids))
            if canonical:
                alias_ids |= alias_service.get_all_equivalent_member_ids(session, canonical)
            identity = LinkedIdentity(
                account_id=account.id,
                email=account.email,
                member_id=canonical,
                display_name=account.display_name,
                alias_ids=frozenset(alias_ids),
            )
        cache[cache_key] = identity
        return identity

    return resolve


def _clean_nickname(nickname: str | None, name: str) -> str | None:
    """A nickname identical (case-insensitively) to the name is redundant."""
    if nickname is None or not nickname.strip():
        return None
    if nickname.strip().lower() == name.strip().lower():
        return None
    return nickname.strip()


def serialize_friend(row: AccountFriend) -> dict:
    view = _base_view(row)
    view["updated_at"] = isoformat(view["updated_at"])
    return view


# ── Public service functions ───────────────────────────────────────────────

def list_friends(session: Session, account: Account) -> tuple[list[dict], int]:
    """
    Returns the viewer's deduplicated friend list and the number of rows
    demoted because their linked account no longer exists. Never writes.
    """
    rows = session.execute(
        select(AccountFriend)
        .where(AccountFriend.account_email == normalize_email(account.email))
        .order_by(AccountFriend.id)
    ).scalars().all()

    views, demoted = dedupe_friend_rows(rows, _identity_resolver(session))
    for view in views:
        view["updated_at"] = isoformat(view["updated_at"])
    return views, demoted


def upsert_friend(session: Session, account: Account, data: dict) -> AccountFriend:
    """
    Creates or updates the caller's friend row for data["member_id"].

    - The member ID is normalized; a legacy un-normalized row is found and
      normalized in place rather than duplicated.
    - A blank name becomes "Unknown"; a nickname equal to the name is cleared.
    - Linkage fields are never taken from the request. An existing link is
      always preserved; only the claim pipeline creates links.
    """
    owner = normalize_email(account.email)
    member_id = normalize_member_id(data["member_id"])
    name = (data.get("name") or "").strip() or "Unknown"
    nickname = _clean_nickname(data.get("nickname"), name)

    row = legacy_lookup.find_friend_by_member_id(session, owner, member_id)
    if row is None:
        row = AccountFriend(
            account_email=owner,
            member_id=member_id,
            name=name,
            nickname=nickname,
            profile_avatar_color=data.get("profile_avatar_color") or random.choice(AVATAR_COLORS),
            has_linked_account=False,
            status=data.get("status"),
            updated_at=utcnow(),
        )
        session.add(row)
    else:
        row.member_id = member_id
        row.name = name
        row.nickname = nickname
        if data.get("profile_avatar_color"):
            row.profile_avatar_color = data["profile_avatar_color"]
        if data.get("status") is not None:
            row.status = data["status"]
        row.updated_at = utcnow()

    session.flush()
    return row


def clear_all_friends(session: Session, account: Account) -> int:
    """Deletes every friend row owned by the caller. Returns rows deleted."""
    result = session.execute(
        delete(AccountFriend).where(
            AccountFriend.account_email == normalize_email(account.email)
        )
    )
    session.flush()
    return result.rowcount or 0
