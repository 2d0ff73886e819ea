"""
services/alias_service.py — Alias graph resolution and identity merging.

The alias graph is a table of directed edges alias_member_id → canonical_member_id
(models/member_alias.py). This module is the only writer of that table
outside the cascade deleter.

Graph invariants enforced here:
  - Functional:  an alias has at most one outgoing edge. Re-pointing an
                 existing alias at a different target is ALIAS_CONFLICT (409).
  - Acyclic:     an edge whose target already resolves back to its source is
                 ALIAS_CYCLE (409).
  - No self-edge: merging an ID with itself is a successful no-op.
  - No cross-claim: an account's canonical member ID never becomes an alias
                 (ALREADY_LINKED, 409). Linking real accounts goes through the
                 claim pipeline.
  - New edges always point at resolve(target), keeping chains short.

Resolution is guarded twice against corrupt data: a visited set stops on the
first repeated ID and MAX_ALIAS_DEPTH bounds the walk. Both log a
data-integrity warning and return the ID where the walk stopped.

Authorization:
  The acting account's email is always passed in by the route from the
  verified caller. Request bodies may still carry a legacy `account_email`;
  it is never read here.

Layer rules:
  - No Flask imports. Session parameter only.
  - Commits are the route's responsibility. Only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.account import Account
from backend.app.models.member_alias import MemberAlias
from backend.app.services import legacy_lookup
from backend.app.services.identity import normalize_email, normalize_member_id

logger = logging.getLogger(__name__)

# Chains are kept short because new edges target resolve(target), so a
# legitimate walk is a handful of hops. Anything deeper is corrupt data.
MAX_ALIAS_DEPTH = 32


# ── Resolution ─────────────────────────────────────────────────────────────

def resolve_canonical_member_id(
        session: Session,
        member_id: str,
        visited: set[str] | None = None,
) -> str:
    """
    Follows outgoing alias edges from `member_id` until none is found.

    Transitive: with A→B and B→C, resolving A returns C.
    No edge: returns the (normalized) input unchanged.
    Cycle or depth bound hit: returns the ID where the walk stopped and logs
    a data-integrity warning. Never loops.
    """
    current = normalize_member_id(member_id)
    visited = set() if visited is None else visited

    while current:
        if current in visited:
            logger.warning(
                "alias_cycle_detected member_id=%s start=%s path_length=%d",
                current,
                normalize_member_id(member_id),
                len(visited),
            )
            return current
        if len(visited) >= MAX_ALIAS_DEPTH:
            logger.warning(
                "alias_depth_exceeded member_id=%s start=%s max_depth=%d",
                current,
                normalize_member_id(member_id),
                MAX_ALIAS_DEPTH,
            )
            return current
        visited.add(current)

        edge = legacy_lookup.find_alias_by_alias_member_id(session, current)
        if edge is None:
            return current
        current = normalize_member_id(edge.canonical_member_id)

    return current


def get_aliases_for_member(session: Session, canonical_member_id: str) -> list[str]:
    """Direct aliases of `canonical_member_id`. Not transitive."""
    edges = legacy_lookup.find_aliases_by_canonical_member_id(session, canonical_member_id)
    return sorted({normalize_member_id(e.alias_member_id) for e in edges})


def get_all_equivalent_member_ids(session: Session, member_id: str) -> set[str]:
    """
    canonical ∪ direct aliases of canonical ∪ {input}.

    Used for every "is this person in this group/expense" check, because
    group and expense snapshots keep whatever member ID was current when
    they were written.
    """
    normalized = normalize_member_id(member_id)
    if not normalized:
        return set()

    canonical = resolve_canonical_member_id(session, normalized)
    ids = {canonical, normalized}
    ids.update(get_aliases_for_member(session, canonical))
    return ids


def would_create_cycle(session: Session, source_id: str, target_id: str) -> bool:
    """
    True if adding source → target would close a loop, i.e. `source_id`
    already lies on the resolution path of `target_id`.
    """
    source = normalize_member_id(source_id)
    current = normalize_member_id(target_id)
    seen: set[str] = set()

    while current:
        if current == source:
            return True
        if current in seen or len(seen) >= MAX_ALIAS_DEPTH:
            # Corrupt chain; never extend it.
            return True
        seen.add(current)
        edge = legacy_lookup.find_alias_by_alias_member_id(session, current)
        if edge is None:
            return False
        current = normalize_member_id(edge.canonical_member_id)

    return False


# ── Private helpers ────────────────────────────────────────────────────────

def _insert_edge(
        session: Session,
        alias_member_id: str,
        canonical_member_id: str,
        actor_email: str,
) -> MemberAlias:
    edge = MemberAlias(
        alias_member_id=alias_member_id,
        canonical_member_id=canonical_member_id,
        account_email=normalize_email(actor_email),
    )
    session.add(edge)
    # Unique alias_member_id: a racing insert fails here and the route's
    # IntegrityError handler reports CONCURRENT_WRITE_CONFLICT.
    session.flush()
    logger.info(
        "alias_edge_created alias=%s canonical=%s actor=%s",
        alias_member_id,
        canonical_member_id,
        edge.account_email,
    )
    return edge


def _require_not_account_canonical(session: Session, member_id: str) -> None:
    """Raises ALREADY_LINKED if `member_id` is some account's canonical ID."""
    owner = legacy_lookup.find_account_by_member_id(session, member_id)
    if owner is not None and normalize_member_id(owner.member_id) == member_id:
        raise AppError(
            ErrorCode.ALREADY_LINKED,
            f"Member {member_id} is the canonical identity of an existing account "
            f"and cannot become an alias.",
            409,
        )


def _require_no_cycle(session: Session, source: str, target: str) -> None:
    if would_create_cycle(session, source, target):
        raise AppError(
            ErrorCode.ALIAS_CYCLE,
            f"Cannot merge: {target} already resolves to {source}.",
            409,
        )


# ── Public service functions ───────────────────────────────────────────────

def ensure_alias_edge(
        session: Session,
        source_id: str,
        target_id: str,
        actor_email: str,
) -> dict:
    """
    Creates source → resolve(target) unless an equivalent edge exists.

    Shared by merge_member_ids() and the claim pipeline. Callers run their
    own authorization checks first.

    Returns: {"canonical_member_id", "alias_member_id", "already_existed"}
    """
    source = normalize_member_id(source_id)
    target = normalize_member_id(target_id)

    if not source or not target:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "Both member IDs must be non-empty.",
            400,
        )

    if source == target:
        return {
            "canonical_member_id": resolve_canonical_member_id(session, target),
            "alias_member_id": source,
            "already_existed": True,
        }

    resolved_target = resolve_canonical_member_id(session, target)

    existing = legacy_lookup.find_alias_by_alias_member_id(session, source)
    if existing is not None:
        existing_target = resolve_canonical_member_id(session, existing.canonical_member_id)
        if existing_target == resolved_target:
            return {
                "canonical_member_id": existing_target,
                "alias_member_id": source,
                "already_existed": True,
            }
        raise AppError(
            ErrorCode.ALIAS_CONFLICT,
            f"Member {source} is already an alias of {existing_target}; "
            f"it cannot be re-pointed to {resolved_target}.",
            409,
        )

    _require_no_cycle(session, source, target)

    _insert_edge(session, source, resolved_target, actor_email)
    return {
        "canonical_member_id": resolved_target,
        "alias_member_id": source,
        "already_existed": False,
    }


def merge_member_ids(
        session: Session,
        actor_email: str,
        source_id: str,
        target_id: str,
) -> dict:
    """
    Declares `source_id` to be the same person as `target_id`.

    Idempotent: repeating an identical call returns already_existed=True and
    creates no second edge. Self-merge is a no-op success.

    Raises:
      ALREADY_LINKED (409) — source is an account's canonical member ID
      ALIAS_CONFLICT (409) — source already aliases a different canonical
      ALIAS_CYCLE    (409) — target resolves back to source
    """
    source = normalize_member_id(source_id)
    target = normalize_member_id(target_id)

    if source and source != target:
        _require_not_account_canonical(session, source)

    return ensure_alias_edge(session, source, target, actor_email)


def merge_unlinked_friends(
        session: Session,
        actor_email: str,
        friend_id_1: str,
        friend_id_2: str,
) -> dict:
    """
    Merges two of the caller's own unlinked friends. friend_id_1 becomes
    canonical; friend_id_2 becomes its alias.

    Both rows must exist in the caller's friend list and neither may be
    linked to a real account: linked identities go through the claim
    pipeline, which carries its own authorization checks.

    Raises:
      FRIEND_NOT_FOUND      (404)
      FRIEND_ALREADY_LINKED (409)
      ALIAS_CONFLICT        (409) — friend_id_2 already aliases someone else
      ALIAS_CYCLE           (409)

    Returns: {"canonical_member_id", "alias_member_id", "already_merged"}
    """
    owner = normalize_email(actor_email)
    first = normalize_member_id(friend_id_1)
    second = normalize_member_id(friend_id_2)

    if first == second:
        return {
            "canonical_member_id": resolve_canonical_member_id(session, first),
            "alias_member_id": second,
            "already_merged": True,
        }

    rows = []
    for member_id in (first, second):
        row = legacy_lookup.find_friend_by_member_id(session, owner, member_id)
        if row is None:
            raise AppError(
                ErrorCode.FRIEND_NOT_FOUND,
                f"Friend with member_id {member_id} is not in your friend list.",
                404,
            )
        rows.append(row)

    for row in rows:
        if row.has_linked_account:
            raise AppError(
                ErrorCode.FRIEND_ALREADY_LINKED,
                f"Friend \"{row.name}\" is linked to an account. Use an invite instead.",
                409,
            )

    result = ensure_alias_edge(session, second, first, owner)
    return {
        "canonical_member_id": result["canonical_member_id"],
        "alias_member_id": result["alias_member_id"],
        "already_merged": result["already_existed"],
    }


def add_to_alias_cache(account: Account, member_id: str) -> bool:
    """
    Appends `member_id` to the account's cached alias list.
    The canonical ID itself is never listed. Returns True when changed.
    """
    normalized = normalize_member_id(member_id)
    canonical = normalize_member_id(account.member_id)
    current = [normalize_member_id(a) for a in (account.alias_member_ids or [])]
    if not normalized or normalized == canonical or normalized in current:
        return False
    # Assign a new list so SQLAlchemy sees the JSON column change.
    account.alias_member_ids = current + [normalized]
    return True
