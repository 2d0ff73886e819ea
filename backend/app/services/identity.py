"""
services/identity.py — Member-ID and email normalization.

Every member ID and email is normalized before comparison, storage or index
lookup. Case/whitespace duplicates are the dominant historical data bug this
subsystem has to tolerate; see services/legacy_lookup.py for the read-side
fallbacks that cope with rows written before normalization was enforced.

Pure functions. No session, no Flask.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

# Returned by claim responses so clients can detect the linking semantics
# they are talking to.
LINKING_CONTRACT_VERSION = 2


def normalize_member_id(member_id: str | None) -> str:
    """Trims and lowercases a raw member ID. None becomes ""."""
    if member_id is None:
        return ""
    return str(member_id).strip().lower()


def normalize_member_ids(member_ids: Iterable[str | None] | None) -> list[str]:
    """
    Normalizes each ID, drops empties, and de-duplicates while preserving
    first-seen order.
    """
    result: list[str] = []
    seen: set[str] = set()
    for raw in member_ids or []:
        normalized = normalize_member_id(raw)
        if normalized and normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result


def normalize_email(email: str | None) -> str:
    if email is None:
        return ""
    return str(email).strip().lower()


@dataclass(frozen=True)
class VerifiedIdentity:
    """
    The caller as asserted by the auth provider's verified token.
    `subject` becomes Account.id; `email` is already normalized.
    """
    subject: str
    email: str
    name: str | None = None
