"""
services/account_service.py — Account creation and lookup for the verified caller.

An account is created the first time a verified identity calls
POST /accounts/store. Its canonical member ID is a fresh UUID4 unless the
account already has one; it never changes afterwards (claims add aliases,
they do not replace the canonical ID).

Layer rules:
  - No Flask imports. Receives a VerifiedIdentity from the route.
  - Commits are the route's responsibility. Only flush here.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.account import Account
from backend.app.services import legacy_lookup
from backend.app.services.identity import (
    VerifiedIdentity,
    normalize_email,
    normalize_member_id,
    normalize_member_ids,
)
from backend.app.timeutil import isoformat, utcnow

logger = logging.getLogger(__name__)


def _default_display_name(identity: VerifiedIdentity) -> str:
    if identity.name and identity.name.strip():
        return identity.name.strip()
    return normalize_email(identity.email).split("@", 1)[0] or "Unknown"


def serialize_account(account: Account) -> dict:
    return {
        "id": account.id,
        "email": account.email,
        "display_name": account.display_name,
        "member_id": account.member_id,
        "alias_member_ids": normalize_member_ids(account.alias_member_ids),
        "profile_avatar_color": account.profile_avatar_color,
        "created_at": isoformat(account.created_at),
        "updated_at": isoformat(account.updated_at),
    }


def find_account_for_identity(session: Session, identity: VerifiedIdentity) -> Account | None:
    """By auth subject first, then by (normalized) email."""
    account = session.get(Account, identity.subject)
    if account is None:
        account = legacy_lookup.find_account_by_email(session, identity.email)
    return account


def get_current_account(session: Session, identity: VerifiedIdentity) -> Account:
    """Returns the caller's account or raises ACCOUNT_NOT_FOUND (404)."""
    account = find_account_for_identity(session, identity)
    if account is None:
        raise AppError(
            ErrorCode.ACCOUNT_NOT_FOUND,
            "No account exists for the authenticated user. Call POST /accounts/store first.",
            404,
        )
    return account


def store_account(
        session: Session,
        identity: VerifiedIdentity,
        display_name: str | None = None,
        profile_avatar_color: str | None = None,
) -> tuple[Account, bool]:
    """
    Creates the caller's account on first call; refreshes its profile on
    later calls. Back-fills a missing canonical member ID and normalizes
    legacy email/member-ID values in place.

    Returns: (account, created)
    """
    email = normalize_email(identity.email)
    account = find_account_for_identity(session, identity)
    created = account is None

    if account is None:
        account = Account(
            id=identity.subject,
            email=email,
            display_name=(display_name or "").strip() or _default_display_name(identity),
            member_id=str(uuid.uuid4()),
            alias_member_ids=[],
            profile_avatar_color=profile_avatar_color,
        )
        session.add(account)
        logger.info("account_created account_id=%s member_id=%s", account.id, account.member_id)
    else:
        if account.email != email:
            account.email = email
        if display_name and display_name.strip():
            account.display_name = display_name.strip()
        if profile_avatar_color:
            account.profile_avatar_color = profile_avatar_color
        if not account.member_id:
            legacy = normalize_member_id(account.linked_member_id)
            account.member_id = legacy or str(uuid.uuid4())
            logger.info(
                "account_member_id_backfilled account_id=%s member_id=%s",
                account.id,
                account.member_id,
            )
        elif account.member_id != normalize_member_id(account.member_id):
            account.member_id = normalize_member_id(account.member_id)
        account.updated_at = utcnow()

    session.flush()
    return account, created
