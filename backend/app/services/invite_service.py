"""
services/invite_service.py — Invite token lifecycle.

An invite token is a single-use capability created by account A for one of
A's member placeholders. Whoever claims it becomes that member.

Token states:
  pending → claimed   (claim_invite, single writer wins)
  pending → expired   (time-based, never written)
  pending → deleted   (revoke_invite_token, creator only)

get_invite_token() and validate_invite_token() are called without
authentication so the app can preview an invite before sign-in; they never
write.

Layer rules:
  - No Flask imports. TTLs are passed in by the route from config.
  - Commits are the route's responsibility. Only flush here.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.account import Account
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.invite_token import InviteToken
from backend.app.services import alias_service, claim_service, legacy_lookup
from backend.app.services.identity import normalize_email, normalize_member_id
from backend.app.timeutil import isoformat, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30

# Expense preview reads expenses in keyset pages of this size.
PREVIEW_PAGE_SIZE = 500


# ── Serialization ──────────────────────────────────────────────────────────

def serialize_invite_token(token: InviteToken, creator: Account | None = None) -> dict:
    return {
        "id": token.id,
        "creator_id": token.creator_id,
        "creator_email": token.creator_email,
        "creator_name": creator.display_name if creator is not None else None,
        "target_member_id": token.target_member_id,
        "target_member_name": token.target_member_name,
        "created_at": isoformat(token.created_at),
        "expires_at": isoformat(token.expires_at),
        "claimed_by": token.claimed_by,
        "claimed_at": isoformat(token.claimed_at),
    }


# ── Private helpers ────────────────────────────────────────────────────────

def _get_token_or_404(session: Session, token_id: str) -> InviteToken:
    token = session.get(InviteToken, token_id)
    if token is None:
        raise AppError(
            ErrorCode.INVITE_NOT_FOUND,
            f"Invite token {token_id} does not exist.",
            404,
        )
    return token


def _as_decimal(value) -> Decimal:
    return Decimal(str(value if value is not None else "0"))


def _expense_preview(session: Session, target_member_id: str) -> dict:
    """
    Expenses involving any ID equivalent to the target, their distinct group
    names, and the target's net balance (positive: others owe the target).
    """
    equivalent = alias_service.get_all_equivalent_member_ids(session, target_member_id)

    matching: list[Expense] = []
    last_id: str | None = None
    while True:
        stmt = (
            select(Expense)
            .where(Expense.deleted_at.is_(None))
            .order_by(Expense.id)
            .limit(PREVIEW_PAGE_SIZE)
        )
        if last_id is not None:
            stmt = stmt.where(Expense.id > last_id)
        page = list(session.execute(stmt).scalars().all())
        if not page:
            break
        for expense in page:
            involved = {normalize_member_id(m) for m in expense.involved_member_ids or []}
            if normalize_member_id(expense.paid_by_member_id) in equivalent or involved & equivalent:
                matching.append(expense)
        last_id = page[-1].id

    total_balance = Decimal("0.00")
    for expense in matching:
        if normalize_member_id(expense.paid_by_member_id) in equivalent:
            total_balance += sum(
                (_as_decimal(s.get("amount")) for s in expense.splits or []
                 if normalize_member_id(s.get("member_id")) not in equivalent),
                Decimal("0.00"),
            )
        else:
            total_balance -= sum(
                (_as_decimal(s.get("amount")) for s in expense.splits or []
                 if normalize_member_id(s.get("member_id")) in equivalent),
                Decimal("0.00"),
            )

    group_ids = sorted({e.group_id for e in matching})
    group_names: list[str] = []
    if group_ids:
        group_names = list(session.execute(
            select(Group.name).where(Group.id.in_(group_ids)).order_by(Group.name)
        ).scalars().all())

    return {
        "expense_count": len(matching),
        "group_names": group_names,
        "total_balance": total_balance,
    }


# ── Public service functions ───────────────────────────────────────────────

def create_invite_token(
        session: Session,
        creator: Account,
        token_id: str | None,
        target_member_id: str,
        target_member_name: str,
        ttl_days: int = DEFAULT_TTL_DAYS,
) -> tuple[InviteToken, bool]:
    """
    Creates an invite for one of the creator's member placeholders.

    `token_id` is client-generated; re-sending the same ID returns the
    existing token instead of creating a second one.

    Returns: (token, created)
    """
    token_id = (token_id or "").strip() or str(uuid.uuid4())

    existing = session.get(InviteToken, token_id)
    if existing is not None:
        if existing.creator_id != creator.id:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                "This invite ID is already in use.",
                400,
                field="id",
            )
        return existing, False

    now = utcnow()
    token = InviteToken(
        id=token_id,
        creator_id=creator.id,
        creator_email=normalize_email(creator.email),
        target_member_id=normalize_member_id(target_member_id),
        target_member_name=target_member_name.strip(),
        created_at=now,
        expires_at=now + timedelta(days=ttl_days),
    )
    session.add(token)
    session.flush()

    logger.info(
        "invite_token_created token_id=%s creator_id=%s target=%s",
        token.id,
        creator.id,
        token.target_member_id,
    )
    return token, True


def get_invite_token(session: Session, token_id: str) -> dict:
    """Anonymous read of one token, with the creator's display name."""
    token = _get_token_or_404(session, token_id)
    creator = legacy_lookup.find_account_by_email(session, token.creator_email)
    return serialize_invite_token(token, creator)


def validate_invite_token(session: Session, token_id: str) -> dict:
    """
    Anonymous pre-claim check. Never raises for an unusable token; the
    reason is reported in "error":

        not_found | expired | already_claimed | already_linked

    Returns: {"is_valid", "error", "token", "expense_preview"}
    """
    token = session.get(InviteToken, token_id)
    if token is None:
        return {"is_valid": False, "error": "not_found", "token": None, "expense_preview": None}

    creator = legacy_lookup.find_account_by_email(session, token.creator_email)
    payload = serialize_invite_token(token, creator)

    if token.is_expired():
        return {"is_valid": False, "error": "expired", "token": payload, "expense_preview": None}

    if token.is_claimed:
        return {"is_valid": False, "error": "already_claimed", "token": payload, "expense_preview": None}

    if legacy_lookup.find_account_by_member_id(session, token.target_member_id) is not None:
        return {"is_valid": False, "error": "already_linked", "token": payload, "expense_preview": None}

    return {
        "is_valid": True,
        "error": None,
        "token": payload,
        "expense_preview": _expense_preview(session, token.target_member_id),
    }


def claim_invite(session: Session, account: Account, token_id: str) -> dict:
    """
    Claims `token_id` for `account` and runs the claim pipeline.

    Order:
      1. token lookup, expiry and claimed-by checks
      2. claim preconditions (no writes on failure)
      3. conditional pending → claimed update; only one writer matches
      4. claim pipeline

    A retry by the account that already holds the token skips 3 and re-runs
    the idempotent pipeline, repairing any half-finished earlier attempt.

    Raises:
      INVITE_NOT_FOUND (404), INVITE_EXPIRED (410), ALREADY_CLAIMED (409),
      plus every claim precondition error.
    """
    token = _get_token_or_404(session, token_id)
    operation_id = uuid.uuid4().hex[:12]

    if token.is_claimed and token.claimed_by != account.id:
        raise AppError(
            ErrorCode.ALREADY_CLAIMED,
            "This invite has already been claimed.",
            409,
        )

    if not token.is_claimed:
        if token.is_expired():
            raise AppError(
                ErrorCode.INVITE_EXPIRED,
                "This invite has expired. Ask for a new one.",
                410,
            )

        claim_service.check_claim_preconditions(
            session, account, token.target_member_id, token.creator_email, token.creator_id,
        )

        now = utcnow()
        result = session.execute(
            update(InviteToken)
            .where(InviteToken.id == token.id, InviteToken.claimed_by.is_(None))
            .values(claimed_by=account.id, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        session.refresh(token)
        if result.rowcount != 1 and token.claimed_by != account.id:
            raise AppError(
                ErrorCode.ALREADY_CLAIMED,
                "This invite has already been claimed.",
                409,
            )
        logger.info(
            "invite_token_claimed operation_id=%s token_id=%s account_id=%s",
            operation_id,
            token.id,
            account.id,
        )

    claim = claim_service.claim_for_account(
        session,
        account,
        token.target_member_id,
        token.creator_email,
        token.creator_id,
        operation_id=operation_id,
    )
    claim["invite_token_id"] = token.id
    return claim


def list_invite_tokens_by_creator(session: Session, creator: Account) -> list[InviteToken]:
    """The creator's tokens that are still claimable, newest first."""
    now = utcnow()
    tokens = session.execute(
        select(InviteToken)
        .where(
            InviteToken.creator_id == creator.id,
            InviteToken.claimed_by.is_(None),
        )
        .order_by(InviteToken.created_at.desc(), InviteToken.id)
    ).scalars().all()
    return [t for t in tokens if not t.is_expired(now)]


def revoke_invite_token(session: Session, account: Account, token_id: str) -> None:
    """Deletes a token. Only its creator may revoke it."""
    token = _get_token_or_404(session, token_id)
    if token.creator_id != account.id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the creator of an invite can revoke it.",
            403,
        )
    session.delete(token)
    session.flush()
    logger.info("invite_token_revoked token_id=%s creator_id=%s", token_id, account.id)
