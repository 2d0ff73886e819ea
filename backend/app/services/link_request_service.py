"""
services/link_request_service.py — Link requests addressed by email.

The push counterpart of an invite token: the requester names a recipient
email and one of their own member placeholders. When the recipient accepts,
the same claim pipeline runs with the requester as the creator.

Status transitions:
  pending → accepted   (recipient; runs the claim pipeline)
  pending → declined   (recipient)
  any     → deleted    (requester cancels)

Layer rules:
  - No Flask imports. TTLs are passed in by the route from config.
  - Commits are the route's responsibility. Only flush here.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.account import Account
from backend.app.models.link_request import LinkRequest, LinkRequestStatus
from backend.app.services import claim_service
from backend.app.services.identity import normalize_email, normalize_member_id
from backend.app.timeutil import isoformat, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 7


def serialize_link_request(link_request: LinkRequest) -> dict:
    status = link_request.status
    return {
        "id": link_request.id,
        "requester_id": link_request.requester_id,
        "requester_email": link_request.requester_email,
        "requester_name": link_request.requester_name,
        "recipient_email": link_request.recipient_email,
        "target_member_id": link_request.target_member_id,
        "target_member_name": link_request.target_member_name,
        "status": status.value if isinstance(status, LinkRequestStatus) else status,
        "created_at": isoformat(link_request.created_at),
        "expires_at": isoformat(link_request.expires_at),
        "rejected_at": isoformat(link_request.rejected_at),
    }


def _get_request_or_404(session: Session, request_id: str) -> LinkRequest:
    link_request = session.get(LinkRequest, request_id)
    if link_request is None:
        raise AppError(
            ErrorCode.LINK_REQUEST_NOT_FOUND,
            f"Link request {request_id} does not exist.",
            404,
        )
    return link_request


def _require_recipient(link_request: LinkRequest, account: Account, action: str) -> None:
    if normalize_email(link_request.recipient_email) != normalize_email(account.email):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the recipient can {action} this link request.",
            403,
        )


# ── Public service functions ───────────────────────────────────────────────

def create_link_request(
        session: Session,
        requester: Account,
        request_id: str | None,
        recipient_email: str,
        target_member_id: str,
        target_member_name: str,
        ttl_days: int = DEFAULT_TTL_DAYS,
) -> tuple[LinkRequest, bool]:
    """
    Creates a pending request. Re-sending the same client ID returns the
    existing request.

    Returns: (link_request, created)
    """
    request_id = (request_id or "").strip() or str(uuid.uuid4())

    existing = session.get(LinkRequest, request_id)
    if existing is not None:
        if existing.requester_id != requester.id:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                "This link request ID is already in use.",
                400,
                field="id",
            )
        return existing, False

    recipient = normalize_email(recipient_email)
    if recipient == normalize_email(requester.email):
        raise AppError(
            ErrorCode.SELF_CLAIM,
            "You cannot send a link request to yourself.",
            409,
        )

    now = utcnow()
    link_request = LinkRequest(
        id=request_id,
        requester_id=requester.id,
        requester_email=normalize_email(requester.email),
        requester_name=requester.display_name,
        recipient_email=recipient,
        target_member_id=normalize_member_id(target_member_id),
        target_member_name=target_member_name.strip(),
        status=LinkRequestStatus.PENDING,
        created_at=now,
        expires_at=now + timedelta(days=ttl_days),
    )
    session.add(link_request)
    session.flush()

    logger.info(
        "link_request_created request_id=%s requester_id=%s target=%s",
        link_request.id,
        requester.id,
        link_request.target_member_id,
    )
    return link_request, True


def list_incoming(session: Session, account: Account) -> list[LinkRequest]:
    return list(session.execute(
        select(LinkRequest)
        .where(LinkRequest.recipient_email == normalize_email(account.email))
        .order_by(LinkRequest.created_at.desc(), LinkRequest.id)
    ).scalars().all())


def list_outgoing(session: Session, account: Account) -> list[LinkRequest]:
    return list(session.execute(
        select(LinkRequest)
        .where(LinkRequest.requester_id == account.id)
        .order_by(LinkRequest.created_at.desc(), LinkRequest.id)
    ).scalars().all())


def accept_link_request(session: Session, account: Account, request_id: str) -> dict:
    """
    Recipient accepts: status becomes accepted, then the claim pipeline runs
    with the requester as creator.

    Raises:
      LINK_REQUEST_NOT_FOUND   (404)
      FORBIDDEN                (403) — caller is not the recipient
      LINK_REQUEST_NOT_PENDING (409)
      LINK_REQUEST_EXPIRED     (410)
      plus every claim precondition error.
    """
    link_request = _get_request_or_404(session, request_id)
    _require_recipient(link_request, account, "accept")

    if link_request.status != LinkRequestStatus.PENDING:
        raise AppError(
            ErrorCode.LINK_REQUEST_NOT_PENDING,
            "This link request is no longer pending.",
            409,
        )
    if link_request.is_expired():
        raise AppError(
            ErrorCode.LINK_REQUEST_EXPIRED,
            "This link request has expired.",
            410,
        )

    claim_service.check_claim_preconditions(
        session,
        account,
        link_request.target_member_id,
        link_request.requester_email,
        link_request.requester_id,
    )

    link_request.status = LinkRequestStatus.ACCEPTED
    session.flush()

    claim = claim_service.claim_for_account(
        session,
        account,
        link_request.target_member_id,
        link_request.requester_email,
        link_request.requester_id,
    )
    claim["link_request_id"] = link_request.id
    return claim


def decline_link_request(session: Session, account: Account, request_id: str) -> LinkRequest:
    link_request = _get_request_or_404(session, request_id)
    _require_recipient(link_request, account, "decline")

    if link_request.status == LinkRequestStatus.ACCEPTED:
        raise AppError(
            ErrorCode.LINK_REQUEST_NOT_PENDING,
            "This link request has already been accepted.",
            409,
        )

    link_request.status = LinkRequestStatus.DECLINED
    link_request.rejected_at = utcnow()
    session.flush()
    return link_request


def cancel_link_request(session: Session, account: Account, request_id: str) -> None:
    """Requester withdraws a request."""
    link_request = _get_request_or_404(session, request_id)
    if link_request.requester_id != account.id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the requester can cancel this link request.",
            403,
        )
    session.delete(link_request)
    session.flush()
