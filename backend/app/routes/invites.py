"""
routes/invites.py — Invite token route handlers.

Endpoints (base url_prefix=/api/v1/invites):
  POST   /invites                → 201 created / 200 replayed client ID
  GET    /invites                → 200  caller's claimable invites
  GET    /invites/:id            → 200  anonymous read
  GET    /invites/:id/validate   → 200  anonymous pre-claim check
  POST   /invites/:id/claim      → 200  claim and link
  DELETE /invites/:id            → 200  revoke (creator only)
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import current_account, require_auth
from backend.app.schemas.invite_schema import CreateInviteSchema
from backend.app.services import invite_service

invites_bp = Blueprint("invites", __name__)


@invites_bp.route("/", methods=["POST"])
@require_auth
def create_invite():
    """POST /invites"""
    data = CreateInviteSchema().load(request.get_json(force=True) or {})
    account = current_account()
    token, created = invite_service.create_invite_token(
        session=db.session,
        creator=account,
        token_id=data.get("id"),
        target_member_id=data["target_member_id"],
        target_member_name=data["target_member_name"],
        ttl_days=current_app.config["INVITE_TOKEN_TTL_DAYS"],
    )
    db.session.commit()
    return jsonify({
        "data": invite_service.serialize_invite_token(token, account),
        "warnings": [],
    }), (201 if created else 200)


@invites_bp.route("/", methods=["GET"])
@require_auth
def list_invites():
    """GET /invites — Unclaimed, unexpired invites created by the caller."""
    account = current_account()
    tokens = invite_service.list_invite_tokens_by_creator(session=db.session, creator=account)
    return jsonify({
        "data": [invite_service.serialize_invite_token(t, account) for t in tokens],
        "warnings": [],
    }), 200


@invites_bp.route("/<string:token_id>", methods=["GET"])
def get_invite(token_id: str):
    """GET /invites/:id — No authentication."""
    result = invite_service.get_invite_token(session=db.session, token_id=token_id)
    return jsonify({"data": result, "warnings": []}), 200


@invites_bp.route("/<string:token_id>/validate", methods=["GET"])
def validate_invite(token_id: str):
    """GET /invites/:id/validate — No authentication. Never 404s."""
    result = invite_service.validate_invite_token(session=db.session, token_id=token_id)
    return jsonify({"data": result, "warnings": []}), 200


@invites_bp.route("/<string:token_id>/claim", methods=["POST"])
@require_auth
def claim_invite(token_id: str):
    """POST /invites/:id/claim"""
    account = current_account()
    result = invite_service.claim_invite(
        session=db.session,
        account=account,
        token_id=token_id,
    )
    db.session.commit()
    warnings = result.pop("warnings", [])
    return jsonify({"data": result, "warnings": warnings}), 200


@invites_bp.route("/<string:token_id>", methods=["DELETE"])
@require_auth
def revoke_invite(token_id: str):
    """DELETE /invites/:id"""
    account = current_account()
    invite_service.revoke_invite_token(
        session=db.session,
        account=account,
        token_id=token_id,
    )
    db.session.commit()
    return jsonify({"data": {"id": token_id, "revoked": True}, "warnings": []}), 200
