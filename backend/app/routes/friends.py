"""
routes/friends.py — Friend list route handlers.

Endpoints (base url_prefix=/api/v1/friends):
  GET    /friends   → 200  deduplicated friend list
  PUT    /friends   → 200  create or update one friend row
  DELETE /friends   → 200  clear the caller's friend list
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.app.errors import WarningCode
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import current_account, require_auth
from backend.app.schemas.friend_schema import FriendViewSchema, UpsertFriendSchema
from backend.app.services import friend_service

friends_bp = Blueprint("friends", __name__)


@friends_bp.route("/", methods=["GET"])
@require_auth
def list_friends():
    """GET /friends — One row per real identity; stale links returned demoted."""
    account = current_account()
    views, demoted = friend_service.list_friends(db.session, account)

    warnings = []
    if demoted:
        warnings.append({
            "code": WarningCode.STALE_FRIEND_LINK,
            "message": f"{demoted} friend link(s) point to accounts that no longer exist.",
        })
    return jsonify({"data": FriendViewSchema(many=True).dump(views), "warnings": warnings}), 200


@friends_bp.route("/", methods=["PUT"])
@require_auth
def upsert_friend():
    """PUT /friends — Linkage fields in the body are ignored."""
    data = UpsertFriendSchema().load(request.get_json(force=True) or {})
    account = current_account()
    row = friend_service.upsert_friend(db.session, account, data)
    db.session.commit()
    return jsonify({"data": friend_service.serialize_friend(row), "warnings": []}), 200


@friends_bp.route("/", methods=["DELETE"])
@require_auth
def clear_friends():
    """DELETE /friends"""
    account = current_account()
    deleted = friend_service.clear_all_friends(db.session, account)
    db.session.commit()
    return jsonify({"data": {"friends_deleted": deleted}, "warnings": []}), 200
