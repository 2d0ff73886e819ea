"""
routes/aliases.py — Alias graph route handlers.

The acting account always comes from the verified token. A deprecated
`account_email` in a merge body is accepted and ignored.

Endpoints (base url_prefix=/api/v1/aliases):
  GET  /aliases/resolve/:member_id          → 200  canonical ID
  GET  /aliases/:canonical/aliases          → 200  direct aliases
  GET  /aliases/equivalent/:member_id       → 200  equivalence set
  POST /aliases/merge                       → 200  merge two member IDs
  POST /aliases/merge-unlinked-friends      → 200  merge two unlinked friends
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import current_account, require_auth
from backend.app.schemas.alias_schema import MergeMemberIdsSchema, MergeUnlinkedFriendsSchema
from backend.app.services import alias_service
from backend.app.services.identity import normalize_member_id

aliases_bp = Blueprint("aliases", __name__)


@aliases_bp.route("/resolve/<string:member_id>", methods=["GET"])
@require_auth
def resolve(member_id: str):
    """GET /aliases/resolve/:member_id"""
    canonical = alias_service.resolve_canonical_member_id(db.session, member_id)
    return jsonify({
        "data": {
            "member_id": normalize_member_id(member_id),
            "canonical_member_id": canonical,
        },
        "warnings": [],
    }), 200


@aliases_bp.route("/<string:canonical_member_id>/aliases", methods=["GET"])
@require_auth
def aliases(canonical_member_id: str):
    """GET /aliases/:canonical/aliases"""
    result = alias_service.get_aliases_for_member(db.session, canonical_member_id)
    return jsonify({
        "data": {
            "canonical_member_id": normalize_member_id(canonical_member_id),
            "alias_member_ids": result,
        },
        "warnings": [],
    }), 200


@aliases_bp.route("/equivalent/<string:member_id>", methods=["GET"])
@require_auth
def equivalent(member_id: str):
    """GET /aliases/equivalent/:member_id"""
    result = alias_service.get_all_equivalent_member_ids(db.session, member_id)
    return jsonify({
        "data": {
            "member_id": normalize_member_id(member_id),
            "equivalent_member_ids": sorted(result),
        },
        "warnings": [],
    }), 200


@aliases_bp.route("/merge", methods=["POST"])
@require_auth
def merge():
    """POST /aliases/merge — source_id becomes an alias of resolve(target_id)."""
    data = MergeMemberIdsSchema().load(request.get_json(force=True) or {})
    account = current_account()
    result = alias_service.merge_member_ids(
        session=db.session,
        actor_email=account.email,
        source_id=data["source_id"],
        target_id=data["target_id"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@aliases_bp.route("/merge-unlinked-friends", methods=["POST"])
@require_auth
def merge_unlinked_friends():
    """POST /aliases/merge-unlinked-friends — friend_id_1 becomes canonical."""
    data = MergeUnlinkedFriendsSchema().load(request.get_json(force=True) or {})
    account = current_account()
    result = alias_service.merge_unlinked_friends(
        session=db.session,
        actor_email=account.email,
        friend_id_1=data["friend_id_1"],
        friend_id_2=data["friend_id_2"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
