"""
routes/groups.py — Group route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups        → 201 created / 200 updated (owner only)
  GET    /groups        → 200  groups visible to the caller
  GET    /groups/:id    → 200  one group (members, through aliases, only)
  DELETE /groups/:id    → 200  delete an owned group and its expenses
  POST   /groups/delete → 200  bulk delete; groups not owned are skipped
  POST   /groups/:id/leave → 200  leave a group (every equivalent member ID)
  DELETE /groups        → 200  delete owned groups, leave shared ones
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import current_account, require_auth
from backend.app.schemas.group_schema import DeleteGroupsSchema, UpsertGroupSchema
from backend.app.services import group_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
@require_auth
def upsert_group():
    """POST /groups — Create a group, or replace the member snapshot of an owned one."""
    data = UpsertGroupSchema().load(request.get_json(force=True) or {})
    account = current_account()
    group, created = group_service.upsert_group(
        session=db.session,
        account=account,
        data=data,
    )
    db.session.commit()
    return jsonify({"data": group_service.serialize_group(group), "warnings": []}), (201 if created else 200)


@groups_bp.route("/", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups"""
    account = current_account()
    groups = group_service.list_groups(session=db.session, account=account)
    return jsonify({"data": [group_service.serialize_group(gr) for gr in groups], "warnings": []}), 200


@groups_bp.route("/<string:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: str):
    """GET /groups/:id — FORBIDDEN unless one of the caller's IDs is a member."""
    account = current_account()
    group = group_service.get_group(
        session=db.session,
        account=account,
        group_id=group_id,
    )
    return jsonify({"data": group_service.serialize_group(group), "warnings": []}), 200


@groups_bp.route("/<string:group_id>", methods=["DELETE"])
@require_auth
def delete_group(group_id: str):
    """DELETE /groups/:id — owner only; a missing group is a no-op."""
    account = current_account()
    result = group_service.delete_group(
        session=db.session,
        account=account,
        group_id=group_id,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/delete", methods=["POST"])
@require_auth
def delete_groups():
    """POST /groups/delete"""
    data = DeleteGroupsSchema().load(request.get_json(force=True) or {})
    account = current_account()
    result = group_service.delete_groups(
        session=db.session,
        account=account,
        group_ids=[group_id.strip() for group_id in data["ids"]],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<string:group_id>/leave", methods=["POST"])
@require_auth
def leave_group(group_id: str):
    """POST /groups/:id/leave"""
    account = current_account()
    result = group_service.leave_group(
        session=db.session,
        account=account,
        group_id=group_id,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/", methods=["DELETE"])
@require_auth
def clear_groups():
    """DELETE /groups — delete every owned group and leave every shared one."""
    account = current_account()
    result = group_service.clear_all_groups_for_user(session=db.session, account=account)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
