"""
routes/link_requests.py — Link request route handlers.

Endpoints (base url_prefix=/api/v1/link-requests):
  GET    /link-requests/incoming      → 200  requests addressed to the caller
  GET    /link-requests/outgoing      → 200  requests the caller sent
  POST   /link-requests               → 201 created / 200 replayed client ID
  POST   /link-requests/:id/accept    → 200  accept and link (recipient only)
  POST   /link-requests/:id/decline   → 200  decline (recipient only)
  DELETE /link-requests/:id           → 200  cancel (requester only)
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import current_account, require_auth
from backend.app.schemas.invite_schema import CreateLinkRequestSchema
from backend.app.services import link_request_service

link_requests_bp = Blueprint("link_requests", __name__)


def _serialize_all(link_requests) -> list[dict]:
    return [link_request_service.serialize_link_request(lr) for lr in link_requests]


@link_requests_bp.route("/incoming", methods=["GET"])
@require_auth
def incoming():
    """GET /link-requests/incoming"""
    account = current_account()
    result = link_request_service.list_incoming(session=db.session, account=account)
    return jsonify({"data": _serialize_all(result), "warnings": []}), 200


@link_requests_bp.route("/outgoing", methods=["GET"])
@require_auth
def outgoing():
    """GET /link-requests/outgoing"""
    account = current_account()
    result = link_request_service.list_outgoing(session=db.session, account=account)
    return jsonify({"data": _serialize_all(result), "warnings": []}), 200


@link_requests_bp.route("/", methods=["POST"])
@require_auth
def create_link_request():
    """POST /link-requests"""
    data = CreateLinkRequestSchema().load(request.get_json(force=True) or {})
    account = current_account()
    link_request, created = link_request_service.create_link_request(
        session=db.session,
        requester=account,
        request_id=data.get("id"),
        recipient_email=data["recipient_email"],
        target_member_id=data["target_member_id"],
        target_member_name=data["target_member_name"],
        ttl_days=current_app.config["LINK_REQUEST_TTL_DAYS"],
    )
    db.session.commit()
    return jsonify({
        "data": link_request_service.serialize_link_request(link_request),
        "warnings": [],
    }), (201 if created else 200)


@link_requests_bp.route("/<string:request_id>/accept", methods=["POST"])
@require_auth
def accept(request_id: str):
    """POST /link-requests/:id/accept"""
    account = current_account()
    result = link_request_service.accept_link_request(
        session=db.session,
        account=account,
        request_id=request_id,
    )
    db.session.commit()
    warnings = result.pop("warnings", [])
    return jsonify({"data": result, "warnings": warnings}), 200


@link_requests_bp.route("/<string:request_id>/decline", methods=["POST"])
@require_auth
def decline(request_id: str):
    """POST /link-requests/:id/decline"""
    account = current_account()
    link_request = link_request_service.decline_link_request(
        session=db.session,
        account=account,
        request_id=request_id,
    )
    db.session.commit()
    return jsonify({
        "data": link_request_service.serialize_link_request(link_request),
        "warnings": [],
    }), 200


@link_requests_bp.route("/<string:request_id>", methods=["DELETE"])
@require_auth
def cancel(request_id: str):
    """DELETE /link-requests/:id"""
    account = current_account()
    link_request_service.cancel_link_request(
        session=db.session,
        account=account,
        request_id=request_id,
    )
    db.session.commit()
    return jsonify({"data": {"id": request_id, "cancelled": True}, "warnings": []}), 200
