"""
routes/accounts.py — Account route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/accounts):
  POST   /accounts/store  → 201 created / 200 refreshed
  GET    /accounts/me     → 200  caller's account
  DELETE /accounts/me     → 200  self-delete (history preserved)
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import current_account, require_auth
from backend.app.schemas.account_schema import StoreAccountSchema
from backend.app.services import account_service, cleanup_service

accounts_bp = Blueprint("accounts", __name__)


@accounts_bp.route("/store", methods=["POST"])
@require_auth
def store():
    """POST /accounts/store — Create the caller's account on first sign-in."""
    data = StoreAccountSchema().load(request.get_json(silent=True) or {})
    account, created = account_service.store_account(
        session=db.session,
        identity=g.identity,
        display_name=data["display_name"],
        profile_avatar_color=data["profile_avatar_color"],
    )
    db.session.commit()
    return jsonify({"data": account_service.serialize_account(account), "warnings": []}), (201 if created else 200)


@accounts_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /accounts/me"""
    account = current_account()
    return jsonify({"data": account_service.serialize_account(account), "warnings": []}), 200


@accounts_bp.route("/me", methods=["DELETE"])
@require_auth
def delete_me():
    """DELETE /accounts/me — Self-delete. Returns per-entity counts."""
    account = current_account()
    result = cleanup_service.delete_account(
        session=db.session,
        caller=account,
        scope="self",
    )
    db.session.commit()
    current_app.logger.info("account_deleted scope=self account_id=%s", g.identity.subject)
    return jsonify({"data": result, "warnings": []}), 200
