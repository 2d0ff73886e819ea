"""
routes/admin.py — Operator route handlers.

Every endpoint requires a token whose email is listed in ADMIN_EMAILS.
Admin status is a config concern, so the check happens before any service
call.

Endpoints (base url_prefix=/api/v1/admin):
  POST /admin/accounts/hard-delete   → 200  cascading delete by email
  POST /admin/janitor/run            → 200  one orphan-cleanup tick
  POST /admin/fanout/rebuild         → 200  rebuild user_expenses
  GET  /admin/integrity              → 200  read-only integrity report
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.account_schema import HardDeleteSchema, JanitorRunSchema
from backend.app.services import cleanup_service, fanout_service, integrity_service, janitor_service

admin_bp = Blueprint("admin", __name__)


def _require_admin() -> None:
    cleanup_service.require_admin(g.identity.email, current_app.config["ADMIN_EMAILS"])


@admin_bp.route("/accounts/hard-delete", methods=["POST"])
@require_auth
def hard_delete():
    """POST /admin/accounts/hard-delete — Also scrubs data when no account exists."""
    _require_admin()
    data = HardDeleteSchema().load(request.get_json(force=True) or {})
    result = cleanup_service.delete_account(
        session=db.session,
        caller=g.identity,
        scope="admin",
        target_email=data["email"],
        admin_emails=current_app.config["ADMIN_EMAILS"],
    )
    db.session.commit()
    current_app.logger.info(
        "account_deleted scope=admin actor=%s target=%s status=%s",
        g.identity.email,
        result["email"],
        result["status"],
    )
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/janitor/run", methods=["POST"])
@require_auth
def run_janitor():
    """POST /admin/janitor/run — The janitor commits per orphan itself."""
    _require_admin()
    data = JanitorRunSchema().load(request.get_json(silent=True) or {})
    result = janitor_service.cleanup_orphans(
        session=db.session,
        page_size=data["page_size"] or current_app.config["JANITOR_PAGE_SIZE"],
        max_orphans_per_run=(
            data["max_orphans_per_run"]
            if data["max_orphans_per_run"] is not None
            else current_app.config["JANITOR_MAX_ORPHANS_PER_RUN"]
        ),
    )
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/fanout/rebuild", methods=["POST"])
@require_auth
def rebuild_fanout():
    """POST /admin/fanout/rebuild"""
    _require_admin()
    result = fanout_service.rebuild_all_user_expenses(session=db.session)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@admin_bp.route("/integrity", methods=["GET"])
@require_auth
def integrity():
    """GET /admin/integrity"""
    _require_admin()
    result = integrity_service.check_data_integrity(session=db.session)
    return jsonify({"data": result, "warnings": []}), 200
