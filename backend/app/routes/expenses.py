"""
routes/expenses.py — Expense route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/expenses):
  POST   /expenses              → 201 created / 200 replayed client ID
  GET    /expenses[?group_id=]  → 200  expenses visible to the caller
  GET    /expenses/:id          → 200  one expense
  PATCH  /expenses/:id          → 200  partial update (owner only)
  DELETE /expenses/:id          → 200  soft delete (owner only)
  DELETE /expenses              → 200  hard-delete every owned expense

Monetary amounts are serialised as strings by DecimalJSONProvider.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import current_account, require_auth
from backend.app.schemas.expense_schema import CreateExpenseSchema, PatchExpenseSchema
from backend.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


@expenses_bp.route("/", methods=["POST"])
@require_auth
def create_expense():
    """POST /expenses — Re-sending an existing client ID returns the stored expense."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    account = current_account()
    expense, created = expense_service.create_expense(
        session=db.session,
        account=account,
        data=data,
    )
    db.session.commit()
    return jsonify({"data": expense_service.serialize_expense(expense), "warnings": []}), (201 if created else 200)


@expenses_bp.route("/", methods=["GET"])
@require_auth
def list_expenses():
    """GET /expenses — Optional ?group_id= filter."""
    account = current_account()
    expenses = expense_service.list_expenses(
        session=db.session,
        account=account,
        group_id=request.args.get("group_id") or None,
    )
    return jsonify({"data": [expense_service.serialize_expense(e) for e in expenses], "warnings": []}), 200


@expenses_bp.route("/<string:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: str):
    """GET /expenses/:id"""
    account = current_account()
    expense = expense_service.get_expense(
        session=db.session,
        account=account,
        expense_id=expense_id,
    )
    return jsonify({"data": expense_service.serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/<string:expense_id>", methods=["PATCH"])
@require_auth
def update_expense(expense_id: str):
    """PATCH /expenses/:id"""
    data = PatchExpenseSchema().load(request.get_json(force=True) or {})
    account = current_account()
    expense = expense_service.update_expense(
        session=db.session,
        account=account,
        expense_id=expense_id,
        data=data,
    )
    db.session.commit()
    return jsonify({"data": expense_service.serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/<string:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: str):
    """DELETE /expenses/:id — Soft delete; repeating it is a no-op."""
    account = current_account()
    expense = expense_service.delete_expense(
        session=db.session,
        account=account,
        expense_id=expense_id,
    )
    db.session.commit()
    return jsonify({"data": expense_service.serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/", methods=["DELETE"])
@require_auth
def clear_expenses():
    """DELETE /expenses — remove every expense the caller owns and the caller's visibility rows."""
    account = current_account()
    result = expense_service.clear_all_expenses_for_user(session=db.session, account=account)
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
