"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - Alembic and the janitor CLI to load the app without serving it

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  3. Register all route blueprints under /api/v1
  4. Register global error handlers (AppError → JSON, Exception → 500)
  5. Register a custom JSON provider to serialise Decimal as string
  6. Register the `flask janitor` CLI group

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it. They are not used
  directly here — the import side-effect is sufficient.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.
# Monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Import all models so that SQLAlchemy's MetaData is populated.
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            account,
            account_friend,
            expense,
            group,
            invite_token,
            janitor_state,
            link_request,
            member_alias,
            user_expense,
        )

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)

    # ── CLI ────────────────────────────────────────────────────────────────
    from backend.app.cli import fanout_cli, janitor_cli
    app.cli.add_command(janitor_cli)
    app.cli.add_command(fanout_cli)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Service modules log through module-level `logging.getLogger(__name__)`
    loggers under the `backend` namespace; route them to the same handlers
    as app.logger.
    """
    level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    app.logger.setLevel(level)

    backend_logger = logging.getLogger("backend")
    backend_logger.setLevel(level)
    if not backend_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        backend_logger.addHandler(handler)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    Blueprint names match the route files in app/routes/.
    The url_prefix is set here so individual route files only specify
    the path relative to their resource (e.g. "/" and "/<string:id>").
    """
    from backend.app.routes.accounts import accounts_bp
    from backend.app.routes.admin import admin_bp
    from backend.app.routes.aliases import aliases_bp
    from backend.app.routes.expenses import expenses_bp
    from backend.app.routes.friends import friends_bp
    from backend.app.routes.groups import groups_bp
    from backend.app.routes.invites import invites_bp
    from backend.app.routes.link_requests import link_requests_bp

    app.register_blueprint(accounts_bp,      url_prefix="/api/v1/accounts")
    app.register_blueprint(friends_bp,       url_prefix="/api/v1/friends")
    app.register_blueprint(aliases_bp,       url_prefix="/api/v1/aliases")
    app.register_blueprint(invites_bp,       url_prefix="/api/v1/invites")
    app.register_blueprint(link_requests_bp, url_prefix="/api/v1/link-requests")
    app.register_blueprint(groups_bp,        url_prefix="/api/v1/groups")
    app.register_blueprint(expenses_bp,      url_prefix="/api/v1/expenses")
    app.register_blueprint(admin_bp,         url_prefix="/api/v1/admin")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD / named schema codes (400)
      IntegrityError  → CONCURRENT_WRITE_CONFLICT (409); a unique or
                        conditional write lost a race with another request
      HTTPException   → Flask's own 404/405 in the same envelope
      Exception       → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces never leave the server.
    """
    from backend.app.errors import AppError, ErrorCode
    from backend.app.extensions import db

    known_codes = ErrorCode.all_codes()

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.

        Routes never catch AppError — they let it propagate here. Nothing
        was committed, so the session is simply discarded.
        """
        db.session.rollback()
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST error is returned ("one error, not many").

        The error code from the ValidationError message is used directly if it
        matches a known ErrorCode constant; otherwise INVALID_FIELD is used.
        """
        messages = error.messages  # e.g. {"total_amount": ["INVALID_AMOUNT_PRECISION"]}

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                raw_message = _first_message(field_errors)
                break
        elif isinstance(messages, list):
            raw_message = messages[0] if messages else "Invalid input."

        if raw_message in known_codes:
            code = raw_message
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
        else:
            code = ErrorCode.INVALID_FIELD

        response_body = {
            "error": {
                "code": code,
                "kind": ErrorCode.kind_of(code),
                "message": _code_to_message(code) if raw_message in known_codes else raw_message,
            }
        }
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error: IntegrityError):
        db.session.rollback()
        app.logger.warning("concurrent_write_conflict detail=%s", str(error.orig))
        return jsonify({
            "error": {
                "code": ErrorCode.CONCURRENT_WRITE_CONFLICT,
                "kind": ErrorCode.kind_of(ErrorCode.CONCURRENT_WRITE_CONFLICT),
                "message": "Another request changed the same data. Retry the request.",
            }
        }), 409

    @app.errorhandler(OperationalError)
    def handle_operational_error(error: OperationalError):
        # PostgreSQL reports SERIALIZABLE conflicts as SQLSTATE 40001.
        db.session.rollback()
        if getattr(error.orig, "pgcode", None) == "40001":
            return jsonify({
                "error": {
                    "code": ErrorCode.CONCURRENT_WRITE_CONFLICT,
                    "kind": ErrorCode.kind_of(ErrorCode.CONCURRENT_WRITE_CONFLICT),
                    "message": "Another request changed the same data. Retry the request.",
                }
            }), 409
        return handle_unexpected_error(error)

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({
            "error": {
                "code": error.name.upper().replace(" ", "_"),
                "kind": "NotFound" if error.code == 404 else "InvalidInput",
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        The full traceback is logged to the application logger. Stack traces
        NEVER leave the server in the response body.
        """
        db.session.rollback()
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "kind": ErrorCode.kind_of(ErrorCode.INTERNAL_ERROR),
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _first_message(field_errors) -> str:
    """Digs the first string out of a (possibly nested) marshmallow messages value."""
    while isinstance(field_errors, (list, dict)):
        if not field_errors:
            return "Invalid value."
        field_errors = (
            field_errors[0] if isinstance(field_errors, list)
            else next(iter(field_errors.values()))
        )
    return str(field_errors)


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself
    (e.g. INVALID_AMOUNT_PRECISION raised as ValidationError in schemas).
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_SPLIT_MODE": "split_mode must be 'equal' or 'custom'.",
        "SPLITS_SENT_FOR_EQUAL_MODE": "Do not send a splits array when split_mode is 'equal'.",
        "DUPLICATE_SPLIT_MEMBER": "The same member_id appears more than once in the splits array.",
    }
    return _messages.get(code, "Invalid input.")
