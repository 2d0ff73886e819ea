"""
middleware/auth_middleware.py — Bearer-token authentication decorator.

Tokens are issued by the external auth provider, not by this service. The
@require_auth decorator:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Verifies the JWT signature (HS256 with the provider's shared secret),
     expiry, and issuer/audience when configured
  3. Requires the `sub` and `email` claims
  4. Attaches a VerifiedIdentity to flask.g.identity for the request
  5. Returns the appropriate 401 error if any step fails

Strict responsibility boundary:
  - This middleware authenticates only (401). It does NOT look up the
    account or perform business authorization. Services raise 403.
  - Services receive the identity or account as a plain argument, with no
    knowledge of JWT or HTTP headers.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, invalid signature, or bad claims
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.app.errors import AppError, ErrorCode
from backend.app.services.identity import VerifiedIdentity, normalize_email


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces bearer-token authentication.

    Attaches the caller to flask.g.identity. Raises AppError for all auth
    failures; the global error handler converts these to JSON responses.

    Usage:
        @accounts_bp.route("/me")
        @require_auth
        def me():
            identity = g.identity  # VerifiedIdentity
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _decode_options() -> dict:
    kwargs = {
        "algorithms": [current_app.config.get("JWT_ALGORITHM", "HS256")],
        "options": {"require": ["sub", "exp"]},
    }
    issuer = current_app.config.get("JWT_ISSUER")
    audience = current_app.config.get("JWT_AUDIENCE")
    if issuer:
        kwargs["issuer"] = issuer
    if audience:
        kwargs["audience"] = audience
    else:
        kwargs["options"]["verify_aud"] = False
    return kwargs


def _authenticate_request() -> None:
    """
    Performs the full authentication sequence and sets flask.g.identity.

    Separated from the decorator wrapper for testability — can be called
    directly in tests inside a request context.
    """
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    raw_token = parts[1]

    # ── Step 3: Decode and verify the JWT ─────────────────────────────────
    try:
        payload = jwt.decode(
            raw_token,
            current_app.config["JWT_SECRET_KEY"],
            **_decode_options(),
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Sign in again to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError:
        # Covers: bad signature, malformed token, wrong issuer/audience, missing claims.
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    # ── Step 4: Extract the identity claims ───────────────────────────────
    subject = payload.get("sub")
    email = normalize_email(payload.get("email"))
    if not subject or not isinstance(subject, str):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is missing the required 'sub' claim.",
            401,
        )
    if not email or "@" not in email:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is missing a valid 'email' claim.",
            401,
        )

    name = payload.get("name")

    # ── Step 5: Attach the identity to flask.g ────────────────────────────
    g.identity = VerifiedIdentity(
        subject=subject,
        email=email,
        name=name if isinstance(name, str) else None,
    )


def current_account():
    """
    The caller's Account, for routes that need one. Raises ACCOUNT_NOT_FOUND
    (404) if the caller never called POST /accounts/store.
    """
    from backend.app.extensions import db
    from backend.app.services import account_service

    return account_service.get_current_account(db.session, g.identity)
