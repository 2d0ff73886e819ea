"""
schemas/account_schema.py — Marshmallow schemas for account and admin endpoints.

Validation responsibility:
  - This file: field types, lengths, formats.
  - services/account_service.py / cleanup_service.py: existence and admin
    checks (require a DB lookup or config, not a schema concern).

Request schemas inherit from marshmallow.Schema directly so unit tests can
instantiate them without an app context. See extensions.py.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, validate


class StoreAccountSchema(Schema):
    """
    POST /accounts/store

    Identity (subject, email) always comes from the verified token, never
    from the body. Only profile fields are accepted here.
    """

    class Meta:
        unknown = EXCLUDE

    display_name = fields.Str(
        load_default=None,
        validate=validate.Length(max=255),
    )

    profile_avatar_color = fields.Str(
        load_default=None,
        validate=validate.Length(max=32),
    )


class HardDeleteSchema(Schema):
    """POST /admin/accounts/hard-delete"""

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )


class JanitorRunSchema(Schema):
    """POST /admin/janitor/run — optional overrides of the configured limits."""

    page_size = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=1, max=1000),
    )

    max_orphans_per_run = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=0, max=100),
    )
