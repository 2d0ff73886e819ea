"""
schemas/invite_schema.py — Schemas for invite tokens and link requests.

`id` is client-generated for both resources so a retried create returns the
existing row; it is optional and generated server-side when absent.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateInviteSchema(Schema):
    """POST /invites"""

    id = fields.Str(
        load_default=None,
        validate=validate.Length(min=1, max=64),
    )

    target_member_id = fields.Str(
        required=True,
        validate=[validate.Length(min=1, max=64), _validate_non_empty_after_trim],
    )

    target_member_name = fields.Str(
        required=True,
        validate=[validate.Length(min=1, max=255), _validate_non_empty_after_trim],
    )


class CreateLinkRequestSchema(Schema):
    """POST /link-requests"""

    id = fields.Str(
        load_default=None,
        validate=validate.Length(min=1, max=64),
    )

    recipient_email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    target_member_id = fields.Str(
        required=True,
        validate=[validate.Length(min=1, max=64), _validate_non_empty_after_trim],
    )

    target_member_name = fields.Str(
        required=True,
        validate=[validate.Length(min=1, max=255), _validate_non_empty_after_trim],
    )
