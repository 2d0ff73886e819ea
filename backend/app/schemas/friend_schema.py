"""
schemas/friend_schema.py — Friend list request and response schemas.

UpsertFriendSchema drops unknown fields instead of rejecting them: clients
historically sent linkage fields (has_linked_account, linked_account_id, ...)
with every friend sync. Those are never accepted from a request; only the
claim pipeline links a friend row.

FriendViewSchema is an output schema (ma.Schema) used only inside request
handlers to dump deduplicated friend views.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, validate

from backend.app.extensions import ma


class UpsertFriendSchema(Schema):
    """PUT /friends"""

    class Meta:
        unknown = EXCLUDE

    member_id = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=64),
    )

    # Blank names are stored as "Unknown" by the service.
    name = fields.Str(
        load_default="",
        validate=validate.Length(max=255),
    )

    nickname = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=255),
    )

    profile_avatar_color = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=32),
    )

    # Free-form on write; interpreted through classify_friend_status() on read.
    status = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=32),
    )


class FriendViewSchema(ma.Schema):
    member_id = fields.Str()
    name = fields.Str()
    nickname = fields.Str(allow_none=True)
    original_name = fields.Str(allow_none=True)
    original_nickname = fields.Str(allow_none=True)
    profile_avatar_color = fields.Str(allow_none=True)
    has_linked_account = fields.Bool()
    linked_account_id = fields.Str(allow_none=True)
    linked_account_email = fields.Str(allow_none=True)
    linked_member_id = fields.Str(allow_none=True)
    alias_member_ids = fields.List(fields.Str())
    status = fields.Str()
    updated_at = fields.Str(allow_none=True)
