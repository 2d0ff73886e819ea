"""
schemas/alias_schema.py — Marshmallow schemas for alias (merge) endpoints.

Older clients still send `account_email` in merge bodies. It is accepted so
those requests validate, and ignored: the acting account always comes from
the verified token.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_member_id(value: str) -> None:
    if not value.strip():
        raise ValidationError("Member ID must not be blank.")


_member_id_field = dict(
    required=True,
    validate=[validate.Length(min=1, max=64), _validate_member_id],
)


class MergeMemberIdsSchema(Schema):
    """POST /aliases/merge"""

    source_id = fields.Str(**_member_id_field)
    target_id = fields.Str(**_member_id_field)

    # Deprecated; ignored.
    account_email = fields.Str(load_default=None)


class MergeUnlinkedFriendsSchema(Schema):
    """POST /aliases/merge-unlinked-friends — friend_id_1 becomes canonical."""

    friend_id_1 = fields.Str(**_member_id_field)
    friend_id_2 = fields.Str(**_member_id_field)

    # Deprecated; ignored.
    account_email = fields.Str(load_default=None)
