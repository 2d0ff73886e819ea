"""
schemas/group_schema.py — Marshmallow schemas for group endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    duplicate member IDs inside one request.
  - services/group_service.py:
      - FORBIDDEN (only the owner may update an existing group)
      - GROUP_NOT_FOUND (requires DB lookup)
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate, validates_schema

from backend.app.services.identity import normalize_member_id


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class GroupMemberSchema(Schema):
    """One entry of the member snapshot."""

    class Meta:
        unknown = EXCLUDE

    id = fields.Str(
        required=True,
        validate=[validate.Length(min=1, max=64), _validate_non_empty_after_trim],
    )
    name = fields.Str(
        load_default="",
        validate=validate.Length(max=255),
    )
    is_current_user = fields.Bool(load_default=False)


class UpsertGroupSchema(Schema):
    """
    POST /groups

    Creates the group, or replaces the snapshot when `id` names an existing
    group owned by the caller.
    """

    id = fields.Str(
        load_default=None,
        validate=validate.Length(min=1, max=64),
    )

    # VARCHAR(100) NOT NULL CHECK(LENGTH(TRIM(name)) > 0)
    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    members = fields.List(
        fields.Nested(GroupMemberSchema),
        required=True,
        validate=validate.Length(min=1, error="A group needs at least one member."),
    )

    is_direct = fields.Bool(load_default=False)

    @validates_schema
    def validate_members(self, data: dict, **kwargs) -> None:
        ids = [normalize_member_id(m["id"]) for m in data.get("members") or []]
        if len(ids) != len(set(ids)):
            raise ValidationError({"members": ["The same member ID appears more than once."]})
        if data.get("is_direct") and len(ids) != 2:
            raise ValidationError({"members": ["A direct group has exactly two members."]})


class DeleteGroupsSchema(Schema):
    """POST /groups/delete — bulk delete of owned groups."""

    ids = fields.List(
        fields.Str(validate=[validate.Length(min=1, max=64), _validate_non_empty_after_trim]),
        required=True,
        validate=validate.Length(min=1, max=100),
    )
