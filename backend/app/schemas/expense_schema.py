"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, decimal precision
      - SPLITS_SENT_FOR_EQUAL_MODE (400) — request shape rule
      - DUPLICATE_SPLIT_MEMBER     (400) — request shape rule
      - Splits required when split_mode='custom' (CREATE and PATCH)
      - PATCH co-presence rule: total_amount and splits must both be present
        (or both absent) when split_mode is not changing to 'equal'
      - Non-empty-after-trim enforcement for description
  - services/expense_service.py:
      - SPLIT_SUM_MISMATCH (422)      — requires Decimal arithmetic
      - PAYER_NOT_MEMBER (422)        — requires alias-aware membership lookup
      - SPLIT_MEMBER_NOT_MEMBER (422) — requires alias-aware membership lookup
      - NOT_DIRECT_FRIEND (422)       — requires the caller's friend rows
      - EXPENSE_DELETED (422)         — requires DB record lookup
      - Edit permission (FORBIDDEN, 403)
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from backend.app.errors import ErrorCode
from backend.app.models.expense import SplitMode
from backend.app.services.identity import normalize_member_id


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Max 2 decimal places, strictly positive. Input with more than 2 decimal
# places is REJECTED with INVALID_AMOUNT_PRECISION, never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Validates a monetary Decimal value:
      - Must be strictly greater than zero.
      - Must have at most 2 decimal places.

    The route error handler detects INVALID_AMOUNT_PRECISION by matching the
    raised ValidationError message to the known ErrorCode constant.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    # Decimal("10.123").as_tuple().exponent == -3  → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _check_duplicate_split_members(splits: list[dict]) -> None:
    member_ids = [normalize_member_id(s["member_id"]) for s in splits]
    if len(member_ids) != len(set(member_ids)):
        raise ValidationError({"splits": [ErrorCode.DUPLICATE_SPLIT_MEMBER]})


_member_id_validators = [validate.Length(min=1, max=64), _validate_non_empty_after_trim]


# ── Sub-schema: one entry in the `splits` array ───────────────────────────

class SplitInputSchema(Schema):
    """
    One split object. Whether member_id belongs to the group is checked in
    expense_service.py, not here.
    """

    member_id = fields.Str(
        required=True,
        validate=_member_id_validators,
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /expenses

    Split mode behaviour:
      - split_mode='equal'  → client must NOT send splits.
                              Server computes equal splits across
                              involved_member_ids (default: all group members).
      - split_mode='custom' → client MUST send splits.
    """

    id = fields.Str(
        load_default=None,
        validate=validate.Length(min=1, max=64),
    )

    group_id = fields.Str(
        required=True,
        validate=_member_id_validators,
    )

    paid_by_member_id = fields.Str(
        required=True,
        validate=_member_id_validators,
    )

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    total_amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    # INVALID_SPLIT_MODE (400) if the value is not in the enum.
    split_mode = fields.Enum(
        SplitMode,
        load_default=SplitMode.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_MODE},
    )

    involved_member_ids = fields.List(
        fields.Str(validate=_member_id_validators),
        load_default=None,
    )

    splits = fields.List(
        fields.Nested(SplitInputSchema),
        load_default=None,
    )

    is_settled = fields.Bool(load_default=False)

    @validates_schema
    def validate_splits_coherence(self, data: dict, **kwargs) -> None:
        """
        1. SPLITS_SENT_FOR_EQUAL_MODE: splits present with split_mode='equal'.
        2. splits required when split_mode='custom'.
        3. DUPLICATE_SPLIT_MEMBER: same member_id twice in splits.

        The sum check and membership checks belong in expense_service.py.
        """
        split_mode = data.get("split_mode", SplitMode.EQUAL)
        splits = data.get("splits")

        if split_mode == SplitMode.EQUAL:
            if splits is not None:
                raise ValidationError({"splits": [ErrorCode.SPLITS_SENT_FOR_EQUAL_MODE]})
            return

        if not splits:
            raise ValidationError({"splits": ["splits is required when split_mode is 'custom'."]})
        _check_duplicate_split_members(splits)


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    PATCH /expenses/:id

    All fields are optional. Only provided fields are updated.

    Partial update rules:
      1. If total_amount OR splits are provided, BOTH must be present,
         unless split_mode is changing to 'equal'.
      2. If split_mode changes to 'equal', splits must be absent
         (server recomputes them).
      3. If split_mode changes to 'custom', splits must be present.
    """

    paid_by_member_id = fields.Str(
        required=False,
        validate=_member_id_validators,
    )

    description = fields.Str(
        required=False,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    total_amount = fields.Decimal(
        required=False,
        validate=_validate_monetary_amount,
    )

    split_mode = fields.Enum(
        SplitMode,
        required=False,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_MODE},
    )

    involved_member_ids = fields.List(
        fields.Str(validate=_member_id_validators),
        required=False,
    )

    splits = fields.List(
        fields.Nested(SplitInputSchema),
        required=False,
    )

    is_settled = fields.Bool(required=False)

    @validates_schema
    def validate_patch_coherence(self, data: dict, **kwargs) -> None:
        split_mode = data.get("split_mode")
        amount = data.get("total_amount")
        splits = data.get("splits")

        # ── Rule 2: equal mode forbids a client-supplied splits array ──────
        if split_mode == SplitMode.EQUAL:
            if splits is not None:
                raise ValidationError({"splits": [ErrorCode.SPLITS_SENT_FOR_EQUAL_MODE]})
            return

        # ── Rule 3: custom mode requires splits ────────────────────────────
        if split_mode == SplitMode.CUSTOM and splits is None:
            raise ValidationError({"splits": ["splits must be provided when split_mode is 'custom'."]})

        if splits is not None:
            _check_duplicate_split_members(splits)

        # ── Rule 1: amount and splits together ─────────────────────────────
        if amount is not None and splits is None:
            raise ValidationError({"splits": ["splits must be provided when total_amount is being updated."]})
        if splits is not None and amount is None:
            raise ValidationError({"total_amount": ["total_amount must be provided when splits are being updated."]})
