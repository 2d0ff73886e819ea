"""
Unit tests for the error registry (errors.py).
"""

from __future__ import annotations

from backend.app.errors import AppError, ErrorCode, WarningCode


def test_to_dict_carries_code_kind_message_and_field():
    err = AppError(ErrorCode.ALIAS_CYCLE, "Cannot merge.", 409, field="target_id")

    assert err.to_dict() == {
        "error": {
            "code": "ALIAS_CYCLE",
            "kind": "Conflict",
            "message": "Cannot merge.",
            "field": "target_id",
        }
    }


def test_to_dict_omits_field_when_absent():
    err = AppError(ErrorCode.FORBIDDEN, "No.", 403)

    assert "field" not in err.to_dict()["error"]
    assert err.kind == "Forbidden"


def test_kind_taxonomy():
    assert ErrorCode.kind_of(ErrorCode.INVITE_EXPIRED) == "Expired"
    assert ErrorCode.kind_of(ErrorCode.ALREADY_CLAIMED) == "AlreadyClaimed"
    assert ErrorCode.kind_of(ErrorCode.GROUP_NOT_FOUND) == "NotFound"
    assert ErrorCode.kind_of(ErrorCode.TOKEN_EXPIRED) == "Unauthenticated"
    assert ErrorCode.kind_of(ErrorCode.MISSING_FIELD) == "InvalidInput"


def test_every_kind_entry_is_a_registered_code():
    assert set(ErrorCode.KIND) <= ErrorCode.all_codes()


def test_all_codes_excludes_non_code_attributes():
    codes = ErrorCode.all_codes()

    assert "SELF_CLAIM" in codes
    assert "KIND" not in codes
    assert all(code == code.upper() for code in codes)


def test_warning_codes_are_distinct_from_error_codes():
    assert WarningCode.STALE_FRIEND_LINK not in ErrorCode.all_codes()
    assert WarningCode.FRIEND_LINK_PRESERVED not in ErrorCode.all_codes()
