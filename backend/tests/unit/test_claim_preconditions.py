"""
Unit tests for claim_service.check_claim_preconditions.

Each named conflict must be raised before anything is written, so the
session mock must see no add/flush/delete.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from backend.app.errors import AppError, ErrorCode
from backend.app.services import claim_service

BOB = SimpleNamespace(id="uid-bob", email="bob@test.com", member_id="bob-canonical")
CAROL = SimpleNamespace(id="uid-carol", email="carol@test.com", member_id="carol-canonical")


def _check(accounts_by_member: dict, edges: dict, account=BOB, creator_email="alice@test.com",
           creator_id="uid-alice", target="p-bob"):
    session = MagicMock()

    def find_account(session, member_id):
        return accounts_by_member.get(member_id)

    def resolve(session, member_id):
        current = member_id
        while current in edges:
            current = edges[current]
        return current

    with patch("backend.app.services.legacy_lookup.find_account_by_member_id", side_effect=find_account), \
            patch("backend.app.services.alias_service.resolve_canonical_member_id", side_effect=resolve):
        claim_service.check_claim_preconditions(session, account, target, creator_email, creator_id)

    session.add.assert_not_called()
    session.flush.assert_not_called()


def test_unclaimed_placeholder_passes():
    _check({}, {})


def test_placeholder_already_aliased_to_claimer_passes():
    _check({}, {"p-bob": "bob-canonical"})


def test_self_claim_by_email():
    with pytest.raises(AppError) as exc_info:
        _check({}, {}, creator_email=" BOB@test.com ", creator_id="uid-other")

    assert exc_info.value.code == ErrorCode.SELF_CLAIM
    assert exc_info.value.http_status == 409


def test_self_claim_by_account_id():
    with pytest.raises(AppError) as exc_info:
        _check({}, {}, creator_email="someone@test.com", creator_id="uid-bob")

    assert exc_info.value.code == ErrorCode.SELF_CLAIM


def test_placeholder_bound_to_another_account():
    with pytest.raises(AppError) as exc_info:
        _check({"p-bob": CAROL}, {})

    assert exc_info.value.code == ErrorCode.ALREADY_LINKED
    assert exc_info.value.kind == "AlreadyLinked"


def test_placeholder_resolving_to_another_account():
    with pytest.raises(AppError) as exc_info:
        _check({"carol-canonical": CAROL}, {"p-bob": "carol-canonical"})

    assert exc_info.value.code == ErrorCode.ALREADY_LINKED


def test_placeholder_resolving_to_another_placeholder_is_alias_conflict():
    with pytest.raises(AppError) as exc_info:
        _check({}, {"p-bob": "p-robert"})

    assert exc_info.value.code == ErrorCode.ALIAS_CONFLICT
    assert exc_info.value.kind == "Conflict"


def test_reclaim_by_same_account_passes():
    _check({"p-bob": BOB}, {"p-bob": "bob-canonical"})
