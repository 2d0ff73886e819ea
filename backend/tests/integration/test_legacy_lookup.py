"""
Integration tests for services/legacy_lookup.py against a real database.

What this file proves:
  - Rows stored before normalization (mixed case, stray whitespace) are
    still found, through a filtered query rather than a bounded scan
  - The alias cache is searched by its stored JSON text, however many
    accounts come before the match
"""

from __future__ import annotations

from backend.app.extensions import db
from backend.app.models.account import Account
from backend.app.models.account_friend import AccountFriend
from backend.app.services import legacy_lookup


def _account(account_id, email, member_id, **extra):
    return Account(id=account_id, email=email, display_name=account_id, member_id=member_id, **extra)


def test_mixed_case_email_is_found(app):
    with app.app_context():
        db.session.add(_account("uid-old", " Old@Test.com", "m-old"))
        db.session.commit()

        found = legacy_lookup.find_account_by_email(db.session, "old@test.com")

        assert found is not None and found.id == "uid-old"


def test_mixed_case_member_id_is_found(app):
    with app.app_context():
        db.session.add(_account("uid-old", "old@test.com", "M-Old "))
        db.session.commit()

        found = legacy_lookup.find_account_by_member_id(db.session, "m-old")

        assert found is not None and found.id == "uid-old"


def test_alias_cache_match_past_many_accounts(app):
    with app.app_context():
        db.session.add_all(
            _account(f"uid-{i:04d}", f"u{i}@test.com", f"m-{i:04d}") for i in range(1100)
        )
        db.session.add(_account("uid-last", "last@test.com", "m-last", alias_member_ids=["P-Cached"]))
        db.session.commit()

        found = legacy_lookup.find_account_by_member_id(db.session, "p-cached")

        assert found is not None and found.id == "uid-last"
        assert legacy_lookup.find_account_by_member_id(db.session, "p-cach") is None


def test_friend_row_with_mixed_case_owner_and_member(app):
    with app.app_context():
        db.session.add(AccountFriend(account_email="Alice@Test.com", member_id="P-Bob", name="Bob"))
        db.session.commit()

        row = legacy_lookup.find_friend_by_member_id(db.session, "alice@test.com", "p-bob")

        assert row is not None and row.name == "Bob"
