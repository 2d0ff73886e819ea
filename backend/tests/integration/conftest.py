"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against TEST_DATABASE_URL, defaulting to in-memory SQLite.
    The schema uses no PostgreSQL-only types, so db.create_all() builds it
    on either backend.
  - The app is created once per session using create_app("testing").
  - Between tests, every row is deleted so tests are isolated.
  - Tokens are minted locally with the testing JWT secret, standing in for
    the external auth provider.

Helper functions (not fixtures) are provided for common operations:
  - make_token(subject, email, ...)    → signed bearer token
  - auth_headers(token)                → {"Authorization": "Bearer <token>"}
  - store_account(client, name, ...)   → (token, account dict)
  - add_friend(...)                    → friend dict
  - make_group(...)                    → group dict
  - make_expense(...)                  → HTTP response
  - make_invite(...)                   → invite dict

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from backend.app import create_app
from backend.app.extensions import db as _db

TEST_SECRET = "test-secret-key"
ADMIN_EMAIL = "admin@test.com"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the app in 'testing' mode once and builds every table."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test. No foreign keys, so order is free."""
    yield

    with app.app_context():
        _db.session.rollback()
        for table in reversed(_db.metadata.sorted_tables):
            _db.session.execute(table.delete())
        _db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_token(
    subject: str,
    email: str,
    name: str | None = None,
    expires_in: timedelta = timedelta(hours=1),
    secret: str = TEST_SECRET,
) -> str:
    """Mints a provider-style HS256 token."""
    payload = {
        "sub": subject,
        "email": email,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    if name is not None:
        payload["name"] = name
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def store_account(client, name: str = "alice", email: str | None = None, display_name: str | None = None):
    """
    Signs `name` in and creates their account.
    Returns: (token, account dict)
    """
    email = email or f"{name}@test.com"
    token = make_token(f"uid-{name}", email, name=(display_name or name.title()))
    resp = client.post(
        "/api/v1/accounts/store",
        json={"display_name": display_name or name.title()},
        headers=auth_headers(token),
    )
    assert resp.status_code in (200, 201), f"store_account failed: {resp.get_json()}"
    return token, resp.get_json()["data"]


def add_friend(client, token: str, member_id: str, name: str, **extra) -> dict:
    resp = client.put(
        "/api/v1/friends/",
        json={"member_id": member_id, "name": name, **extra},
        headers=auth_headers(token),
    )
    assert resp.status_code == 200, f"add_friend failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_group(client, token: str, members: list[dict], group_id: str | None = None,
               name: str = "Trip", is_direct: bool = False) -> dict:
    """Creates a group. `members` is a list of {"id", "name"} dicts."""
    payload: dict = {"name": name, "members": members, "is_direct": is_direct}
    if group_id is not None:
        payload["id"] = group_id
    resp = client.post("/api/v1/groups/", json=payload, headers=auth_headers(token))
    assert resp.status_code in (200, 201), f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def make_expense(
    client,
    token: str,
    group_id: str,
    paid_by_member_id: str,
    amount: str,
    splits: list[dict] | None = None,
    expense_id: str | None = None,
    description: str = "Dinner",
    split_mode: str = "equal",
    involved_member_ids: list[str] | None = None,
):
    """
    Creates an expense and returns the HTTP response.
    For split_mode='equal', do not pass splits (server computes them).
    For split_mode='custom', pass splits as a list of {member_id, amount} dicts.
    """
    payload: dict = {
        "group_id": group_id,
        "paid_by_member_id": paid_by_member_id,
        "description": description,
        "total_amount": amount,
        "split_mode": split_mode,
    }
    if expense_id is not None:
        payload["id"] = expense_id
    if splits is not None:
        payload["splits"] = splits
    if involved_member_ids is not None:
        payload["involved_member_ids"] = involved_member_ids
    return client.post("/api/v1/expenses/", json=payload, headers=auth_headers(token))


def make_invite(client, token: str, target_member_id: str, target_member_name: str,
                invite_id: str | None = None) -> dict:
    payload = {"target_member_id": target_member_id, "target_member_name": target_member_name}
    if invite_id is not None:
        payload["id"] = invite_id
    resp = client.post("/api/v1/invites/", json=payload, headers=auth_headers(token))
    assert resp.status_code in (200, 201), f"make_invite failed: {resp.get_json()}"
    return resp.get_json()["data"]


def seed_shared_expense(client, owner_token: str, owner: dict, placeholder_id: str = "p-bob",
                        placeholder_name: str = "Bobby", amount: str = "30.00") -> dict:
    """
    The common pre-claim world: the owner has a friend placeholder, a group
    with it, and one equal-split expense they paid.

    Returns: {"group": ..., "expense": ...}
    """
    add_friend(client, owner_token, placeholder_id, placeholder_name)
    group = make_group(
        client,
        owner_token,
        members=[
            {"id": owner["member_id"], "name": owner["display_name"], "is_current_user": True},
            {"id": placeholder_id, "name": placeholder_name},
        ],
        group_id="g-trip",
    )
    resp = make_expense(
        client, owner_token, group["id"], owner["member_id"], amount, expense_id="e-dinner",
    )
    assert resp.status_code == 201, f"seed expense failed: {resp.get_json()}"
    return {"group": group, "expense": resp.get_json()["data"]}
