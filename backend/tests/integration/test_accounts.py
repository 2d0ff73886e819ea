"""
Integration tests for account creation and bearer-token authentication.

What this file proves:
  - POST /accounts/store creates on first call (201) and refreshes after (200)
  - The canonical member ID is assigned once and never changes
  - Identity comes from the token, not the body
  - Every auth failure is a 401 with its own code
  - A verified caller with no account gets ACCOUNT_NOT_FOUND, not 401
"""

from __future__ import annotations

from datetime import timedelta

from .conftest import auth_headers, make_token, store_account


def test_store_creates_then_refreshes(client):
    token = make_token("uid-alice", "Alice@Test.com", name="Alice")

    first = client.post("/api/v1/accounts/store", json={}, headers=auth_headers(token))
    assert first.status_code == 201
    account = first.get_json()["data"]
    assert account["id"] == "uid-alice"
    assert account["email"] == "alice@test.com"
    assert account["display_name"] == "Alice"
    assert account["member_id"]
    assert account["alias_member_ids"] == []

    second = client.post(
        "/api/v1/accounts/store",
        json={"display_name": "Alice Smith"},
        headers=auth_headers(token),
    )
    assert second.status_code == 200
    refreshed = second.get_json()["data"]
    assert refreshed["member_id"] == account["member_id"]
    assert refreshed["display_name"] == "Alice Smith"


def test_store_ignores_identity_in_body(client):
    token = make_token("uid-alice", "alice@test.com", name="Alice")

    resp = client.post(
        "/api/v1/accounts/store",
        json={"email": "mallory@test.com", "id": "uid-mallory"},
        headers=auth_headers(token),
    )

    assert resp.status_code == 201
    assert resp.get_json()["data"]["email"] == "alice@test.com"
    assert resp.get_json()["data"]["id"] == "uid-alice"


def test_display_name_defaults_to_email_local_part(client):
    token = make_token("uid-nameless", "nameless@test.com")

    resp = client.post("/api/v1/accounts/store", json={}, headers=auth_headers(token))

    assert resp.get_json()["data"]["display_name"] == "nameless"


def test_me_returns_account(client):
    token, account = store_account(client, "alice")

    resp = client.get("/api/v1/accounts/me", headers=auth_headers(token))

    assert resp.status_code == 200
    assert resp.get_json()["data"]["member_id"] == account["member_id"]


def test_me_before_store_is_account_not_found(client):
    token = make_token("uid-ghost", "ghost@test.com")

    resp = client.get("/api/v1/accounts/me", headers=auth_headers(token))

    assert resp.status_code == 404
    body = resp.get_json()
    assert body["error"]["code"] == "ACCOUNT_NOT_FOUND"
    assert body["error"]["kind"] == "NotFound"


def test_missing_token(client):
    resp = client.get("/api/v1/accounts/me")

    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"


def test_malformed_header(client):
    resp = client.get("/api/v1/accounts/me", headers={"Authorization": "Token abc"})

    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"


def test_wrong_signature(client):
    token = make_token("uid-alice", "alice@test.com", secret="some-other-secret")

    resp = client.get("/api/v1/accounts/me", headers=auth_headers(token))

    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"


def test_expired_token(client):
    token = make_token("uid-alice", "alice@test.com", expires_in=timedelta(hours=-1))

    resp = client.get("/api/v1/accounts/me", headers=auth_headers(token))

    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "TOKEN_EXPIRED"


def test_token_without_email_claim(client):
    token = make_token("uid-alice", "")

    resp = client.get("/api/v1/accounts/me", headers=auth_headers(token))

    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "TOKEN_INVALID"


def test_unknown_route_is_json(client):
    resp = client.get("/api/v1/nope")

    assert resp.status_code == 404
    assert "error" in resp.get_json()
