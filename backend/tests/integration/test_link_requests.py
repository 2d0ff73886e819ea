"""
Integration tests for email-addressed link requests.
"""

from __future__ import annotations

from datetime import timedelta

from backend.app.extensions import db
from backend.app.models.link_request import LinkRequest
from backend.app.timeutil import utcnow

from .conftest import auth_headers, seed_shared_expense, store_account


def _send(client, token, recipient_email="bob@test.com", target="p-bob", request_id=None):
    payload = {"recipient_email": recipient_email, "target_member_id": target, "target_member_name": "Bobby"}
    if request_id is not None:
        payload["id"] = request_id
    return client.post("/api/v1/link-requests/", json=payload, headers=auth_headers(token))


def _world(client):
    alice_token, alice = store_account(client, "alice")
    seed_shared_expense(client, alice_token, alice)
    bob_token, bob = store_account(client, "bob")
    return alice_token, alice, bob_token, bob


def test_request_appears_in_both_lists(client):
    alice_token, _, bob_token, _ = _world(client)

    resp = _send(client, alice_token, recipient_email="Bob@Test.com", request_id="lr-1")

    assert resp.status_code == 201
    created = resp.get_json()["data"]
    assert created["status"] == "pending"
    assert created["recipient_email"] == "bob@test.com"
    assert created["requester_name"] == "Alice"

    incoming = client.get("/api/v1/link-requests/incoming", headers=auth_headers(bob_token)).get_json()["data"]
    outgoing = client.get("/api/v1/link-requests/outgoing", headers=auth_headers(alice_token)).get_json()["data"]
    assert [r["id"] for r in incoming] == ["lr-1"]
    assert [r["id"] for r in outgoing] == ["lr-1"]
    assert _send(client, alice_token, request_id="lr-1").status_code == 200


def test_accept_runs_the_claim_pipeline(client):
    alice_token, _, bob_token, bob = _world(client)
    _send(client, alice_token, request_id="lr-1")

    resp = client.post("/api/v1/link-requests/lr-1/accept", headers=auth_headers(bob_token))

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["link_request_id"] == "lr-1"
    assert data["canonical_member_id"] == bob["member_id"]
    assert data["alias_member_ids"] == ["p-bob"]
    assert data["expenses_updated"] == 1

    expenses = client.get("/api/v1/expenses/", headers=auth_headers(bob_token)).get_json()["data"]
    assert [e["id"] for e in expenses] == ["e-dinner"]

    again = client.post("/api/v1/link-requests/lr-1/accept", headers=auth_headers(bob_token))
    assert again.status_code == 409
    assert again.get_json()["error"]["code"] == "LINK_REQUEST_NOT_PENDING"


def test_only_recipient_may_accept(client):
    alice_token, _, _, _ = _world(client)
    carol_token, _ = store_account(client, "carol")
    _send(client, alice_token, request_id="lr-1")

    resp = client.post("/api/v1/link-requests/lr-1/accept", headers=auth_headers(carol_token))

    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"


def test_decline(client):
    alice_token, _, bob_token, _ = _world(client)
    _send(client, alice_token, request_id="lr-1")

    resp = client.post("/api/v1/link-requests/lr-1/decline", headers=auth_headers(bob_token))

    assert resp.status_code == 200
    assert resp.get_json()["data"]["status"] == "declined"
    assert resp.get_json()["data"]["rejected_at"] is not None

    accept = client.post("/api/v1/link-requests/lr-1/accept", headers=auth_headers(bob_token))
    assert accept.status_code == 409


def test_expired_request(client, app):
    alice_token, _, bob_token, _ = _world(client)
    _send(client, alice_token, request_id="lr-1")
    with app.app_context():
        db.session.get(LinkRequest, "lr-1").expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

    resp = client.post("/api/v1/link-requests/lr-1/accept", headers=auth_headers(bob_token))

    assert resp.status_code == 410
    assert resp.get_json()["error"]["code"] == "LINK_REQUEST_EXPIRED"


def test_request_to_self_is_rejected(client):
    alice_token, _, _, _ = _world(client)

    resp = _send(client, alice_token, recipient_email="alice@test.com")

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "SELF_CLAIM"


def test_cancel_by_requester_only(client):
    alice_token, _, bob_token, _ = _world(client)
    _send(client, alice_token, request_id="lr-1")

    forbidden = client.delete("/api/v1/link-requests/lr-1", headers=auth_headers(bob_token))
    cancelled = client.delete("/api/v1/link-requests/lr-1", headers=auth_headers(alice_token))
    missing = client.post("/api/v1/link-requests/lr-1/accept", headers=auth_headers(bob_token))

    assert forbidden.status_code == 403
    assert cancelled.get_json()["data"] == {"id": "lr-1", "cancelled": True}
    assert missing.status_code == 404
