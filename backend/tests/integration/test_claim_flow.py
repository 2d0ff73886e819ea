"""
Integration tests for the invite claim pipeline, end to end.

The world: Alice tracked Bob as the placeholder "p-bob" (named "Bobby"),
put him in the "Trip" group and paid a 30.00 dinner split equally. Bob then
signs up and claims Alice's invite.

What this file proves:
  - The anonymous pre-claim check previews Bob's expenses and balance
  - After the claim, Bob sees the group and the expense without any member
    ID in the snapshot being rewritten
  - Alice's friend list shows one linked row for Bob; Bob gets Alice back
  - A group co-member who is not the creator gets their own row for the
    placeholder linked too
  - Every precondition failure is a named error and leaves the token claimable
  - Re-claiming is idempotent
"""

from __future__ import annotations

from datetime import timedelta

from backend.app.extensions import db
from backend.app.models.invite_token import InviteToken
from backend.app.timeutil import utcnow

from .conftest import add_friend, auth_headers, make_group, make_invite, seed_shared_expense, store_account


def _world(client):
    alice_token, alice = store_account(client, "alice")
    seeded = seed_shared_expense(client, alice_token, alice)
    invite = make_invite(client, alice_token, "p-bob", "Bobby")
    return alice_token, alice, seeded, invite


def _claim(client, token: str, invite_id: str):
    return client.post(f"/api/v1/invites/{invite_id}/claim", headers=auth_headers(token))


# ── Pre-claim ──────────────────────────────────────────────────────────────

def test_validate_previews_expenses(client):
    _, alice, _, invite = _world(client)

    resp = client.get(f"/api/v1/invites/{invite['id']}/validate")

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["is_valid"] is True
    assert data["error"] is None
    assert data["token"]["creator_name"] == alice["display_name"]
    assert data["expense_preview"] == {
        "expense_count": 1,
        "group_names": ["Trip"],
        "total_balance": "-15.00",
    }


def test_validate_unknown_token_is_not_an_error(client):
    resp = client.get("/api/v1/invites/does-not-exist/validate")

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {
        "is_valid": False,
        "error": "not_found",
        "token": None,
        "expense_preview": None,
    }


def test_get_invite_is_anonymous(client):
    _, _, _, invite = _world(client)

    resp = client.get(f"/api/v1/invites/{invite['id']}")

    assert resp.status_code == 200
    assert resp.get_json()["data"]["target_member_name"] == "Bobby"


def test_create_invite_is_idempotent_on_client_id(client):
    alice_token, _, _, _ = _world(client)

    first = client.post(
        "/api/v1/invites/",
        json={"id": "inv-1", "target_member_id": "p-bob", "target_member_name": "Bobby"},
        headers=auth_headers(alice_token),
    )
    again = client.post(
        "/api/v1/invites/",
        json={"id": "inv-1", "target_member_id": "p-bob", "target_member_name": "Bobby"},
        headers=auth_headers(alice_token),
    )

    assert first.status_code == 201
    assert again.status_code == 200
    assert again.get_json()["data"]["id"] == "inv-1"


# ── Claim ──────────────────────────────────────────────────────────────────

def test_claim_links_bob_everywhere(client):
    alice_token, alice, seeded, invite = _world(client)
    bob_token, bob = store_account(client, "bob")

    resp = _claim(client, bob_token, invite["id"])

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["canonical_member_id"] == bob["member_id"]
    assert data["linked_account_id"] == "uid-bob"
    assert data["alias_member_ids"] == ["p-bob"]
    assert data["friends_linked"] == 1
    assert data["groups_renamed"] == 1
    assert data["expenses_updated"] == 1
    assert data["invite_token_id"] == invite["id"]

    # Bob reads the group: the snapshot keeps "p-bob", with his real name.
    group = client.get("/api/v1/groups/g-trip", headers=auth_headers(bob_token))
    assert group.status_code == 200
    members = {m["id"]: m["name"] for m in group.get_json()["data"]["members"]}
    assert members == {alice["member_id"]: alice["display_name"], "p-bob": "Bob"}

    # Bob sees the expense through the fan-out table.
    expenses = client.get("/api/v1/expenses/", headers=auth_headers(bob_token)).get_json()["data"]
    assert [e["id"] for e in expenses] == ["e-dinner"]
    assert "bob@test.com" in expenses[0]["participant_emails"]
    bob_entry = next(p for p in expenses[0]["participants"] if p["member_id"] == "p-bob")
    assert bob_entry["linked_account_id"] == "uid-bob"

    # Alice sees one linked row for Bob.
    friends = client.get("/api/v1/friends/", headers=auth_headers(alice_token)).get_json()
    assert friends["warnings"] == []
    assert len(friends["data"]) == 1
    row = friends["data"][0]
    assert row["has_linked_account"] is True
    assert row["linked_account_email"] == "bob@test.com"
    assert row["linked_member_id"] == bob["member_id"]
    assert row["name"] == "Bob"
    assert row["original_name"] == "Bobby"
    assert set(row["alias_member_ids"]) == {"p-bob", bob["member_id"]}

    # Bob sees Alice back.
    bob_friends = client.get("/api/v1/friends/", headers=auth_headers(bob_token)).get_json()["data"]
    assert [(f["member_id"], f["has_linked_account"]) for f in bob_friends] == [(alice["member_id"], True)]


def test_claim_links_co_members_friend_row(client):
    alice_token, alice = store_account(client, "alice")
    carol_token, carol = store_account(client, "carol")
    make_group(
        client,
        alice_token,
        members=[
            {"id": alice["member_id"], "name": "Alice"},
            {"id": carol["member_id"], "name": "Carol"},
            {"id": "p-bob", "name": "Bobby"},
        ],
        group_id="g-party",
    )
    add_friend(client, carol_token, "p-bob", "Bobby")
    invite = make_invite(client, alice_token, "p-bob", "Bobby")
    bob_token, bob = store_account(client, "bob")

    resp = _claim(client, bob_token, invite["id"])

    assert resp.status_code == 200
    assert resp.get_json()["data"]["friends_linked"] == 1
    carol_friends = client.get("/api/v1/friends/", headers=auth_headers(carol_token)).get_json()["data"]
    assert len(carol_friends) == 1
    row = carol_friends[0]
    assert row["member_id"] == "p-bob"
    assert row["has_linked_account"] is True
    assert row["linked_account_email"] == "bob@test.com"
    assert row["linked_member_id"] == bob["member_id"]
    assert row["name"] == "Bob"


def test_claimed_token_no_longer_validates(client):
    _, _, _, invite = _world(client)
    bob_token, _ = store_account(client, "bob")
    _claim(client, bob_token, invite["id"])

    data = client.get(f"/api/v1/invites/{invite['id']}/validate").get_json()["data"]

    assert data["is_valid"] is False
    assert data["error"] == "already_claimed"


def test_reclaim_by_same_account_is_idempotent(client):
    _, _, _, invite = _world(client)
    bob_token, _ = store_account(client, "bob")
    _claim(client, bob_token, invite["id"])

    again = _claim(client, bob_token, invite["id"])

    assert again.status_code == 200
    data = again.get_json()["data"]
    assert data["alias_member_ids"] == ["p-bob"]
    assert data["groups_renamed"] == 0
    assert data["expenses_updated"] == 0


def test_claimed_invites_leave_the_creators_list(client):
    alice_token, _, _, invite = _world(client)
    listed = client.get("/api/v1/invites/", headers=auth_headers(alice_token)).get_json()["data"]
    assert [t["id"] for t in listed] == [invite["id"]]

    bob_token, _ = store_account(client, "bob")
    _claim(client, bob_token, invite["id"])

    listed = client.get("/api/v1/invites/", headers=auth_headers(alice_token)).get_json()["data"]
    assert listed == []


# ── Failures ───────────────────────────────────────────────────────────────

def test_second_claimer_gets_already_claimed(client):
    _, _, _, invite = _world(client)
    bob_token, _ = store_account(client, "bob")
    carol_token, _ = store_account(client, "carol")
    _claim(client, bob_token, invite["id"])

    resp = _claim(client, carol_token, invite["id"])

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "ALREADY_CLAIMED"
    assert resp.get_json()["error"]["kind"] == "AlreadyClaimed"


def test_new_invite_for_linked_placeholder_is_already_linked(client):
    alice_token, _, _, invite = _world(client)
    bob_token, _ = store_account(client, "bob")
    carol_token, _ = store_account(client, "carol")
    _claim(client, bob_token, invite["id"])
    second = make_invite(client, alice_token, "p-bob", "Bobby")

    resp = _claim(client, carol_token, second["id"])

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "ALREADY_LINKED"
    validate = client.get(f"/api/v1/invites/{second['id']}/validate").get_json()["data"]
    assert validate["error"] == "already_linked"


def test_self_claim_is_rejected_and_token_stays_claimable(client):
    alice_token, _, _, invite = _world(client)

    resp = _claim(client, alice_token, invite["id"])

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "SELF_CLAIM"
    assert client.get(f"/api/v1/invites/{invite['id']}/validate").get_json()["data"]["is_valid"] is True


def test_expired_invite(client, app):
    _, _, _, invite = _world(client)
    bob_token, _ = store_account(client, "bob")
    with app.app_context():
        token = db.session.get(InviteToken, invite["id"])
        token.expires_at = utcnow() - timedelta(days=1)
        db.session.commit()

    resp = _claim(client, bob_token, invite["id"])

    assert resp.status_code == 410
    assert resp.get_json()["error"]["code"] == "INVITE_EXPIRED"
    assert client.get(f"/api/v1/invites/{invite['id']}/validate").get_json()["data"]["error"] == "expired"


def test_unknown_invite(client):
    bob_token, _ = store_account(client, "bob")

    resp = _claim(client, bob_token, "no-such-invite")

    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "INVITE_NOT_FOUND"


def test_only_creator_can_revoke(client):
    alice_token, _, _, invite = _world(client)
    bob_token, _ = store_account(client, "bob")

    forbidden = client.delete(f"/api/v1/invites/{invite['id']}", headers=auth_headers(bob_token))
    revoked = client.delete(f"/api/v1/invites/{invite['id']}", headers=auth_headers(alice_token))

    assert forbidden.status_code == 403
    assert revoked.status_code == 200
    assert client.get(f"/api/v1/invites/{invite['id']}").status_code == 404
