"""
Integration tests for deleting, leaving and clearing groups, and for
clearing the caller's expenses.

What this file proves:
  - Deleting a group takes its expenses and their visibility with it
  - Only the owner deletes; bulk delete skips what the caller does not own
  - Leaving removes every member ID equivalent to the caller, including a
    placeholder the caller claimed
  - A group left empty is deleted with its expenses
  - Clearing deletes owned groups and leaves shared ones by equivalence
"""

from __future__ import annotations

from .conftest import auth_headers, make_expense, make_group, make_invite, seed_shared_expense, store_account


def _claimed_world(client):
    alice_token, alice = store_account(client, "alice")
    seed_shared_expense(client, alice_token, alice)
    invite = make_invite(client, alice_token, "p-bob", "Bobby")
    bob_token, bob = store_account(client, "bob")
    client.post(f"/api/v1/invites/{invite['id']}/claim", headers=auth_headers(bob_token))
    return alice_token, alice, bob_token, bob


# ── Delete ─────────────────────────────────────────────────────────────────

def test_delete_group_removes_expenses(client):
    alice_token, _, bob_token, _ = _claimed_world(client)

    resp = client.delete("/api/v1/groups/g-trip", headers=auth_headers(alice_token))

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"id": "g-trip", "deleted": True, "expenses_deleted": 1}
    assert client.get("/api/v1/groups/g-trip", headers=auth_headers(alice_token)).status_code == 404
    assert client.get("/api/v1/expenses/", headers=auth_headers(bob_token)).get_json()["data"] == []

    again = client.delete("/api/v1/groups/g-trip", headers=auth_headers(alice_token))
    assert again.get_json()["data"]["deleted"] is False


def test_member_cannot_delete_group(client):
    _, _, bob_token, _ = _claimed_world(client)

    resp = client.delete("/api/v1/groups/g-trip", headers=auth_headers(bob_token))

    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"


def test_bulk_delete_skips_groups_owned_by_others(client):
    alice_token, alice = store_account(client, "alice")
    bob_token, bob = store_account(client, "bob")
    make_group(client, alice_token, [{"id": alice["member_id"], "name": "Alice"}], group_id="g-a1")
    make_group(client, alice_token, [{"id": alice["member_id"], "name": "Alice"}], group_id="g-a2")
    make_group(client, bob_token, [{"id": bob["member_id"], "name": "Bob"}], group_id="g-b1")

    resp = client.post(
        "/api/v1/groups/delete",
        json={"ids": ["g-a1", "g-b1", "g-missing", "g-a2"]},
        headers=auth_headers(alice_token),
    )

    assert resp.get_json()["data"] == {
        "deleted_ids": ["g-a1", "g-a2"],
        "skipped_ids": ["g-b1", "g-missing"],
        "expenses_deleted": 0,
    }
    assert client.get("/api/v1/groups/g-b1", headers=auth_headers(bob_token)).status_code == 200


def test_bulk_delete_requires_ids(client):
    token, _ = store_account(client, "alice")

    resp = client.post("/api/v1/groups/delete", json={"ids": []}, headers=auth_headers(token))

    assert resp.status_code == 400
    assert resp.get_json()["error"]["field"] == "ids"


# ── Leave ──────────────────────────────────────────────────────────────────

def test_leave_removes_every_equivalent_member_id(client):
    alice_token, alice, bob_token, bob = _claimed_world(client)
    # The snapshot lists Bob twice: the claimed placeholder and his canonical ID.
    make_group(
        client,
        alice_token,
        members=[
            {"id": alice["member_id"], "name": "Alice"},
            {"id": "p-bob", "name": "Bob"},
            {"id": bob["member_id"], "name": "Bob"},
        ],
        group_id="g-trip",
    )

    resp = client.post("/api/v1/groups/g-trip/leave", headers=auth_headers(bob_token))

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {
        "id": "g-trip",
        "group_deleted": False,
        "remaining_members": 1,
        "expenses_deleted": 0,
    }
    group = client.get("/api/v1/groups/g-trip", headers=auth_headers(alice_token)).get_json()["data"]
    assert [m["id"] for m in group["members"]] == [alice["member_id"]]
    assert client.get("/api/v1/groups/g-trip", headers=auth_headers(bob_token)).status_code == 403


def test_non_member_cannot_leave(client):
    alice_token, alice = store_account(client, "alice")
    carol_token, _ = store_account(client, "carol")
    make_group(client, alice_token, [{"id": alice["member_id"], "name": "Alice"}], group_id="g-1")

    resp = client.post("/api/v1/groups/g-1/leave", headers=auth_headers(carol_token))
    missing = client.post("/api/v1/groups/nope/leave", headers=auth_headers(carol_token))

    assert resp.status_code == 403
    assert missing.status_code == 404


def test_last_member_leaving_deletes_group_and_expenses(client):
    token, alice = store_account(client, "alice")
    make_group(client, token, [{"id": alice["member_id"], "name": "Alice"}], group_id="g-solo")
    make_expense(client, token, "g-solo", alice["member_id"], "5.00", expense_id="e-solo")

    resp = client.post("/api/v1/groups/g-solo/leave", headers=auth_headers(token))

    assert resp.get_json()["data"] == {
        "id": "g-solo",
        "group_deleted": True,
        "remaining_members": 0,
        "expenses_deleted": 1,
    }
    assert client.get("/api/v1/expenses/e-solo", headers=auth_headers(token)).status_code == 404


# ── Clear ──────────────────────────────────────────────────────────────────

def test_clear_deletes_owned_and_leaves_shared(client):
    alice_token, alice = store_account(client, "alice")
    bob_token, bob = store_account(client, "bob")
    make_group(client, alice_token, [{"id": alice["member_id"], "name": "Alice"}], group_id="g-mine")
    make_group(
        client,
        bob_token,
        members=[{"id": bob["member_id"], "name": "Bob"}, {"id": alice["member_id"], "name": "Alice"}],
        group_id="g-bobs",
    )
    make_group(client, bob_token, [{"id": alice["member_id"], "name": "Alice"}], group_id="g-only-alice")

    resp = client.delete("/api/v1/groups/", headers=auth_headers(alice_token))

    assert resp.get_json()["data"] == {
        "owned_groups_deleted": 1,
        "shared_groups_left": 1,
        "empty_shared_groups_deleted": 1,
        "expenses_deleted": 0,
    }
    assert client.get("/api/v1/groups/", headers=auth_headers(alice_token)).get_json()["data"] == []
    bobs = client.get("/api/v1/groups/g-bobs", headers=auth_headers(bob_token)).get_json()["data"]
    assert [m["id"] for m in bobs["members"]] == [bob["member_id"]]


def test_clear_expenses(client):
    alice_token, _, bob_token, _ = _claimed_world(client)

    bob_clear = client.delete("/api/v1/expenses/", headers=auth_headers(bob_token))
    assert bob_clear.get_json()["data"] == {"expenses_deleted": 0, "fanout_rows_deleted": 1}
    assert [e["id"] for e in client.get("/api/v1/expenses/", headers=auth_headers(alice_token)).get_json()["data"]] == ["e-dinner"]

    alice_clear = client.delete("/api/v1/expenses/", headers=auth_headers(alice_token))
    assert alice_clear.get_json()["data"] == {"expenses_deleted": 1, "fanout_rows_deleted": 1}
    assert client.get("/api/v1/expenses/e-dinner", headers=auth_headers(alice_token)).status_code == 404
