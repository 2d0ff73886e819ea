"""
Integration tests for the admin endpoints and the janitor CLI.
"""

from __future__ import annotations

from sqlalchemy import delete

from backend.app.extensions import db
from backend.app.models.account import Account
from backend.app.models.account_friend import AccountFriend
from backend.app.models.group import Group
from backend.app.models.user_expense import UserExpense

from .conftest import auth_headers, make_invite, seed_shared_expense, store_account


def _linked_world(client):
    alice_token, alice = store_account(client, "alice")
    seed_shared_expense(client, alice_token, alice)
    invite = make_invite(client, alice_token, "p-bob", "Bobby")
    bob_token, bob = store_account(client, "bob")
    client.post(f"/api/v1/invites/{invite['id']}/claim", headers=auth_headers(bob_token))
    return alice_token, alice, bob_token, bob


def _vanish(app, account_id):
    """Removes an account row without the cascade, as a manual DB delete would."""
    with app.app_context():
        db.session.delete(db.session.get(Account, account_id))
        db.session.commit()


def test_admin_endpoints_reject_non_admins(client):
    token, _ = store_account(client, "alice")

    for method, url in [
        ("post", "/api/v1/admin/janitor/run"),
        ("post", "/api/v1/admin/fanout/rebuild"),
        ("get", "/api/v1/admin/integrity"),
    ]:
        resp = getattr(client, method)(url, headers=auth_headers(token))
        assert resp.status_code == 403, url
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"


def test_janitor_cleans_orphans_of_a_vanished_account(client, app):
    alice_token, _, _, _ = _linked_world(client)
    admin_token, _ = store_account(client, "admin")
    _vanish(app, "uid-bob")

    resp = client.post("/api/v1/admin/janitor/run", json={}, headers=auth_headers(admin_token))

    assert resp.status_code == 200
    # Bob's email as a linked email and as a friend-row owner, his account
    # ID and his canonical member ID.
    assert resp.get_json()["data"] == {
        "orphans_found": 4,
        "orphans_cleaned": 4,
        "remaining_orphans": 0,
        "failures": 0,
    }
    friends = client.get("/api/v1/friends/", headers=auth_headers(alice_token)).get_json()
    assert friends["data"] == []

    second = client.post("/api/v1/admin/janitor/run", headers=auth_headers(admin_token))
    assert second.get_json()["data"]["orphans_found"] == 0


def test_janitor_respects_the_budget(client, app):
    _linked_world(client)
    admin_token, _ = store_account(client, "admin")
    _vanish(app, "uid-bob")

    resp = client.post(
        "/api/v1/admin/janitor/run",
        json={"max_orphans_per_run": 1},
        headers=auth_headers(admin_token),
    )

    data = resp.get_json()["data"]
    assert data["orphans_found"] == 4
    assert data["orphans_cleaned"] == 1
    assert data["remaining_orphans"] == 3


def test_janitor_cli_run_once(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["janitor", "run-once"])

    assert result.exit_code == 0
    assert "orphans_found=0" in result.output


def test_fanout_rebuild_restores_missing_rows(client, app):
    alice_token, alice = store_account(client, "alice")
    seed_shared_expense(client, alice_token, alice)
    admin_token, _ = store_account(client, "admin")
    with app.app_context():
        db.session.execute(delete(UserExpense))
        db.session.commit()
    assert client.get("/api/v1/expenses/", headers=auth_headers(alice_token)).get_json()["data"] == []

    resp = client.post("/api/v1/admin/fanout/rebuild", headers=auth_headers(admin_token))

    assert resp.get_json()["data"] == {
        "expenses_processed": 1,
        "rows_added": 1,
        "rows_removed": 0,
        "orphan_rows_removed": 0,
    }
    expenses = client.get("/api/v1/expenses/", headers=auth_headers(alice_token)).get_json()["data"]
    assert [e["id"] for e in expenses] == ["e-dinner"]


def test_integrity_report(client, app):
    _linked_world(client)
    admin_token, _ = store_account(client, "admin")

    clean = client.get("/api/v1/admin/integrity", headers=auth_headers(admin_token)).get_json()["data"]
    assert clean["issues"] == []
    assert clean["summary"] == "No integrity issues found."

    _vanish(app, "uid-bob")
    report = client.get("/api/v1/admin/integrity", headers=auth_headers(admin_token)).get_json()["data"]

    types = {issue["type"] for issue in report["issues"]}
    assert {"orphaned_friend_link", "orphaned_friend_email_link", "orphaned_expense_participant"} <= types


def test_fanout_cli_rebuild(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["fanout", "rebuild"])

    assert result.exit_code == 0
    assert "expenses_processed=0" in result.output


def test_janitor_converges_on_mixed_case_legacy_rows(client, app):
    store_account(client, "alice")
    admin_token, _ = store_account(client, "admin")
    with app.app_context():
        db.session.add_all([
            AccountFriend(
                account_email="alice@test.com", member_id="p-ghost", name="Ghost",
                has_linked_account=True, linked_account_email="Ghost@Test.com",
            ),
            AccountFriend(account_email=" Ghost@Test.com", member_id="p-alice", name="Alice"),
            Group(id="g-ghost", name="Ghost trip", members=[], owner_email="GHOST@test.com"),
        ])
        db.session.commit()

    first = client.post("/api/v1/admin/janitor/run", json={}, headers=auth_headers(admin_token))
    second = client.post("/api/v1/admin/janitor/run", json={}, headers=auth_headers(admin_token))

    assert first.get_json()["data"] == {
        "orphans_found": 2,
        "orphans_cleaned": 2,
        "remaining_orphans": 0,
        "failures": 0,
    }
    assert second.get_json()["data"]["orphans_found"] == 0
    with app.app_context():
        assert db.session.query(AccountFriend).count() == 0
        assert db.session.get(Group, "g-ghost") is None
