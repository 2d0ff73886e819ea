"""
Integration tests for alias resolution and the merge endpoints.
"""

from __future__ import annotations

from .conftest import add_friend, auth_headers, store_account


def _merge(client, token, source_id, target_id, **extra):
    return client.post(
        "/api/v1/aliases/merge",
        json={"source_id": source_id, "target_id": target_id, **extra},
        headers=auth_headers(token),
    )


def test_merge_then_resolve_transitively(client):
    token, _ = store_account(client, "alice")

    assert _merge(client, token, "m-b", "m-c").status_code == 200
    resp = _merge(client, token, "m-a", "m-b")

    # m-a is pointed at m-b's canonical, not at m-b itself.
    assert resp.get_json()["data"] == {
        "canonical_member_id": "m-c",
        "alias_member_id": "m-a",
        "already_existed": False,
    }
    resolved = client.get("/api/v1/aliases/resolve/m-a", headers=auth_headers(token)).get_json()["data"]
    assert resolved == {"member_id": "m-a", "canonical_member_id": "m-c"}

    aliases = client.get("/api/v1/aliases/m-c/aliases", headers=auth_headers(token)).get_json()["data"]
    assert aliases["alias_member_ids"] == ["m-a", "m-b"]

    equivalent = client.get("/api/v1/aliases/equivalent/m-a", headers=auth_headers(token)).get_json()["data"]
    assert equivalent["equivalent_member_ids"] == ["m-a", "m-b", "m-c"]


def test_unknown_id_resolves_to_itself(client):
    token, _ = store_account(client, "alice")

    resp = client.get("/api/v1/aliases/resolve/nobody", headers=auth_headers(token))

    assert resp.get_json()["data"]["canonical_member_id"] == "nobody"


def test_merge_is_idempotent(client):
    token, _ = store_account(client, "alice")
    _merge(client, token, "m-a", "m-b")

    again = _merge(client, token, "m-a", "m-b", account_email="ignored@test.com")

    assert again.status_code == 200
    assert again.get_json()["data"]["already_existed"] is True
    aliases = client.get("/api/v1/aliases/m-b/aliases", headers=auth_headers(token)).get_json()["data"]
    assert aliases["alias_member_ids"] == ["m-a"]


def test_self_merge_is_a_noop(client):
    token, _ = store_account(client, "alice")

    resp = _merge(client, token, "m-a", "m-a")

    assert resp.status_code == 200
    assert resp.get_json()["data"]["already_existed"] is True


def test_merge_cycle_is_rejected(client):
    token, _ = store_account(client, "alice")
    _merge(client, token, "m-a", "m-b")

    resp = _merge(client, token, "m-b", "m-a")

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "ALIAS_CYCLE"


def test_repointing_an_alias_is_a_conflict(client):
    token, _ = store_account(client, "alice")
    _merge(client, token, "m-a", "m-b")

    resp = _merge(client, token, "m-a", "m-z")

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "ALIAS_CONFLICT"


def test_account_canonical_cannot_become_an_alias(client):
    token, alice = store_account(client, "alice")

    resp = _merge(client, token, alice["member_id"], "m-z")

    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "ALREADY_LINKED"


def test_blank_member_id_is_rejected_by_schema(client):
    token, _ = store_account(client, "alice")

    resp = _merge(client, token, "   ", "m-z")

    assert resp.status_code == 400
    assert resp.get_json()["error"]["field"] == "source_id"


def test_merge_unlinked_friends(client):
    token, _ = store_account(client, "alice")
    add_friend(client, token, "p-bob", "Bob")
    add_friend(client, token, "p-bobby", "Bobby")

    resp = client.post(
        "/api/v1/aliases/merge-unlinked-friends",
        json={"friend_id_1": "p-bob", "friend_id_2": "p-bobby"},
        headers=auth_headers(token),
    )

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {
        "canonical_member_id": "p-bob",
        "alias_member_id": "p-bobby",
        "already_merged": False,
    }


def test_merge_unlinked_friends_requires_own_rows(client):
    token, _ = store_account(client, "alice")
    add_friend(client, token, "p-bob", "Bob")

    resp = client.post(
        "/api/v1/aliases/merge-unlinked-friends",
        json={"friend_id_1": "p-bob", "friend_id_2": "p-stranger"},
        headers=auth_headers(token),
    )

    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "FRIEND_NOT_FOUND"
