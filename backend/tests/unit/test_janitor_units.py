"""
Unit tests for the janitor's per-tick budget (janitor_service.select_orphans_for_run)
and its accounting when one orphan fails.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from backend.app.services import janitor_service


def test_budget_is_spent_in_kind_order():
    orphans = {
        "owner_email": ["o1@test.com", "o2@test.com"],
        "linked_email": ["l1@test.com", "l2@test.com", "l3@test.com"],
        "linked_account_id": ["uid-1"],
        "linked_member_id": ["m-1"],
    }

    selected = janitor_service.select_orphans_for_run(orphans, 5)

    assert selected == [
        ("linked_email", "l1@test.com"),
        ("linked_email", "l2@test.com"),
        ("linked_email", "l3@test.com"),
        ("linked_account_id", "uid-1"),
        ("linked_member_id", "m-1"),
    ]


def test_seven_orphans_with_budget_five_leaves_two():
    orphans = {"owner_email": [f"o{i}@test.com" for i in range(7)]}

    selected = janitor_service.select_orphans_for_run(orphans, 5)

    assert len(selected) == 5
    assert sum(len(v) for v in orphans.values()) - len(selected) == 2


def test_zero_budget_selects_nothing():
    assert janitor_service.select_orphans_for_run({"linked_email": ["x@test.com"]}, 0) == []


def _scan(**kinds):
    base = {
        "owner_email": set(),
        "linked_email": set(),
        "linked_account_id": set(),
        "linked_member_id": set(),
        "friend_page_size": 0,
        "group_page_size": 0,
        "friends_cursor_was_null": True,
    }
    base.update(kinds)
    return base


def test_one_failure_does_not_abort_the_tick():
    session = MagicMock()
    scan = _scan(owner_email={"a@test.com", "b@test.com", "c@test.com"})

    def clean(session, kind, value):
        if value == "b@test.com":
            raise RuntimeError("boom")
        return {"friends_deleted": 1}

    with patch.object(janitor_service, "_scan_pages", return_value=scan), \
            patch.dict(janitor_service._EXISTS, {"owner_email": lambda s, v: False}), \
            patch.object(janitor_service, "_clean", side_effect=clean), \
            patch.object(janitor_service, "_still_referenced", return_value=False):
        result = janitor_service.cleanup_orphans(session, page_size=10, max_orphans_per_run=5)

    assert result == {
        "orphans_found": 3,
        "orphans_cleaned": 2,
        "remaining_orphans": 0,
        "failures": 1,
    }
    assert session.rollback.called


def test_no_orphans_short_circuits():
    session = MagicMock()

    with patch.object(janitor_service, "_scan_pages", return_value=_scan()):
        result = janitor_service.cleanup_orphans(session)

    assert result == {"orphans_found": 0, "orphans_cleaned": 0, "remaining_orphans": 0, "failures": 0}


def test_rows_left_behind_are_a_failure_not_a_clean():
    session = MagicMock()
    scan = _scan(linked_email={"ghost@test.com"})

    with patch.object(janitor_service, "_scan_pages", return_value=scan), \
            patch.dict(janitor_service._EXISTS, {"linked_email": lambda s, v: False}), \
            patch.object(janitor_service, "_clean", return_value={"friends_deleted": 0}), \
            patch.object(janitor_service, "_still_referenced", return_value=True):
        result = janitor_service.cleanup_orphans(session)

    assert result == {"orphans_found": 1, "orphans_cleaned": 0, "remaining_orphans": 0, "failures": 1}


def test_account_that_reappears_before_cleanup_is_skipped():
    session = MagicMock()
    scan = _scan(owner_email={"back@test.com"})
    # Missing at scan time, present again by the in-transaction re-check.
    existence = iter([False, True])

    with patch.object(janitor_service, "_scan_pages", return_value=scan), \
            patch.dict(janitor_service._EXISTS, {"owner_email": lambda s, v: next(existence)}), \
            patch.object(janitor_service, "_clean") as clean:
        result = janitor_service.cleanup_orphans(session)

    clean.assert_not_called()
    assert result == {"orphans_found": 1, "orphans_cleaned": 1, "remaining_orphans": 0, "failures": 0}
    session.rollback.assert_called()
