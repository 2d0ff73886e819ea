"""
services/integrity_service.py — Read-only data integrity report for admins.

Checks:
  orphaned_friend_link          friend row linked to an account ID that does not exist
  orphaned_friend_email_link    friend row linked to an email with no account
  alias_cycle                   resolving an alias edge revisits an ID
  alias_from_account_canonical  an account's canonical ID has an outgoing edge
  member_id_fragmentation       one owner has several member IDs under one name
  orphaned_expense_participant  expense participant linked to a missing account

Scans whole tables; meant for occasional admin use, not request paths.
Never writes.
"""

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models.account import Account
from backend.app.models.account_friend import AccountFriend
from backend.app.models.expense import Expense
from backend.app.models.member_alias import MemberAlias
from backend.app.services.alias_service import MAX_ALIAS_DEPTH
from backend.app.services.identity import normalize_email, normalize_member_id


def _issue(issue_type: str, severity: str, description: str, **details) -> dict:
    return {"type": issue_type, "severity": severity, "description": description, "details": details}


def _find_alias_cycles(edges: dict[str, str]) -> list[dict]:
    issues = []
    reported: set[str] = set()
    for start in sorted(edges):
        path = [start]
        seen = {start}
        current = edges.get(start)
        while current is not None and len(path) <= MAX_ALIAS_DEPTH:
            if current in seen:
                cycle = path[path.index(current):]
                key = min(cycle)
                if key not in reported:
                    reported.add(key)
                    issues.append(_issue(
                        "alias_cycle",
                        "error",
                        "Alias edges form a cycle.",
                        member_ids=cycle,
                    ))
                break
            path.append(current)
            seen.add(current)
            current = edges.get(current)
    return issues


def check_data_integrity(session: Session) -> dict:
    """Returns: {"issues": [...], "summary": str}"""
    issues: list[dict] = []

    accounts = session.execute(select(Account)).scalars().all()
    account_ids = {a.id for a in accounts}
    account_emails = {normalize_email(a.email) for a in accounts}
    canonical_ids = {normalize_member_id(a.member_id): a for a in accounts if a.member_id}

    # ── Friend links ───────────────────────────────────────────────────────
    friends = session.execute(select(AccountFriend).order_by(AccountFriend.id)).scalars().all()
    for friend in friends:
        if not friend.has_linked_account:
            continue
        if friend.linked_account_id and friend.linked_account_id not in account_ids:
            issues.append(_issue(
                "orphaned_friend_link",
                "error",
                "Friend row is linked to an account ID that does not exist.",
                friend_id=friend.id,
                account_email=friend.account_email,
                member_id=friend.member_id,
                linked_account_id=friend.linked_account_id,
            ))
        if friend.linked_account_email and normalize_email(friend.linked_account_email) not in account_emails:
            issues.append(_issue(
                "orphaned_friend_email_link",
                "error",
                "Friend row is linked to an email with no account.",
                friend_id=friend.id,
                account_email=friend.account_email,
                member_id=friend.member_id,
                linked_account_email=friend.linked_account_email,
            ))

    # ── Alias graph ────────────────────────────────────────────────────────
    edges = {
        normalize_member_id(e.alias_member_id): normalize_member_id(e.canonical_member_id)
        for e in session.execute(select(MemberAlias)).scalars().all()
    }
    issues.extend(_find_alias_cycles(edges))

    for alias_id, canonical_id in sorted(edges.items()):
        owner = canonical_ids.get(alias_id)
        if owner is not None:
            issues.append(_issue(
                "alias_from_account_canonical",
                "error",
                "An account's canonical member ID is recorded as an alias.",
                account_id=owner.id,
                member_id=alias_id,
                canonical_member_id=canonical_id,
            ))

    # ── Member-ID fragmentation ────────────────────────────────────────────
    by_owner: dict[str, dict[str, set[str]]] = defaultdict(lambda: defaultdict(set))
    for friend in friends:
        name = (friend.name or "").strip().lower()
        if name:
            by_owner[normalize_email(friend.account_email)][name].add(normalize_member_id(friend.member_id))
    for owner_email in sorted(by_owner):
        for name, member_ids in sorted(by_owner[owner_email].items()):
            if len(member_ids) > 1:
                issues.append(_issue(
                    "member_id_fragmentation",
                    "warning",
                    "Several member IDs share one friend name.",
                    account_email=owner_email,
                    friend_name=name,
                    member_ids=sorted(member_ids),
                ))

    # ── Expense participants ───────────────────────────────────────────────
    expenses = session.execute(select(Expense).order_by(Expense.id)).scalars().all()
    for expense in expenses:
        for participant in expense.participants or []:
            linked_id = participant.get("linked_account_id")
            if linked_id and linked_id not in account_ids:
                issues.append(_issue(
                    "orphaned_expense_participant",
                    "warning",
                    "Expense participant is linked to an account that does not exist.",
                    expense_id=expense.id,
                    member_id=participant.get("member_id"),
                    linked_account_id=linked_id,
                ))

    errors = sum(1 for i in issues if i["severity"] == "error")
    warnings = len(issues) - errors
    summary = (
        "No integrity issues found."
        if not issues
        else f"Found {len(issues)} issue(s): {errors} error(s), {warnings} warning(s)."
    )
    return {"issues": issues, "summary": summary}
