"""Initial schema — all tables, constraints, and indexes.

Revision: 001_initial_schema

This migration creates the complete PayBack ledger schema.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

No foreign keys:
  Accounts can be deleted out-of-band (manual deletes, a crashed cascade).
  Rows that reference a missing account are found and removed by the orphan
  janitor, so references are plain indexed columns.

Enums (split_mode, link request status) are stored as VARCHAR(16); the
models declare them with native_enum=False so the same schema runs on
SQLite in tests.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── accounts ───────────────────────────────────────────────────────────
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("member_id", sa.String(64), nullable=True),
        sa.Column("alias_member_ids", sa.JSON(), nullable=False),
        sa.Column("linked_member_id", sa.String(64), nullable=True),
        sa.Column("profile_avatar_color", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_accounts"),
        sa.UniqueConstraint("email", name="uq_accounts_email"),
        sa.UniqueConstraint("member_id", name="uq_accounts_member_id"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_accounts_email_format"),
    )
    op.create_index("ix_accounts_linked_member_id", "accounts", ["linked_member_id"])

    # ── member_aliases ─────────────────────────────────────────────────────
    # alias_member_id UNIQUE: an alias has at most one outgoing edge.
    op.create_table(
        "member_aliases",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("alias_member_id", sa.String(64), nullable=False),
        sa.Column("canonical_member_id", sa.String(64), nullable=False),
        sa.Column("account_email", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_member_aliases"),
        sa.UniqueConstraint("alias_member_id", name="uq_member_aliases_alias"),
        sa.CheckConstraint(
            "alias_member_id <> canonical_member_id",
            name="ck_member_aliases_no_self_edge",
        ),
    )
    op.create_index("ix_member_aliases_canonical_member_id", "member_aliases", ["canonical_member_id"])
    op.create_index("ix_member_aliases_account_email", "member_aliases", ["account_email"])

    # ── account_friends ────────────────────────────────────────────────────
    op.create_table(
        "account_friends",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("account_email", sa.String(255), nullable=False),
        sa.Column("member_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("nickname", sa.String(255), nullable=True),
        sa.Column("original_name", sa.String(255), nullable=True),
        sa.Column("original_nickname", sa.String(255), nullable=True),
        sa.Column("profile_avatar_color", sa.String(32), nullable=True),
        sa.Column("has_linked_account", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("linked_account_id", sa.String(255), nullable=True),
        sa.Column("linked_account_email", sa.String(255), nullable=True),
        sa.Column("linked_member_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(32), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_account_friends"),
        sa.UniqueConstraint("account_email", "member_id", name="uq_account_friends_owner_member"),
    )
    op.create_index("ix_account_friends_account_email", "account_friends", ["account_email"])
    op.create_index("ix_account_friends_member_id", "account_friends", ["member_id"])
    op.create_index("ix_account_friends_linked_account_id", "account_friends", ["linked_account_id"])
    op.create_index("ix_account_friends_linked_account_email", "account_friends", ["linked_account_email"])
    op.create_index("ix_account_friends_linked_member_id", "account_friends", ["linked_member_id"])

    # ── groups ─────────────────────────────────────────────────────────────
    op.create_table(
        "groups",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("members", sa.JSON(), nullable=False),
        sa.Column("owner_email", sa.String(255), nullable=False),
        sa.Column("owner_account_id", sa.String(255), nullable=True),
        sa.Column("is_direct", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint("LENGTH(TRIM(name)) > 0", name="ck_groups_name_nonempty"),
    )
    op.create_index("ix_groups_owner_email", "groups", ["owner_email"])
    op.create_index("ix_groups_owner_account_id", "groups", ["owner_account_id"])

    # ── expenses ───────────────────────────────────────────────────────────
    op.create_table(
        "expenses",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("group_id", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("split_mode", sa.String(16), nullable=False),
        sa.Column("paid_by_member_id", sa.String(64), nullable=False),
        sa.Column("involved_member_ids", sa.JSON(), nullable=False),
        sa.Column("splits", sa.JSON(), nullable=False),
        sa.Column("participants", sa.JSON(), nullable=False),
        sa.Column("participant_emails", sa.JSON(), nullable=False),
        sa.Column("owner_email", sa.String(255), nullable=False),
        sa.Column("owner_account_id", sa.String(255), nullable=True),
        sa.Column("is_settled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("total_amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        sa.CheckConstraint(
            "split_mode IN ('equal', 'custom')",
            name="ck_expenses_split_mode",
        ),
    )
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    op.create_index("ix_expenses_owner_email", "expenses", ["owner_email"])
    op.create_index("ix_expenses_owner_account_id", "expenses", ["owner_account_id"])
    # Partial index: only active (non-deleted) expenses.
    op.create_index(
        "idx_expenses_active",
        "expenses",
        ["group_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    # ── user_expenses (fan-out) ────────────────────────────────────────────
    op.create_table(
        "user_expenses",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("expense_id", sa.String(64), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_user_expenses"),
        sa.UniqueConstraint("user_id", "expense_id", name="uq_user_expenses_pair"),
    )
    op.create_index("ix_user_expenses_user_id", "user_expenses", ["user_id"])
    op.create_index("ix_user_expenses_expense_id", "user_expenses", ["expense_id"])

    # ── invite_tokens ──────────────────────────────────────────────────────
    op.create_table(
        "invite_tokens",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("creator_id", sa.String(255), nullable=False),
        sa.Column("creator_email", sa.String(255), nullable=False),
        sa.Column("target_member_id", sa.String(64), nullable=False),
        sa.Column("target_member_name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_by", sa.String(255), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_invite_tokens"),
    )
    op.create_index("ix_invite_tokens_creator_id", "invite_tokens", ["creator_id"])
    op.create_index("ix_invite_tokens_creator_email", "invite_tokens", ["creator_email"])
    op.create_index("ix_invite_tokens_target_member_id", "invite_tokens", ["target_member_id"])
    op.create_index("ix_invite_tokens_claimed_by", "invite_tokens", ["claimed_by"])

    # ── link_requests ──────────────────────────────────────────────────────
    op.create_table(
        "link_requests",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("requester_id", sa.String(255), nullable=False),
        sa.Column("requester_email", sa.String(255), nullable=False),
        sa.Column("requester_name", sa.String(255), nullable=False),
        sa.Column("recipient_email", sa.String(255), nullable=False),
        sa.Column("target_member_id", sa.String(64), nullable=False),
        sa.Column("target_member_name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_link_requests"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined')",
            name="ck_link_requests_status",
        ),
    )
    op.create_index("ix_link_requests_requester_id", "link_requests", ["requester_id"])
    op.create_index("ix_link_requests_requester_email", "link_requests", ["requester_email"])
    op.create_index("ix_link_requests_recipient_email", "link_requests", ["recipient_email"])

    # ── janitor_state ──────────────────────────────────────────────────────
    op.create_table(
        "janitor_state",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("friends_cursor", sa.Integer(), nullable=True),
        sa.Column("groups_cursor", sa.String(64), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_janitor_state"),
        sa.UniqueConstraint("key", name="uq_janitor_state_key"),
    )


def downgrade() -> None:
    """Drop everything in reverse creation order."""
    op.drop_table("janitor_state")
    op.drop_table("link_requests")
    op.drop_table("invite_tokens")
    op.drop_table("user_expenses")
    op.drop_index("idx_expenses_active", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("groups")
    op.drop_table("account_friends")
    op.drop_table("member_aliases")
    op.drop_table("accounts")
