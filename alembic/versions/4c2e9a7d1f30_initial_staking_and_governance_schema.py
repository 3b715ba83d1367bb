"""Initial staking ledger and DAO governance schema

Revision ID: 4c2e9a7d1f30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4c2e9a7d1f30"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

AMOUNT = sa.Numeric(36, 8)


def _timestamps(*names: str) -> list[sa.Column]:
    return [
        sa.Column(
            name,
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.func.now(),
        )
        for name in names
    ]


def upgrade() -> None:
    """Create ledger, governance, settings and audit tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("reputation_score", sa.Integer(), nullable=True),
        *_timestamps("created_at", "updated_at"),
    )

    op.create_table(
        "staking_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("staked_amount", AMOUNT, nullable=False),
        sa.Column("rewards", AMOUNT, nullable=False),
        sa.Column("apy", sa.Numeric(8, 4), nullable=False),
        sa.Column("last_reward_time", sa.DateTime(timezone=True), nullable=False),
        *_timestamps("created_at", "updated_at"),
        sa.UniqueConstraint("user_id"),
        sa.CheckConstraint("staked_amount >= 0", name="ck_staking_accounts_staked_nonneg"),
        sa.CheckConstraint("rewards >= 0", name="ck_staking_accounts_rewards_nonneg"),
    )

    op.create_table(
        "staking_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "staking_id", sa.Integer(), sa.ForeignKey("staking_accounts.id"), nullable=False
        ),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("tx_hash", sa.String(100), nullable=True),
        *_timestamps("created_at"),
        sa.CheckConstraint("amount > 0", name="ck_staking_transactions_amount_pos"),
    )
    op.create_index(
        "ix_staking_transactions_user_time",
        "staking_transactions",
        ["user_id", "created_at"],
    )

    op.create_table(
        "dao_proposals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("proposal_type", sa.String(20), nullable=False),
        sa.Column("target_amount", AMOUNT, nullable=True),
        sa.Column("creator_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("for_votes", sa.BigInteger(), nullable=False),
        sa.Column("against_votes", sa.BigInteger(), nullable=False),
        sa.Column("voting_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("execution_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_result", postgresql.JSONB(), nullable=True),
        sa.Column("ipfs_hash", sa.String(100), nullable=True),
        *_timestamps("created_at"),
        sa.CheckConstraint("for_votes >= 0", name="ck_dao_proposals_for_nonneg"),
        sa.CheckConstraint("against_votes >= 0", name="ck_dao_proposals_against_nonneg"),
    )
    op.create_index(
        "ix_dao_proposals_status_created", "dao_proposals", ["status", "created_at"]
    )
    op.create_index("ix_dao_proposals_type", "dao_proposals", ["proposal_type"])

    op.create_table(
        "dao_votes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "proposal_id", sa.Integer(), sa.ForeignKey("dao_proposals.id"), nullable=False
        ),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vote", sa.String(10), nullable=False),
        sa.Column("voting_power", sa.BigInteger(), nullable=False),
        sa.Column("ipfs_hash", sa.String(100), nullable=True),
        *_timestamps("created_at"),
        sa.UniqueConstraint("proposal_id", "user_id", name="uq_dao_votes_proposal_user"),
        sa.CheckConstraint("voting_power > 0", name="ck_dao_votes_power_pos"),
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps("updated_at"),
    )
    op.create_index("ix_settings_category", "settings", ["category"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger(), nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        *_timestamps("timestamp"),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    op.drop_index("ix_admin_log_target", table_name="admin_log")
    op.drop_index("ix_admin_log_actor_time", table_name="admin_log")
    op.drop_table("admin_log")
    op.drop_index("ix_settings_category", table_name="settings")
    op.drop_table("settings")
    op.drop_table("dao_votes")
    op.drop_index("ix_dao_proposals_type", table_name="dao_proposals")
    op.drop_index("ix_dao_proposals_status_created", table_name="dao_proposals")
    op.drop_table("dao_proposals")
    op.drop_index("ix_staking_transactions_user_time", table_name="staking_transactions")
    op.drop_table("staking_transactions")
    op.drop_table("staking_accounts")
    op.drop_table("users")
