"""Create verification sessions, guild rules, state and history tables

Revision ID: a7c3e9d1f4b2
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a7c3e9d1f4b2"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def upgrade() -> None:
    """Create the four verification tables."""
    op.create_table(
        "verification_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("discord_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("wallet_address", sa.String(64), nullable=True),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("challenge_message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        _timestamp("created_at", nullable=False, server_default=sa.func.now()),
        _timestamp("updated_at", nullable=False, server_default=sa.func.now()),
        _timestamp("expires_at", nullable=False),
        _timestamp("verified_at", nullable=True),
    )
    op.create_index(
        "ix_verification_sessions_member", "verification_sessions", ["discord_id", "guild_id"],
    )
    op.create_index(
        "ix_verification_sessions_status_created", "verification_sessions", ["status", "created_at"],
    )

    op.create_table(
        "guild_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("collection_id", sa.String(64), nullable=False),
        sa.Column("rule_type", sa.String(16), nullable=False, server_default="quantity"),
        sa.Column("required_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_count", sa.Integer(), nullable=True),
        sa.Column("trait_type", sa.String(100), nullable=True),
        sa.Column("trait_value", sa.String(200), nullable=True),
        sa.Column("role_id", sa.BigInteger(), nullable=False),
        sa.Column("role_name", sa.String(100), nullable=True),
        _timestamp("created_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_guild_rules_guild_collection", "guild_rules", ["guild_id", "collection_id"],
    )

    op.create_table(
        "user_verification_states",
        sa.Column("discord_id", sa.BigInteger(), primary_key=True),
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("wallet_address", sa.String(64), nullable=True),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("last_checked_at", nullable=True),
        _timestamp("created_at", nullable=False, server_default=sa.func.now()),
        _timestamp("updated_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_user_verification_states_last_checked",
        "user_verification_states",
        ["last_checked_at"],
    )

    op.create_table(
        "verification_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("discord_id", sa.BigInteger(), nullable=False),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("wallet_address", sa.String(64), nullable=False),
        sa.Column("asset_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("trigger", sa.String(16), nullable=False, server_default="interactive"),
        _timestamp("checked_at", nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_verification_history_member_checked",
        "verification_history",
        ["discord_id", "guild_id", "checked_at"],
    )


def downgrade() -> None:
    """Drop the verification tables."""
    op.drop_index("ix_verification_history_member_checked", table_name="verification_history")
    op.drop_table("verification_history")
    op.drop_index(
        "ix_user_verification_states_last_checked", table_name="user_verification_states",
    )
    op.drop_table("user_verification_states")
    op.drop_index("ix_guild_rules_guild_collection", table_name="guild_rules")
    op.drop_table("guild_rules")
    op.drop_index(
        "ix_verification_sessions_status_created", table_name="verification_sessions",
    )
    op.drop_index("ix_verification_sessions_member", table_name="verification_sessions")
    op.drop_table("verification_sessions")
