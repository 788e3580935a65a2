"""Initial referral program schema

Revision ID: 001_referrals
Revises:
Create Date: 2026-10-19

Adds tables for:
- user_accounts: local mirror of identity-provider users
- referral_codes: one immutable code per user
- referral_clicks: hashed click log (90 day retention)
- referrals: one outcome per referee
- rewards / reward_claims: tier and monthly rewards, idempotent claims
- leaderboard_week: ranked weekly points
- monthly_prizes: one grand prize per month
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_referrals"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create referral program tables."""

    op.create_table(
        "user_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_accounts_email", "user_accounts", ["email"], unique=True)

    op.create_table(
        "referral_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("ix_referral_codes_code", "referral_codes", ["code"], unique=True)

    op.create_table(
        "referral_clicks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("ip_hash", sa.String(64), nullable=False),
        sa.Column("ua_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referral_clicks_code", "referral_clicks", ["code"], unique=False)
    op.create_index("ix_referral_clicks_ip_hash", "referral_clicks", ["ip_hash"], unique=False)
    op.create_index("ix_referral_clicks_ua_hash", "referral_clicks", ["ua_hash"], unique=False)
    op.create_index("ix_referral_clicks_created_at", "referral_clicks", ["created_at"], unique=False)

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("referrer_user_id", sa.Integer(), nullable=False),
        sa.Column("referee_user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(50), nullable=True),
        sa.Column("ip_hash", sa.String(64), nullable=True),
        sa.Column("ua_hash", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referrer_user_id"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["referee_user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("referee_user_id"),
    )
    op.create_index("ix_referrals_referrer_user_id", "referrals", ["referrer_user_id"], unique=False)
    op.create_index("ix_referrals_status", "referrals", ["status"], unique=False)
    op.create_index("ix_referrals_ip_hash", "referrals", ["ip_hash"], unique=False)
    op.create_index("ix_referrals_created_at", "referrals", ["created_at"], unique=False)
    op.create_index("ix_referrals_verified_at", "referrals", ["verified_at"], unique=False)

    op.create_table(
        "rewards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("award_key", sa.String(50), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "award_key", name="uq_rewards_user_award_key"),
    )
    op.create_index("ix_rewards_user_id", "rewards", ["user_id"], unique=False)
    op.create_index("ix_rewards_status", "rewards", ["status"], unique=False)

    op.create_table(
        "reward_claims",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reward_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["reward_id"], ["rewards.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reward_id", "idempotency_key", name="uq_reward_claims_reward_key"),
    )
    op.create_index("ix_reward_claims_reward_id", "reward_claims", ["reward_id"], unique=False)
    op.create_index("ix_reward_claims_user_id", "reward_claims", ["user_id"], unique=False)

    op.create_table(
        "leaderboard_week",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("week_id", sa.String(10), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("week_id", "user_id", name="uq_leaderboard_week_user"),
    )
    op.create_index("ix_leaderboard_week_week_id", "leaderboard_week", ["week_id"], unique=False)

    op.create_table(
        "monthly_prizes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("month_key", sa.String(7), nullable=False),
        sa.Column("winner_user_id", sa.Integer(), nullable=False),
        sa.Column("referrals_count", sa.Integer(), nullable=False),
        sa.Column("prize_type", sa.String(20), nullable=False),
        sa.Column("prize_amount_cents", sa.Integer(), nullable=False),
        sa.Column("reward_id", sa.Integer(), nullable=True),
        sa.Column("awarded_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["winner_user_id"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["reward_id"], ["rewards.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("month_key"),
    )


def downgrade() -> None:
    """Drop referral program tables."""
    op.drop_table("monthly_prizes")
    op.drop_table("leaderboard_week")
    op.drop_table("reward_claims")
    op.drop_table("rewards")
    op.drop_table("referrals")
    op.drop_table("referral_clicks")
    op.drop_table("referral_codes")
    op.drop_table("user_accounts")
