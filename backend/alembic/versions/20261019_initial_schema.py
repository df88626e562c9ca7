"""Initial schema: users, referral tree and commission payouts

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Adds tables for:
- users: KYC profile, wallet address, referral code
- referrals: one referrer -> referee edge per referee, with cached level/ancestors
- commission_payouts: one row per credited level of a distribution
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

referral_status = sa.Enum("INITIATED", "PENDING", "COMPLETED", name="referralstatus")


def upgrade() -> None:
    """Create user and referral tables."""

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("gender", sa.String(20), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("country", sa.String(100), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("agree_to_terms", sa.Boolean(), nullable=True),
        sa.Column("wallet_address", sa.String(128), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=True),
        sa.Column("total_commission", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)
    op.create_index("ix_users_wallet_address", "users", ["wallet_address"], unique=True)
    op.create_index("ix_users_referral_code", "users", ["referral_code"], unique=True)

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referrer_id", sa.Integer(), nullable=False),
        sa.Column("referee_id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("ancestors", sa.JSON(), nullable=False),
        sa.Column("commission", sa.Float(), nullable=False, server_default="0"),
        sa.Column("commission_earned", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", referral_status, nullable=False, server_default="INITIATED"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referrer_id"], ["users.id"], name="fk_referrals_referrer_id_users"),
        sa.ForeignKeyConstraint(["referee_id"], ["users.id"], name="fk_referrals_referee_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_referrals"),
        sa.UniqueConstraint("referee_id", name="uq_referrals_referee_id"),
    )
    op.create_index("ix_referrals_referrer_id", "referrals", ["referrer_id"], unique=False)
    op.create_index("ix_referrals_referral_code", "referrals", ["referral_code"], unique=False)
    op.create_index("ix_referrals_created_at", "referrals", ["created_at"], unique=False)

    op.create_table(
        "commission_payouts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referral_id", sa.Integer(), nullable=False),
        sa.Column("source_user_id", sa.Integer(), nullable=False),
        sa.Column("beneficiary_id", sa.Integer(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("rate", sa.Float(), nullable=False),
        sa.Column("base_amount", sa.Float(), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referral_id"], ["referrals.id"], name="fk_commission_payouts_referral_id_referrals"),
        sa.ForeignKeyConstraint(["source_user_id"], ["users.id"], name="fk_commission_payouts_source_user_id_users"),
        sa.ForeignKeyConstraint(["beneficiary_id"], ["users.id"], name="fk_commission_payouts_beneficiary_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_commission_payouts"),
    )
    op.create_index("ix_commission_payouts_referral_id", "commission_payouts", ["referral_id"], unique=False)
    op.create_index("ix_commission_payouts_source_user_id", "commission_payouts", ["source_user_id"], unique=False)
    op.create_index("ix_commission_payouts_beneficiary_id", "commission_payouts", ["beneficiary_id"], unique=False)


def downgrade() -> None:
    """Drop user and referral tables."""
    op.drop_index("ix_commission_payouts_beneficiary_id", table_name="commission_payouts")
    op.drop_index("ix_commission_payouts_source_user_id", table_name="commission_payouts")
    op.drop_index("ix_commission_payouts_referral_id", table_name="commission_payouts")
    op.drop_table("commission_payouts")

    op.drop_index("ix_referrals_created_at", table_name="referrals")
    op.drop_index("ix_referrals_referral_code", table_name="referrals")
    op.drop_index("ix_referrals_referrer_id", table_name="referrals")
    op.drop_table("referrals")

    op.drop_index("ix_users_referral_code", table_name="users")
    op.drop_index("ix_users_wallet_address", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    referral_status.drop(op.get_bind(), checkfirst=True)
