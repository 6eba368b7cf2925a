"""Initial rewards schema

Revision ID: 001_rewards
Revises:
Create Date: 2026-10-16

Adds tables for:
- accounts: identity, progression, referral linkage and counters
- points_transactions: append-only points ledger
- referral_invitations: email invitations (pending/activated)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_rewards"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create rewards tables."""

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("wallet_address", sa.String(128), nullable=False),
        sa.Column("public_key", sa.String(128), nullable=True),
        sa.Column("network", sa.String(20), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("experience", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("referral_code", sa.String(8), nullable=False),
        sa.Column("referred_by", sa.String(128), nullable=True),
        sa.Column("referred_at", sa.DateTime(), nullable=True),
        sa.Column("referrals_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_referral_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("total_points >= 0", name="ck_accounts_total_points_non_negative"),
        # referred_by and referred_at are set together
        sa.CheckConstraint(
            "(referred_by IS NULL) = (referred_at IS NULL)",
            name="ck_accounts_referral_linkage",
        ),
    )
    op.create_index("ix_accounts_wallet_address", "accounts", ["wallet_address"], unique=True)
    op.create_index("ix_accounts_referral_code", "accounts", ["referral_code"], unique=True)
    op.create_index("ix_accounts_referred_by", "accounts", ["referred_by"], unique=False)

    op.create_table(
        "points_transactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column(
            "type",
            sa.Enum("earn", "spend", "bonus", "penalty", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("experience", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reason", sa.String(64), nullable=False),
        sa.Column("demo_id", sa.String(64), nullable=True),
        sa.Column("source_key", sa.String(128), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reason", "source_key", name="uq_points_transactions_reason_source"),
        sa.CheckConstraint("amount > 0", name="ck_points_transactions_amount_positive"),
    )
    op.create_index("ix_points_transactions_user_id", "points_transactions", ["user_id"], unique=False)
    op.create_index("ix_points_transactions_reason", "points_transactions", ["reason"], unique=False)
    op.create_index("ix_points_transactions_timestamp", "points_transactions", ["timestamp"], unique=False)

    op.create_table(
        "referral_invitations",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("referrer_account_id", sa.String(36), nullable=False),
        sa.Column("referral_code", sa.String(8), nullable=False),
        sa.Column("invited_email", sa.String(255), nullable=False),
        sa.Column(
            "status",
            sa.Enum("activated", "pending", name="referralstatus"),
            nullable=False,
        ),
        sa.Column("invited_at", sa.DateTime(), nullable=False),
        sa.Column("activated_at", sa.DateTime(), nullable=True),
        sa.Column("referred_account_id", sa.String(36), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["referrer_account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_referral_invitations_referrer_account_id",
        "referral_invitations",
        ["referrer_account_id"],
        unique=False,
    )
    op.create_index("ix_referral_invitations_referral_code", "referral_invitations", ["referral_code"], unique=False)


def downgrade() -> None:
    """Drop rewards tables."""
    op.drop_table("referral_invitations")
    op.drop_table("points_transactions")
    op.drop_table("accounts")
    sa.Enum(name="referralstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="transactiontype").drop(op.get_bind(), checkfirst=True)
