"""Create profile, loyalty and app settings tables.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


discount_type_enum = sa.Enum("FIXED_AMOUNT", "PERCENTAGE", name="loyalty_discount_type")
reward_scope_enum = sa.Enum("ORDER", "CATEGORY", "ITEM_VARIATION", name="loyalty_reward_scope")
transaction_type_enum = sa.Enum("EARN", "REDEEM", "REDEMPTION", name="loyalty_transaction_type")
redemption_status_enum = sa.Enum(
    "requested",
    "reserved",
    "discount_issued",
    "finalized",
    "released",
    "failed",
    name="loyalty_redemption_status",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("shopify_customer_id", sa.String(), nullable=True, unique=True),
        sa.Column("square_customer_id", sa.String(), nullable=True, unique=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "shopify_customer_id IS NOT NULL OR email IS NOT NULL OR phone IS NOT NULL",
            name="ck_profiles_has_identifier",
        ),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"])
    op.create_index("ix_profiles_phone", "profiles", ["phone"])

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("profile_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("square_loyalty_account_id", sa.String(), nullable=False, unique=True),
        sa.Column("program_id", sa.String(), nullable=True),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["profile_id"], ["profiles.id"], ondelete="CASCADE"),
        sa.CheckConstraint("balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
    )

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("square_reward_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points_required", sa.Integer(), nullable=False),
        sa.Column("discount_type", discount_type_enum, nullable=False),
        sa.Column("fixed_amount_minor", sa.Integer(), nullable=True),
        sa.Column("percentage", sa.Integer(), nullable=True),
        sa.Column("max_discount_minor", sa.Integer(), nullable=True),
        sa.Column("scope", reward_scope_enum, nullable=False, server_default="ORDER"),
        sa.Column("catalog_object_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("points_required >= 0", name="ck_loyalty_rewards_points_non_negative"),
        sa.CheckConstraint(
            "(fixed_amount_minor IS NULL) <> (percentage IS NULL)",
            name="ck_loyalty_rewards_single_discount_value",
        ),
    )
    op.create_index("ix_loyalty_rewards_square_reward_id", "loyalty_rewards", ["square_reward_id"], unique=True)

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("loyalty_account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("transaction_type", transaction_type_enum, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("square_transaction_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["loyalty_account_id"], ["loyalty_accounts.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_loyalty_transactions_loyalty_account_id",
        "loyalty_transactions",
        ["loyalty_account_id"],
    )

    op.create_table(
        "loyalty_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("loyalty_account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reward_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", redemption_status_enum, nullable=False, server_default="requested"),
        sa.Column("points_required", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=False, unique=True),
        sa.Column("square_reward_id", sa.String(), nullable=True, unique=True),
        sa.Column("discount_code", sa.String(), nullable=True, unique=True),
        sa.Column("shopify_price_rule_id", sa.String(), nullable=True),
        sa.Column("shopify_order_id", sa.String(), nullable=True),
        sa.Column("discount_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["loyalty_account_id"], ["loyalty_accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reward_id"], ["loyalty_rewards.id"]),
    )
    op.create_index(
        "ix_loyalty_redemptions_loyalty_account_id",
        "loyalty_redemptions",
        ["loyalty_account_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_loyalty_redemptions_loyalty_account_id", table_name="loyalty_redemptions")
    op.drop_table("loyalty_redemptions")
    op.drop_index("ix_loyalty_transactions_loyalty_account_id", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_index("ix_loyalty_rewards_square_reward_id", table_name="loyalty_rewards")
    op.drop_table("loyalty_rewards")
    op.drop_table("loyalty_accounts")
    op.drop_table("app_settings")
    op.drop_index("ix_profiles_phone", table_name="profiles")
    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_table("profiles")

    bind = op.get_bind()
    for enum in (redemption_status_enum, transaction_type_enum, reward_scope_enum, discount_type_enum):
        enum.drop(bind, checkfirst=True)
