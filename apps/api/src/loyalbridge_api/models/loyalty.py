"""Loyalty account mirror, reward catalog, ledger and redemption models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loyalbridge_api.db.base import Base


class LoyaltyAccount(Base):
    """Local mirror of a Square loyalty account. Balance is a cache."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    profile_id = Column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    square_loyalty_account_id = Column(String, nullable=False, unique=True)
    program_id = Column(String, nullable=True)
    balance = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points = Column(Integer, nullable=False, default=0, server_default="0")
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    profile = relationship("CustomerProfile", back_populates="loyalty_account")
    transactions = relationship(
        "LoyaltyTransaction", back_populates="account", cascade="all, delete-orphan"
    )
    redemptions = relationship(
        "LoyaltyRedemption", back_populates="account", cascade="all, delete-orphan"
    )


class LoyaltyDiscountType(str, Enum):
    FIXED_AMOUNT = "FIXED_AMOUNT"
    PERCENTAGE = "PERCENTAGE"


class LoyaltyRewardScope(str, Enum):
    ORDER = "ORDER"
    CATEGORY = "CATEGORY"
    ITEM_VARIATION = "ITEM_VARIATION"


class LoyaltyReward(Base):
    """Reward tier cached from the Square loyalty program."""

    __tablename__ = "loyalty_rewards"
    __table_args__ = (
        CheckConstraint("points_required >= 0", name="ck_loyalty_rewards_points_non_negative"),
        CheckConstraint(
            "(fixed_amount_minor IS NULL) <> (percentage IS NULL)",
            name="ck_loyalty_rewards_single_discount_value",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    square_reward_id = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    points_required = Column(Integer, nullable=False)
    discount_type = Column(SqlEnum(LoyaltyDiscountType, name="loyalty_discount_type"), nullable=False)
    fixed_amount_minor = Column(Integer, nullable=True)
    percentage = Column(Integer, nullable=True)
    max_discount_minor = Column(Integer, nullable=True)
    scope = Column(
        SqlEnum(LoyaltyRewardScope, name="loyalty_reward_scope"),
        nullable=False,
        default=LoyaltyRewardScope.ORDER,
    )
    catalog_object_ids = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class LoyaltyTransactionType(str, Enum):
    """Ledger entry kinds.

    EARN records points accumulated for an order, REDEMPTION a reward tier
    redeemed through the storefront (negative delta) and REDEEM a promotion
    redemption, which carries no point cost.
    """

    EARN = "EARN"
    REDEEM = "REDEEM"
    REDEMPTION = "REDEMPTION"


class LoyaltyTransaction(Base):
    """Append-only ledger of point movements."""

    __tablename__ = "loyalty_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    loyalty_account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_type = Column(SqlEnum(LoyaltyTransactionType, name="loyalty_transaction_type"), nullable=False)
    points = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    square_transaction_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    account = relationship("LoyaltyAccount", back_populates="transactions")


class LoyaltyRedemptionStatus(str, Enum):
    REQUESTED = "requested"
    RESERVED = "reserved"
    DISCOUNT_ISSUED = "discount_issued"
    FINALIZED = "finalized"
    RELEASED = "released"
    FAILED = "failed"


class LoyaltyRedemption(Base):
    """Two-phase redemption: Square reservation plus Shopify discount code."""

    __tablename__ = "loyalty_redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    loyalty_account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reward_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_rewards.id"), nullable=True)
    status = Column(
        SqlEnum(LoyaltyRedemptionStatus, name="loyalty_redemption_status"),
        nullable=False,
        default=LoyaltyRedemptionStatus.REQUESTED,
    )
    points_required = Column(Integer, nullable=False)
    idempotency_key = Column(String, nullable=False, unique=True)
    square_reward_id = Column(String, nullable=True, unique=True)
    discount_code = Column(String, nullable=True, unique=True)
    shopify_price_rule_id = Column(String, nullable=True)
    shopify_order_id = Column(String, nullable=True)
    discount_expires_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    reserved_at = Column(DateTime(timezone=True), nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=True)
    finalized_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    account = relationship("LoyaltyAccount", back_populates="redemptions")
    reward = relationship("LoyaltyReward")
