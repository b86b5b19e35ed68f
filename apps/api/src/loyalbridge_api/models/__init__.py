"""SQLAlchemy models package."""

from .app_setting import AppSetting  # noqa: F401
from .customer_profile import CustomerProfile  # noqa: F401
from .product_mapping import ProductMapping  # noqa: F401
from .loyalty import (  # noqa: F401
    LoyaltyAccount,
    LoyaltyDiscountType,
    LoyaltyRedemption,
    LoyaltyRedemptionStatus,
    LoyaltyReward,
    LoyaltyRewardScope,
    LoyaltyTransaction,
    LoyaltyTransactionType,
)
