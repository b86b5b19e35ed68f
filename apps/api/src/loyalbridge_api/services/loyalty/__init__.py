"""Loyalty service exports."""

from .accounts import BoundAccount, LoyaltyAccountBinder, PhoneLookup  # noqa: F401
from .catalog import CatalogSyncResult, RewardCatalogSync, parse_reward_tier  # noqa: F401
from .context import LoyaltyContext  # noqa: F401
from .eligibility import affordable_rewards  # noqa: F401
from .identity import IdentityResolver, normalize_email, normalize_phone  # noqa: F401
from .orders import OrderWebhookProcessor, OrderWebhookResult  # noqa: F401
from .promotions import (  # noqa: F401
    EvaluatedPromotion,
    PromotionRedemption,
    PromotionService,
    evaluate_promotion,
    evaluate_promotions,
)
from .redemption import FinalizeOutcome, RedemptionOrchestrator, RedemptionOutcome  # noqa: F401
