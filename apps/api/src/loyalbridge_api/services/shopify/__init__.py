"""Shopify Admin REST client and helpers."""

from .client import ShopifyAPIError, ShopifyClient  # noqa: F401
from .discounts import (  # noqa: F401
    DiscountIssuer,
    IssuedDiscount,
    build_promotion_price_rule,
    build_reward_price_rule,
    generate_discount_code,
)
from .products import ProductTagService  # noqa: F401
