"""Shopify price rules and single-use discount codes backing loyalty rewards."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from loguru import logger

from loyalbridge_api.models.loyalty import LoyaltyDiscountType, LoyaltyReward, LoyaltyRewardScope
from loyalbridge_api.schemas.square import SquareLoyaltyPromotion
from loyalbridge_api.services.errors import UpstreamError

from .client import ShopifyClient


CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_SUFFIX_LENGTH = 8
CODE_PATTERN_SUFFIX = rf"[A-Z0-9]{{{CODE_SUFFIX_LENGTH}}}"

DEFAULT_PROMOTION_PERCENTAGE = Decimal("10")
DEFAULT_PROMOTION_FIXED_MINOR = 500


def generate_discount_code(prefix: str) -> str:
    """Return ``prefix`` plus 8 random upper-case alphanumerics."""

    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"{prefix}{suffix}"


def _minor_to_decimal_string(amount_minor: int) -> str:
    return f"{Decimal(amount_minor) / Decimal(100):.2f}"


def _percentage_string(value: Decimal) -> str:
    return f"{value.normalize():f}"


def _validity_window(now: datetime, validity_days: int) -> tuple[str, str]:
    ends_at = now + timedelta(days=validity_days)
    return now.isoformat(), ends_at.isoformat()


def build_reward_price_rule(
    reward: LoyaltyReward,
    *,
    code: str,
    now: datetime,
    validity_days: int,
) -> tuple[dict[str, Any], str | None]:
    """Price rule payload for a reward tier plus an optional configuration note.

    Shopify price rules cannot carry a cap on percentage discounts or Square
    catalog scopes; both degrade to a storewide rule and are reported back.
    """

    starts_at, ends_at = _validity_window(now, validity_days)
    if reward.discount_type == LoyaltyDiscountType.PERCENTAGE:
        value_type = "percentage"
        value = f"-{_percentage_string(Decimal(str(reward.percentage)))}"
    else:
        value_type = "fixed_amount"
        value = f"-{_minor_to_decimal_string(int(reward.fixed_amount_minor or 0))}"

    price_rule: dict[str, Any] = {
        "title": f"{reward.name} - {code}",
        "value_type": value_type,
        "value": value,
        "customer_selection": "all",
        "target_type": "line_item",
        "target_selection": "all",
        "allocation_method": "across",
        "usage_limit": 1,
        "once_per_customer": True,
        "starts_at": starts_at,
        "ends_at": ends_at,
        "prerequisite_subtotal_range": {"greater_than_or_equal_to": "0.01"},
    }

    notes: list[str] = []
    scope = reward.scope or LoyaltyRewardScope.ORDER
    if scope != LoyaltyRewardScope.ORDER:
        notes.append(
            f"Reward scope {scope.value} applies storewide in Shopify; "
            "restrict the price rule to matching collections manually."
        )
    if reward.discount_type == LoyaltyDiscountType.PERCENTAGE and reward.max_discount_minor:
        notes.append(
            f"Maximum discount of {_minor_to_decimal_string(int(reward.max_discount_minor))} "
            "is not enforced by the Shopify price rule."
        )
    return price_rule, (" ".join(notes) or None)


def build_promotion_price_rule(
    promotion: SquareLoyaltyPromotion,
    *,
    now: datetime,
    validity_days: int,
) -> dict[str, Any]:
    starts_at, ends_at = _validity_window(now, validity_days)
    incentive = promotion.incentive
    value_type = "percentage"
    value = f"-{_percentage_string(DEFAULT_PROMOTION_PERCENTAGE)}"
    if incentive is not None and incentive.type == "FIXED_DISCOUNT":
        value_type = "fixed_amount"
        amount = incentive.fixed_discount_money.amount if incentive.fixed_discount_money else DEFAULT_PROMOTION_FIXED_MINOR
        value = f"-{_minor_to_decimal_string(amount)}"
    elif incentive is not None and incentive.type == "PERCENTAGE_DISCOUNT" and incentive.percentage_discount:
        value = f"-{_percentage_string(Decimal(str(incentive.percentage_discount)))}"

    price_rule: dict[str, Any] = {
        "title": f"Square Loyalty Promotion - {promotion.name}",
        "value_type": value_type,
        "value": value,
        "customer_selection": "all",
        "target_type": "line_item",
        "target_selection": "all",
        "allocation_method": "across",
        "usage_limit": 1,
        "once_per_customer": True,
        "starts_at": starts_at,
        "ends_at": ends_at,
    }
    minimum = promotion.minimum_spend_amount_money
    if minimum is not None and minimum.amount:
        price_rule["prerequisite_subtotal_range"] = {
            "greater_than_or_equal_to": _minor_to_decimal_string(minimum.amount)
        }
    return price_rule


@dataclass(slots=True)
class IssuedDiscount:
    code: str
    price_rule_id: str
    expires_at: datetime | None


def _parse_ends_at(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DiscountIssuer:
    """Create a price rule and its single discount code as one step."""

    def __init__(self, client: ShopifyClient) -> None:
        self._client = client

    async def issue(self, price_rule: dict[str, Any], code: str) -> IssuedDiscount:
        rule = await self._client.create_price_rule(price_rule)
        try:
            discount = await self._client.create_discount_code(rule.id, code)
        except UpstreamError:
            try:
                await self._client.delete_price_rule(rule.id)
            except UpstreamError as cleanup_error:
                logger.warning(
                    "Failed to delete orphaned price rule",
                    price_rule_id=rule.id,
                    error=str(cleanup_error),
                )
            raise
        logger.info("Issued Shopify discount code", price_rule_id=rule.id, code=discount.code)
        return IssuedDiscount(
            code=discount.code,
            price_rule_id=str(rule.id),
            expires_at=_parse_ends_at(rule.ends_at or price_rule.get("ends_at")),
        )


__all__ = [
    "DiscountIssuer",
    "IssuedDiscount",
    "build_promotion_price_rule",
    "build_reward_price_rule",
    "generate_discount_code",
]
