import re
from datetime import datetime, timezone

import pytest

from loyalbridge_api.models.loyalty import LoyaltyDiscountType, LoyaltyReward, LoyaltyRewardScope
from loyalbridge_api.services.errors import UpstreamError
from loyalbridge_api.services.shopify import ShopifyClient
from loyalbridge_api.services.shopify.discounts import DiscountIssuer, build_reward_price_rule, generate_discount_code

from fakes import SHOPIFY_STORE


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def test_generated_codes_use_prefix_and_alphabet() -> None:
    codes = {generate_discount_code("SQ-") for _ in range(20)}

    assert all(re.fullmatch(r"SQ-[A-Z0-9]{8}", code) for code in codes)
    assert len(codes) > 1


def test_percentage_rule_reports_unenforced_cap_and_scope() -> None:
    reward = LoyaltyReward(
        name="Ten Percent",
        points_required=1000,
        discount_type=LoyaltyDiscountType.PERCENTAGE,
        percentage=10,
        max_discount_minor=2500,
        scope=LoyaltyRewardScope.CATEGORY,
    )

    rule, note = build_reward_price_rule(reward, code="SQ-ABCDEFGH", now=NOW, validity_days=30)

    assert rule["value_type"] == "percentage"
    assert rule["value"] == "-10"
    assert rule["title"] == "Ten Percent - SQ-ABCDEFGH"
    assert rule["usage_limit"] == 1
    assert rule["ends_at"] == "2026-11-17T12:00:00+00:00"
    assert "Reward scope CATEGORY applies storewide" in note
    assert "Maximum discount of 25.00" in note


def test_fixed_rule_has_no_note() -> None:
    reward = LoyaltyReward(
        name="Five Off",
        points_required=500,
        discount_type=LoyaltyDiscountType.FIXED_AMOUNT,
        fixed_amount_minor=500,
        scope=LoyaltyRewardScope.ORDER,
    )

    rule, note = build_reward_price_rule(reward, code="SQ-ABCDEFGH", now=NOW, validity_days=30)

    assert (rule["value_type"], rule["value"]) == ("fixed_amount", "-5.00")
    assert note is None


@pytest.mark.asyncio
async def test_issuer_removes_price_rule_when_code_creation_fails(upstream) -> None:
    upstream.fail("POST", r"/discount_codes\.json$", status=422, code="INVALID")
    issuer = DiscountIssuer(
        ShopifyClient(
            store_url=SHOPIFY_STORE,
            access_token="shpat-test",
            api_version="2024-10",
            timeout_seconds=5,
            http_client=upstream.client,
        )
    )

    with pytest.raises(UpstreamError):
        await issuer.issue({"title": "Five Off", "value_type": "fixed_amount", "value": "-5.00"}, "SQ-ABCDEFGH")

    assert upstream.price_rules == {}
    assert len(upstream.calls_to("DELETE", r"/price_rules/\d+\.json$")) == 1
