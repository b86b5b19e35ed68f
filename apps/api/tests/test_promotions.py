from datetime import date

import pytest
from sqlalchemy import select

from loyalbridge_api.models.loyalty import LoyaltyTransaction, LoyaltyTransactionType
from loyalbridge_api.schemas.square import SquareLoyaltyPromotion
from loyalbridge_api.services.errors import LoyaltyValidationError, UpstreamError
from loyalbridge_api.services.loyalty import PromotionService, evaluate_promotion, evaluate_promotions


TODAY = date(2026, 10, 18)


def _promotion(name: str, *, status: str = "ACTIVE", start: str | None = None, end: str | None = None):
    payload = {"id": f"promo-{name.lower().replace(' ', '-')}", "name": name, "status": status}
    if start or end:
        payload["available_time"] = {"start_date": start, "end_date": end}
    return SquareLoyaltyPromotion.model_validate(payload)


def test_birthday_promotion_eligible_in_birth_month() -> None:
    result = evaluate_promotion(_promotion("Birthday Bonus"), birth_month=10, today=TODAY)

    assert result.customer_eligible is True
    assert result.eligibility_reason == "birthday_month"


def test_birthday_promotion_ineligible_outside_birth_month() -> None:
    result = evaluate_promotion(_promotion("Birthday Bonus"), birth_month=3, today=TODAY)

    assert result.customer_eligible is False
    assert result.eligibility_reason == "not_birthday_month"


def test_birthday_promotion_without_known_birthday() -> None:
    result = evaluate_promotion(_promotion("Happy BIRTHDAY treat"), birth_month=None, today=TODAY)

    assert result.customer_eligible is False
    assert result.eligibility_reason == "birthday_unknown"


def test_general_promotion_is_eligible() -> None:
    result = evaluate_promotion(_promotion("Double Points Weekend"), birth_month=None, today=TODAY)

    assert result.customer_eligible is True
    assert result.eligibility_reason == "general_promotion"


@pytest.mark.parametrize(
    ("start", "end", "eligible"),
    [
        ("2026-10-18", "2026-10-18", True),
        ("2026-10-19", None, False),
        (None, "2026-10-17", False),
        ("2026-01-01T00:00:00Z", "2026-12-31T23:59:59Z", True),
    ],
)
def test_date_window_boundaries_are_inclusive(start, end, eligible) -> None:
    result = evaluate_promotion(_promotion("Fall Sale", start=start, end=end), birth_month=None, today=TODAY)

    assert result.customer_eligible is eligible
    if not eligible:
        assert result.eligibility_reason == "outside_date_window"


def test_inactive_promotions_are_never_eligible() -> None:
    results = evaluate_promotions(
        [_promotion("Paused", status="INACTIVE"), _promotion("Live")],
        birth_month=None,
        today=TODAY,
    )

    assert [(item.customer_eligible, item.eligibility_reason) for item in results] == [
        (False, "inactive"),
        (True, "general_promotion"),
    ]


@pytest.mark.asyncio
async def test_list_for_customer_uses_square_birthday(session_factory, build_context, upstream) -> None:
    customer_id = upstream.add_customer(phone="+15551234567", birthday="0000-10-02")
    upstream.add_promotion("promo-bday", name="Birthday Bonus")
    upstream.add_promotion("promo-general", name="Autumn Double Points")

    async with session_factory() as session:
        results = await PromotionService(build_context(session)).list_for_customer(
            square_customer_id=customer_id,
            today=TODAY,
        )

    reasons = {item.promotion.id: item.eligibility_reason for item in results}
    assert reasons == {"promo-bday": "birthday_month", "promo-general": "general_promotion"}
    listing = upstream.calls_to("GET", r"/promotions$")[0]
    assert listing.params == {"status": "ACTIVE"}


@pytest.mark.asyncio
async def test_redeem_promotion_issues_code_and_logs_transaction(
    session_factory, build_context, seed_account, upstream
) -> None:
    account = await seed_account(balance=100)
    upstream.add_promotion(
        "promo-general",
        name="Autumn Treat",
        incentive={"type": "FIXED_DISCOUNT", "fixed_discount_money": {"amount": 700, "currency": "USD"}},
        minimum_spend_amount_money={"amount": 2000, "currency": "USD"},
    )

    async with session_factory() as session:
        result = await PromotionService(build_context(session)).redeem(
            account_ref=str(account.id),
            promotion_id="promo-general",
            today=TODAY,
        )

    assert result.discount_code == f"PROMO-{result.square_reward_id[:8]}"
    reward_call = upstream.calls_to("POST", r"/v2/loyalty/rewards$")[0]
    assert reward_call.body["reward"]["loyalty_promotion_id"] == "promo-general"

    rule = next(iter(upstream.price_rules.values()))
    assert rule["title"] == "Square Loyalty Promotion - Autumn Treat"
    assert rule["value"] == "-7.00"
    assert rule["prerequisite_subtotal_range"] == {"greater_than_or_equal_to": "20.00"}

    async with session_factory() as session:
        transaction = (await session.execute(select(LoyaltyTransaction))).scalars().one()
    assert transaction.transaction_type == LoyaltyTransactionType.REDEEM
    assert transaction.points == 0


@pytest.mark.asyncio
async def test_redeem_birthday_promotion_outside_month_is_rejected(
    session_factory, build_context, seed_account, upstream
) -> None:
    account = await seed_account(balance=100)
    upstream.customers[next(iter(upstream.customers))]["birthday"] = "1990-03-14"
    upstream.add_promotion("promo-bday", name="Birthday Bonus")

    async with session_factory() as session:
        with pytest.raises(LoyaltyValidationError) as excinfo:
            await PromotionService(build_context(session)).redeem(
                account_ref=str(account.id),
                promotion_id="promo-bday",
                today=TODAY,
            )

    assert excinfo.value.code == "promotion_ineligible"
    assert excinfo.value.details == {"reason": "not_birthday_month"}
    assert upstream.calls_to("POST", r"/v2/loyalty/rewards$") == []


@pytest.mark.asyncio
async def test_promotion_shopify_failure_deletes_square_reward(
    session_factory, build_context, seed_account, upstream
) -> None:
    account = await seed_account(balance=100)
    upstream.add_promotion("promo-general", name="Autumn Treat")
    upstream.fail("POST", r"/price_rules\.json$", status=500)

    async with session_factory() as session:
        with pytest.raises(UpstreamError) as excinfo:
            await PromotionService(build_context(session)).redeem(
                account_ref=str(account.id),
                promotion_id="promo-general",
                today=TODAY,
            )

    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "Failed to create promotion discount code"
    assert upstream.rewards == {}
