import pytest

from loyalbridge_api.models.loyalty import LoyaltyAccount, LoyaltyDiscountType, LoyaltyReward
from loyalbridge_api.services.loyalty import LoyaltyAccountBinder, affordable_rewards


def _reward(name: str, points: int, *, active: bool = True) -> LoyaltyReward:
    return LoyaltyReward(
        square_reward_id=f"tier-{name}",
        name=name,
        points_required=points,
        discount_type=LoyaltyDiscountType.FIXED_AMOUNT,
        fixed_amount_minor=500,
        is_active=active,
    )


def test_affordable_rewards_filters_and_sorts() -> None:
    rewards = [
        _reward("Big", 1000),
        _reward("Medium", 500),
        _reward("Small B", 250),
        _reward("Small A", 250),
        _reward("Retired", 100, active=False),
    ]

    result = affordable_rewards(rewards, 785)

    assert [reward.name for reward in result] == ["Small A", "Small B", "Medium"]
    assert all(reward.points_required <= 785 for reward in result)


def test_affordable_rewards_includes_exact_balance_match() -> None:
    result = affordable_rewards([_reward("Exact", 500)], 500)
    assert [reward.name for reward in result] == ["Exact"]


def test_affordable_rewards_empty_for_zero_balance() -> None:
    assert affordable_rewards([_reward("Any", 1)], 0) == []


@pytest.mark.asyncio
async def test_available_rewards_for_785_point_balance(session_factory, build_context, seed_account, seed_reward) -> None:
    account = await seed_account(balance=785)
    await seed_reward(tier_id="tier-500", points=500)
    await seed_reward(tier_id="tier-1000", points=1000)

    async with session_factory() as session:
        binder = LoyaltyAccountBinder(build_context(session))
        stored = await session.get(LoyaltyAccount, account.id)
        rewards = await binder.list_available_rewards(stored)

    assert [reward.square_reward_id for reward in rewards] == ["tier-500"]
