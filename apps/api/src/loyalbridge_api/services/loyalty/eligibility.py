from __future__ import annotations

from typing import Iterable

from loyalbridge_api.models.loyalty import LoyaltyReward


def affordable_rewards(rewards: Iterable[LoyaltyReward], balance: int) -> list[LoyaltyReward]:
    """Active rewards the balance covers, cheapest first."""

    eligible = [
        reward
        for reward in rewards
        if reward.is_active and reward.points_required <= balance
    ]
    return sorted(eligible, key=lambda reward: (reward.points_required, reward.name or ""))
