import httpx
import pytest

from loyalbridge_api.observability.loyalty import LoyaltyObservabilityStore


def test_store_snapshot_and_reset() -> None:
    store = LoyaltyObservabilityStore()
    store.record_redemption("discount_issued")
    store.record_redemption("discount_issued")
    store.record_catalog_sync(synced=3, skipped=1)
    store.record_upstream_failure("shopify", "issue_discount")

    snapshot = store.snapshot().as_dict()

    assert snapshot["redemptions"] == {"discount_issued": 2}
    assert snapshot["catalog"] == {"runs": 1, "synced": 3, "skipped": 1}
    assert snapshot["upstreamFailures"] == {"shopify:issue_discount": 1}

    store.reset()
    assert store.snapshot().as_dict()["redemptions"] == {}


@pytest.mark.asyncio
async def test_observability_endpoint_reflects_redemptions(app_with_db, seed_account, seed_reward) -> None:
    app, _ = app_with_db
    account = await seed_account(balance=100)
    reward = await seed_reward(tier_id="tier-500", points=500)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        await client.post(
            "/api/v1/loyalty/redeem",
            json={"loyaltyAccountId": str(account.id), "rewardId": str(reward.id)},
        )
        response = await client.get("/api/v1/observability/loyalty")

    assert response.status_code == 200
    assert response.json()["redemptions"] == {"insufficient_points": 1}
