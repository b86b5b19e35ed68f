import httpx
import pytest
from sqlalchemy import select

from loyalbridge_api.api.dependencies.clients import get_runtime_settings
from loyalbridge_api.models.app_setting import AppSetting
from loyalbridge_api.models.customer_profile import CustomerProfile
from loyalbridge_api.models.loyalty import LoyaltyAccount, LoyaltyReward


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_identify_enrolls_new_customer(app_with_db, upstream) -> None:
    app, session_factory = app_with_db

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/loyalty/identify",
            json={"phone": "(555) 222-3333", "email": "New@Example.com", "firstName": "Nia"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["created"] is True
    assert body["environment"] == "sandbox"
    assert body["loyaltyAccount"]["balance"] == 0
    assert body["availableRewards"] == []

    create_customer = upstream.calls_to("POST", r"/v2/customers$")[0]
    assert create_customer.body["phone_number"] == "+15552223333"
    assert create_customer.body["email_address"] == "new@example.com"
    create_account = upstream.calls_to("POST", r"/v2/loyalty/accounts$")[0]
    assert create_account.body["loyalty_account"]["program_id"] == "prog-1"

    async with session_factory() as session:
        profile = (await session.execute(select(CustomerProfile))).scalars().one()
        account = (await session.execute(select(LoyaltyAccount))).scalars().one()
    assert str(profile.id) == body["profileId"]
    assert profile.square_customer_id in upstream.customers
    assert account.square_loyalty_account_id == body["loyaltyAccount"]["squareLoyaltyAccountId"]


@pytest.mark.asyncio
async def test_identify_links_existing_square_account(app_with_db, upstream, seed_reward) -> None:
    app, _ = app_with_db
    customer_id = upstream.add_customer(phone="+15551234567", email="jane@example.com")
    upstream.add_account(phone="+15551234567", balance=785, customer_id=customer_id)
    await seed_reward(tier_id="tier-500", points=500)
    await seed_reward(tier_id="tier-1000", points=1000)

    async with _client(app) as client:
        response = await client.post("/api/v1/loyalty/identify", json={"email": "jane@example.com"})

    body = response.json()
    assert response.status_code == 200
    assert body["created"] is False
    assert body["loyaltyAccount"]["balance"] == 785
    assert [reward["squareRewardId"] for reward in body["availableRewards"]] == ["tier-500"]
    assert upstream.calls_to("POST", r"/v2/customers$") == []


@pytest.mark.asyncio
async def test_identify_without_identifier_is_rejected(app_with_db, upstream) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post("/api/v1/loyalty/identify", json={"firstName": "Anon"})

    assert response.status_code == 400
    assert response.json()["code"] == "validation_failed"
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_identify_without_phone_cannot_enroll(app_with_db, upstream) -> None:
    app, session_factory = app_with_db

    async with _client(app) as client:
        response = await client.post("/api/v1/loyalty/identify", json={"email": "nobody@example.com"})

    assert response.status_code == 400
    assert response.json()["error"] == "Phone number is required to create loyalty account"
    # Profile is kept for the next attempt
    async with session_factory() as session:
        assert (await session.execute(select(CustomerProfile))).scalars().one().email == "nobody@example.com"


@pytest.mark.asyncio
async def test_lookup_returns_null_when_unknown(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post("/api/v1/loyalty/lookup", json={"phone": "5550000000"})

    assert response.status_code == 200
    assert response.json() == {"loyaltyAccount": None}


@pytest.mark.asyncio
async def test_lookup_returns_square_account_by_phone(app_with_db, upstream) -> None:
    app, _ = app_with_db
    square_account_id = upstream.add_account(phone="+15550000000", balance=120)

    async with _client(app) as client:
        response = await client.post("/api/v1/loyalty/lookup", json={"phone": "555-000-0000"})

    account = response.json()["loyaltyAccount"]
    assert account["id"] is None
    assert account["squareLoyaltyAccountId"] == square_account_id
    assert account["balance"] == 120


@pytest.mark.asyncio
async def test_account_endpoint_reads_local_mirror_only(app_with_db, seed_account, seed_reward, upstream) -> None:
    app, _ = app_with_db
    account = await seed_account(balance=785, email="jane@example.com")
    await seed_reward(tier_id="tier-500", points=500)
    upstream.calls.clear()

    async with _client(app) as client:
        found = await client.post("/api/v1/loyalty/account", json={"email": "JANE@example.com"})
        missing = await client.post("/api/v1/loyalty/account", json={"customerId": "999"})

    assert found.json()["loyaltyAccount"]["id"] == str(account.id)
    assert len(found.json()["availableRewards"]) == 1
    assert missing.json() == {"loyaltyAccount": None, "availableRewards": []}
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_balance_refreshes_from_square(app_with_db, seed_account, upstream) -> None:
    app, _ = app_with_db
    account = await seed_account(balance=100)
    upstream.accounts[account.square_loyalty_account_id]["balance"] = 340

    async with _client(app) as client:
        response = await client.get("/api/v1/loyalty/balance", params={"accountId": str(account.id)})
        rewards = await client.get("/api/v1/loyalty/available-rewards", params={"accountId": str(account.id)})

    assert response.json()["loyaltyAccount"]["balance"] == 340
    assert rewards.json()["balance"] == 340


@pytest.mark.asyncio
async def test_redeem_endpoint_reports_insufficient_points(app_with_db, seed_account, seed_reward, upstream) -> None:
    app, _ = app_with_db
    account = await seed_account(balance=785)
    reward = await seed_reward(tier_id="tier-1000", points=1000)

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/loyalty/redeem",
            json={"loyaltyAccountId": str(account.id), "rewardId": str(reward.id)},
        )

    assert response.status_code == 400
    assert response.json() == {
        "error": "Insufficient points",
        "code": "insufficient_points",
        "details": {"balance": 785, "required": 1000},
    }
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_redeem_and_finalize_endpoints(app_with_db, seed_account, seed_reward, upstream) -> None:
    app, _ = app_with_db
    account = await seed_account(balance=785)
    reward = await seed_reward(tier_id="tier-500", points=500)

    async with _client(app) as client:
        redeemed = await client.post(
            "/api/v1/loyalty/redeem",
            json={"loyaltyAccountId": str(account.id), "rewardId": str(reward.id), "idempotencyKey": "cart-1"},
        )
        body = redeemed.json()
        finalized = await client.post(
            "/api/v1/loyalty/finalize",
            json={"discountCode": body["discountCode"], "success": True, "shopifyOrderId": "5001"},
        )

    assert redeemed.status_code == 200
    assert body["success"] is True
    assert body["newBalance"] == 285
    assert body["status"] == "discount_issued"
    assert body["discountCode"].startswith("SQ-")
    assert finalized.status_code == 200
    assert finalized.json()["status"] == "finalized"
    assert finalized.json()["squareRewardId"] == body["squareRewardId"]


@pytest.mark.asyncio
async def test_redeem_unknown_account_is_404(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/loyalty/redeem",
            json={"loyaltyAccountId": "ACCT-missing", "rewardId": "tier-500"},
        )

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_redeem_missing_fields_is_validation_error(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post("/api/v1/loyalty/redeem", json={"rewardId": "tier-500"})

    assert response.status_code == 400
    assert response.json()["code"] == "validation_failed"
    assert "loyaltyAccountId" in response.json()["error"]


@pytest.mark.asyncio
async def test_tiers_and_promotions(app_with_db, upstream) -> None:
    app, _ = app_with_db
    upstream.add_fixed_tier("tier-500", points=500, amount=500, name="Five Off")
    upstream.add_promotion("promo-1", name="Double Points")

    async with _client(app) as client:
        tiers = await client.get("/api/v1/loyalty/tiers")
        promotions = await client.get("/api/v1/loyalty/promotions")

    assert tiers.json()["programId"] == "prog-1"
    assert tiers.json()["rewardTiers"][0]["definition"]["discount_type"] == "FIXED_AMOUNT"
    payload = promotions.json()
    assert payload["totalActivePromotions"] == 1
    assert payload["customerEligibleCount"] == 1
    assert payload["promotions"][0]["customer_eligible"] is True
    assert payload["promotions"][0]["eligibility_reason"] == "general_promotion"


@pytest.mark.asyncio
async def test_rewards_sync_requires_admin_key(app_with_db, loyalty_settings, upstream) -> None:
    app, session_factory = app_with_db
    secured = loyalty_settings.model_copy(update={"admin_api_key": "admin-secret"})
    app.dependency_overrides[get_runtime_settings] = lambda: secured
    upstream.add_fixed_tier("tier-500", points=500, amount=500)

    async with _client(app) as client:
        denied = await client.post("/api/v1/loyalty/rewards/sync")
        allowed = await client.post("/api/v1/loyalty/rewards/sync", headers={"X-API-Key": "admin-secret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["count"] == 1
    assert allowed.json()["created"] == 1

    async with session_factory() as session:
        assert len((await session.execute(select(LoyaltyReward))).scalars().all()) == 1


@pytest.mark.asyncio
async def test_square_environment_follows_app_settings(app_with_db, loyalty_settings, upstream) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        session.add(AppSetting(key="square_environment", value="production"))
        await session.commit()
    app.dependency_overrides[get_runtime_settings] = lambda: loyalty_settings.model_copy(
        update={"square_production_base_url": "https://square-prod.test"}
    )
    upstream.add_fixed_tier("tier-500", points=500, amount=500)

    async with _client(app) as client:
        response = await client.get("/api/v1/loyalty/tiers")

    assert response.json()["environment"] == "production"
    assert upstream.square_calls[-1].host == "square-prod.test"


@pytest.mark.asyncio
async def test_health_endpoint(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
