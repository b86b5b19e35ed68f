import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from loyalbridge_api.api.dependencies.clients import get_http_client, get_runtime_settings
from loyalbridge_api.app import create_app
from loyalbridge_api.core.settings import Settings
from loyalbridge_api.db.base import Base
from loyalbridge_api.db.session import get_session
from loyalbridge_api.models.customer_profile import CustomerProfile
from loyalbridge_api.models.loyalty import (
    LoyaltyAccount,
    LoyaltyDiscountType,
    LoyaltyReward,
)
from loyalbridge_api.observability.loyalty import get_loyalty_store
from loyalbridge_api.services.loyalty import LoyaltyContext
from loyalbridge_api.services.shopify import ShopifyClient
from loyalbridge_api.services.square import SquareClient

from fakes import PROGRAM_ID, SHOPIFY_STORE, SQUARE_BASE_URL, FakeUpstream


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def loyalty_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="development",
        database_url="sqlite+aiosqlite:///:memory:",
        square_access_token="sq-test-token",
        square_loyalty_program_id=PROGRAM_ID,
        square_location_id="LOC-1",
        square_sandbox_base_url=SQUARE_BASE_URL,
        shopify_store_url=f"https://{SHOPIFY_STORE}/",
        shopify_access_token="shpat-test",
        shopify_webhook_secret="",
        admin_api_key="",
    )


@pytest_asyncio.fixture
async def upstream():
    fake = FakeUpstream()
    try:
        yield fake
    finally:
        await fake.aclose()


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    store = get_loyalty_store()
    store.reset()
    yield store
    store.reset()


@pytest.fixture
def build_context(loyalty_settings, upstream):
    def _build(session: AsyncSession, settings: Settings | None = None) -> LoyaltyContext:
        active = settings or loyalty_settings
        return LoyaltyContext(
            session=session,
            square=SquareClient(
                base_url=SQUARE_BASE_URL,
                access_token=active.square_access_token,
                api_version=active.square_api_version,
                timeout_seconds=active.http_timeout_seconds,
                http_client=upstream.client,
            ),
            shopify=ShopifyClient(
                store_url=active.shopify_store_url,
                access_token=active.shopify_access_token,
                api_version=active.shopify_api_version,
                timeout_seconds=active.http_timeout_seconds,
                http_client=upstream.client,
            ),
            settings=active,
        )

    return _build


@pytest.fixture
def seed_account(session_factory, upstream):
    """Create a profile mirrored to a Square account holding ``balance`` points."""

    async def _seed(*, balance: int, phone: str = "+15551234567", email: str | None = None) -> LoyaltyAccount:
        customer_id = upstream.add_customer(phone=phone, email=email)
        square_account_id = upstream.add_account(phone=phone, balance=balance, customer_id=customer_id)
        async with session_factory() as session:
            profile = CustomerProfile(phone=phone, email=email, square_customer_id=customer_id)
            session.add(profile)
            await session.flush()
            account = LoyaltyAccount(
                profile_id=profile.id,
                square_loyalty_account_id=square_account_id,
                program_id=PROGRAM_ID,
                balance=balance,
                lifetime_points=balance,
            )
            session.add(account)
            await session.commit()
            return account

    return _seed


@pytest.fixture
def seed_reward(session_factory, upstream):
    """Create a fixed-amount reward mirrored from a Square tier."""

    async def _seed(*, tier_id: str, points: int, amount_minor: int = 500, name: str | None = None) -> LoyaltyReward:
        upstream.add_fixed_tier(tier_id, points=points, amount=amount_minor, name=name)
        async with session_factory() as session:
            reward = LoyaltyReward(
                square_reward_id=tier_id,
                name=name or f"{points} Points Reward",
                description=f"${amount_minor / 100:.2f} off your order",
                points_required=points,
                discount_type=LoyaltyDiscountType.FIXED_AMOUNT,
                fixed_amount_minor=amount_minor,
                catalog_object_ids=[],
                is_active=True,
            )
            session.add(reward)
            await session.commit()
            return reward

    return _seed


@pytest_asyncio.fixture
async def app_with_db(session_factory, loyalty_settings, upstream):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_runtime_settings] = lambda: loyalty_settings
    app.dependency_overrides[get_http_client] = lambda: upstream.client

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
