import pytest

from loyalbridge_api.core.settings import Settings
from loyalbridge_api.models.app_setting import AppSetting
from loyalbridge_api.services.app_settings import SQUARE_ENVIRONMENT_KEY, AppSettingsService, coerce_environment


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("production", "production"),
        ('"production"', "production"),
        (" Production ", "production"),
        ("sandbox", "sandbox"),
        ("staging", "sandbox"),
        (None, "sandbox"),
        (42, "sandbox"),
    ],
)
def test_coerce_environment(raw, expected) -> None:
    assert coerce_environment(raw) == expected


def test_settings_parse_origins_and_store_url() -> None:
    settings = Settings(
        _env_file=None,
        cors_allow_origins="https://shop.example.com, https://admin.example.com",
        shopify_store_url="https://loyal.myshopify.com/",
    )

    assert settings.cors_allow_origins == ["https://shop.example.com", "https://admin.example.com"]
    assert settings.shopify_store_url == "loyal.myshopify.com"


@pytest.mark.asyncio
async def test_resolve_square_target_prefers_stored_value(session_factory) -> None:
    settings = Settings(_env_file=None, square_default_environment="sandbox")

    async with session_factory() as session:
        service = AppSettingsService(session, settings)
        default = await service.resolve_square_target()
        session.add(AppSetting(key=SQUARE_ENVIRONMENT_KEY, value="production"))
        await session.flush()
        stored = await service.resolve_square_target()

    assert (default.environment, default.base_url) == ("sandbox", settings.square_sandbox_base_url)
    assert (stored.environment, stored.base_url) == ("production", settings.square_production_base_url)
