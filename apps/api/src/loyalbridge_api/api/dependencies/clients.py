"""Per-request wiring of settings, upstream clients and the loyalty context."""

from __future__ import annotations

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from loyalbridge_api.core.settings import Settings, get_settings
from loyalbridge_api.db.session import get_session
from loyalbridge_api.services.app_settings import AppSettingsService
from loyalbridge_api.services.loyalty.context import LoyaltyContext
from loyalbridge_api.services.shopify.client import ShopifyClient
from loyalbridge_api.services.square.client import SquareClient


def get_runtime_settings() -> Settings:
    return get_settings()


def get_http_client(request: Request) -> httpx.AsyncClient | None:
    """Shared pooled client from the app lifespan, if one was started."""

    return getattr(request.app.state, "http_client", None)


def get_shopify_client(
    settings: Settings = Depends(get_runtime_settings),
    http_client: httpx.AsyncClient | None = Depends(get_http_client),
) -> ShopifyClient:
    return ShopifyClient(
        store_url=settings.shopify_store_url,
        access_token=settings.shopify_access_token,
        api_version=settings.shopify_api_version,
        timeout_seconds=settings.http_timeout_seconds,
        http_client=http_client,
    )


async def get_square_client(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_runtime_settings),
    http_client: httpx.AsyncClient | None = Depends(get_http_client),
) -> SquareClient:
    # Environment is re-read per request so operators can flip it live
    target = await AppSettingsService(session, settings).resolve_square_target()
    return SquareClient(
        base_url=target.base_url,
        access_token=settings.square_access_token,
        api_version=settings.square_api_version,
        timeout_seconds=settings.http_timeout_seconds,
        environment=target.environment,
        http_client=http_client,
    )


async def get_loyalty_context(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_runtime_settings),
    square: SquareClient = Depends(get_square_client),
    shopify: ShopifyClient = Depends(get_shopify_client),
) -> LoyaltyContext:
    return LoyaltyContext(session=session, square=square, shopify=shopify, settings=settings)
