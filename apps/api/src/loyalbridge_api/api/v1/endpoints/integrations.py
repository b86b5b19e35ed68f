"""Connectivity report for the Square and Shopify integrations."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field

from loyalbridge_api.api.dependencies.clients import get_shopify_client, get_square_client
from loyalbridge_api.api.dependencies.security import require_admin_api_key
from loyalbridge_api.services.errors import UpstreamError
from loyalbridge_api.services.shopify import ShopifyClient
from loyalbridge_api.services.square import SquareClient


router = APIRouter(prefix="/integrations", tags=["integrations"])


class IntegrationStatus(BaseModel):
    status: Literal["connected", "error", "not_configured"]
    detail: Optional[str] = Field(default=None, description="Human readable status detail")


class IntegrationsPayload(BaseModel):
    environment: str
    square: IntegrationStatus
    shopify: IntegrationStatus


async def _square_status(client: SquareClient) -> IntegrationStatus:
    if not client.is_configured:
        return IntegrationStatus(status="not_configured", detail="Square access token missing")
    try:
        locations = await client.list_locations()
    except UpstreamError as exc:
        logger.warning("Square connectivity check failed", error=exc.message)
        return IntegrationStatus(status="error", detail=exc.message)
    return IntegrationStatus(status="connected", detail=f"{len(locations)} location(s) visible")


async def _shopify_status(client: ShopifyClient) -> IntegrationStatus:
    if not client.is_configured:
        return IntegrationStatus(status="not_configured", detail="Shopify store URL or token missing")
    try:
        shop = await client.get_shop()
    except UpstreamError as exc:
        logger.warning("Shopify connectivity check failed", error=exc.message)
        return IntegrationStatus(status="error", detail=exc.message)
    return IntegrationStatus(status="connected", detail=shop.name or client.store_url)


@router.get(
    "/status",
    response_model=IntegrationsPayload,
    dependencies=[Depends(require_admin_api_key)],
)
async def integration_status(
    square: SquareClient = Depends(get_square_client),
    shopify: ShopifyClient = Depends(get_shopify_client),
) -> IntegrationsPayload:
    return IntegrationsPayload(
        environment=square.environment,
        square=await _square_status(square),
        shopify=await _shopify_status(shopify),
    )
