"""Shopify webhook receivers."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from pydantic import BaseModel, ValidationError

from loyalbridge_api.api.dependencies.clients import get_loyalty_context, get_runtime_settings
from loyalbridge_api.core.settings import Settings
from loyalbridge_api.schemas.shopify import ShopifyOrder
from loyalbridge_api.services.loyalty import LoyaltyContext, OrderWebhookProcessor


router = APIRouter(prefix="/webhooks/shopify", tags=["webhooks"])


class OrderWebhookResponse(BaseModel):
    message: str
    orderId: str
    processedDiscounts: int
    finalizeFailures: int
    pointsEligible: bool
    pointsAwarded: int


def verify_shopify_hmac(body: bytes, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


@router.post("/orders-create", response_model=OrderWebhookResponse)
async def orders_create(
    request: Request,
    settings: Settings = Depends(get_runtime_settings),
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> OrderWebhookResponse:
    """Finalize loyalty discounts used on a new order and award points for its total."""

    body = await request.body()
    if settings.shopify_webhook_secret:
        signature = request.headers.get("X-Shopify-Hmac-Sha256")
        if not verify_shopify_hmac(body, signature, settings.shopify_webhook_secret):
            logger.warning("Rejected Shopify webhook with invalid signature")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        order = ShopifyOrder.model_validate(json.loads(body or b"{}"))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid order payload") from exc

    result = await OrderWebhookProcessor(context).process(order)
    return OrderWebhookResponse(
        message="Webhook processed",
        orderId=result.order_id,
        processedDiscounts=result.processed_discounts,
        finalizeFailures=result.finalize_failures,
        pointsEligible=result.points_eligible,
        pointsAwarded=result.points_awarded,
    )
