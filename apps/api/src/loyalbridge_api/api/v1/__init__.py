from fastapi import APIRouter

from .endpoints import (
    integrations,
    loyalty,
    observability,
    shopify,
    webhooks,
)

router = APIRouter()
router.include_router(loyalty.router)
router.include_router(webhooks.router)
router.include_router(shopify.router)
router.include_router(integrations.router)
router.include_router(observability.router)
