"""Observability endpoints for loyalty activity counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from loyalbridge_api.api.dependencies.security import require_admin_api_key
from loyalbridge_api.observability.loyalty import get_loyalty_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/loyalty",
    dependencies=[Depends(require_admin_api_key)],
    summary="Loyalty observability snapshot",
)
async def get_loyalty_snapshot() -> dict[str, object]:
    return get_loyalty_store().snapshot().as_dict()
