"""Mirror Square reward tiers into the local reward catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from sqlalchemy import select

from loyalbridge_api.models.loyalty import LoyaltyDiscountType, LoyaltyReward, LoyaltyRewardScope
from loyalbridge_api.observability.loyalty import get_loyalty_store
from loyalbridge_api.schemas.square import RewardTier, SquareLoyaltyProgram
from loyalbridge_api.services.errors import LoyaltyNotFoundError, UpstreamError

from .context import LoyaltyContext


@dataclass(slots=True)
class ParsedRewardTier:
    square_reward_id: str
    name: str
    description: str
    points_required: int
    discount_type: LoyaltyDiscountType
    fixed_amount_minor: int | None = None
    percentage: int | None = None
    max_discount_minor: int | None = None
    scope: LoyaltyRewardScope = LoyaltyRewardScope.ORDER
    catalog_object_ids: list[str] = field(default_factory=list)

    def column_values(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "points_required": self.points_required,
            "discount_type": self.discount_type,
            "fixed_amount_minor": self.fixed_amount_minor,
            "percentage": self.percentage,
            "max_discount_minor": self.max_discount_minor,
            "scope": self.scope,
            "catalog_object_ids": list(self.catalog_object_ids),
        }


@dataclass(slots=True)
class CatalogSyncResult:
    program_id: str
    environment: str
    total: int
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0

    @property
    def synced(self) -> int:
        return self.created + self.updated + self.unchanged


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


def _money_amount(value: Any) -> int | None:
    if isinstance(value, dict):
        return _as_int(value.get("amount"))
    amount = getattr(value, "amount", None)
    return _as_int(amount)


def _legacy_discount(tier: RewardTier) -> dict[str, Any] | None:
    if isinstance(tier.discount, dict):
        return tier.discount
    reward = tier.reward if isinstance(tier.reward, dict) else {}
    if isinstance(reward.get("discount"), dict):
        return reward["discount"]
    definition = reward.get("definition")
    if isinstance(definition, dict) and isinstance(definition.get("discount"), dict):
        return definition["discount"]
    return None


def _describe(discount_type: LoyaltyDiscountType, fixed_minor: int | None, percentage: int | None) -> str:
    if discount_type == LoyaltyDiscountType.PERCENTAGE:
        return f"{percentage}% off your order"
    return f"${Decimal(fixed_minor or 0) / Decimal(100):.2f} off your order"


def parse_reward_tier(tier: RewardTier) -> ParsedRewardTier | None:
    """Translate a Square reward tier, or return None when its discount shape is unknown."""

    if tier.points < 0:
        return None

    discount_type: LoyaltyDiscountType | None = None
    fixed_minor: int | None = None
    percentage: int | None = None
    max_minor: int | None = None
    scope = LoyaltyRewardScope.ORDER
    catalog_ids: list[str] = []

    definition = tier.definition
    if definition is not None and definition.discount_type:
        if definition.discount_type == "FIXED_PERCENTAGE":
            percentage = _as_int(definition.percentage_discount)
            max_minor = _money_amount(definition.max_discount_money)
            discount_type = LoyaltyDiscountType.PERCENTAGE
        elif definition.discount_type == "FIXED_AMOUNT":
            fixed_minor = _money_amount(definition.fixed_discount_money)
            discount_type = LoyaltyDiscountType.FIXED_AMOUNT
        if definition.scope in LoyaltyRewardScope.__members__:
            scope = LoyaltyRewardScope(definition.scope)
        catalog_ids = list(definition.catalog_object_ids)
    else:
        legacy = _legacy_discount(tier)
        if legacy is not None:
            legacy_type = legacy.get("discount_type")
            if legacy_type == "FIXED_PERCENTAGE":
                percentage = _as_int(legacy.get("percentage"))
                max_minor = _money_amount(legacy.get("max_discount_money"))
                discount_type = LoyaltyDiscountType.PERCENTAGE
            elif legacy_type == "FIXED_AMOUNT":
                fixed_minor = _money_amount(legacy.get("amount_money"))
                discount_type = LoyaltyDiscountType.FIXED_AMOUNT

    if discount_type == LoyaltyDiscountType.PERCENTAGE and (percentage is None or not 0 < percentage <= 100):
        return None
    if discount_type == LoyaltyDiscountType.FIXED_AMOUNT and (fixed_minor is None or fixed_minor <= 0):
        return None
    if discount_type is None:
        return None

    return ParsedRewardTier(
        square_reward_id=tier.id,
        name=tier.name or f"{tier.points} Points Reward",
        description=_describe(discount_type, fixed_minor, percentage),
        points_required=tier.points,
        discount_type=discount_type,
        fixed_amount_minor=fixed_minor,
        percentage=percentage,
        max_discount_minor=max_minor,
        scope=scope,
        catalog_object_ids=catalog_ids,
    )


class RewardCatalogSync:
    """Upsert reward tiers keyed by Square reward tier id.

    Rows are only written when a value differs, so re-running against an
    unchanged program is a no-op. Tiers that vanish from Square are left in
    place; operators deactivate them by hand.
    """

    def __init__(self, context: LoyaltyContext) -> None:
        self._context = context
        self._session = context.session
        self._square = context.square
        self._store = get_loyalty_store()

    async def fetch_program(self, program_id: str | None = None) -> SquareLoyaltyProgram:
        target = program_id or self._context.settings.square_loyalty_program_id
        try:
            return await self._square.retrieve_program(target)
        except UpstreamError as exc:
            if exc.upstream_status == 404:
                raise LoyaltyNotFoundError("Loyalty program not found") from exc
            raise

    async def sync(self, program_id: str | None = None) -> CatalogSyncResult:
        program = await self.fetch_program(program_id)
        result = CatalogSyncResult(
            program_id=program.id,
            environment=self._context.environment,
            total=len(program.reward_tiers),
        )

        for tier in program.reward_tiers:
            parsed = parse_reward_tier(tier)
            if parsed is None:
                result.skipped += 1
                logger.warning(
                    "Skipping unparseable reward tier",
                    square_reward_id=tier.id,
                    points=tier.points,
                )
                continue
            outcome = await self._upsert(parsed)
            setattr(result, outcome, getattr(result, outcome) + 1)

        await self._session.flush()
        self._store.record_catalog_sync(synced=result.synced, skipped=result.skipped)
        logger.info(
            "Synced reward catalog",
            program_id=program.id,
            environment=result.environment,
            total=result.total,
            created=result.created,
            updated=result.updated,
            skipped=result.skipped,
        )
        return result

    async def _upsert(self, parsed: ParsedRewardTier) -> str:
        stmt = select(LoyaltyReward).where(LoyaltyReward.square_reward_id == parsed.square_reward_id)
        reward = (await self._session.execute(stmt)).scalars().first()
        values = parsed.column_values()

        if reward is None:
            self._session.add(
                LoyaltyReward(square_reward_id=parsed.square_reward_id, is_active=True, **values)
            )
            return "created"

        changed = False
        for column, value in values.items():
            if getattr(reward, column) != value:
                setattr(reward, column, value)
                changed = True
        return "updated" if changed else "unchanged"


__all__ = ["CatalogSyncResult", "ParsedRewardTier", "RewardCatalogSync", "parse_reward_tier"]
