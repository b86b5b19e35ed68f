"""Promotion eligibility and promotion redemption."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable
from uuid import uuid4

from loguru import logger

from loyalbridge_api.models.customer_profile import CustomerProfile
from loyalbridge_api.models.loyalty import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionType
from loyalbridge_api.observability.loyalty import get_loyalty_store
from loyalbridge_api.schemas.square import SquareLoyaltyPromotion
from loyalbridge_api.services.errors import LoyaltyValidationError, UpstreamError, UpstreamTimeoutError
from loyalbridge_api.services.shopify.discounts import DiscountIssuer, build_promotion_price_rule

from .accounts import LoyaltyAccountBinder
from .context import LoyaltyContext


ACTIVE_STATUS = "ACTIVE"

REASON_INACTIVE = "inactive"
REASON_OUTSIDE_WINDOW = "outside_date_window"
REASON_BIRTHDAY_MONTH = "birthday_month"
REASON_NOT_BIRTHDAY_MONTH = "not_birthday_month"
REASON_BIRTHDAY_UNKNOWN = "birthday_unknown"
REASON_GENERAL = "general_promotion"


@dataclass(slots=True)
class EvaluatedPromotion:
    promotion: SquareLoyaltyPromotion
    customer_eligible: bool
    eligibility_reason: str


def _within_window(promotion: SquareLoyaltyPromotion, today: date) -> bool:
    window = promotion.available_time
    if window is None:
        return True
    if window.start_date is not None and today < window.start_date:
        return False
    if window.end_date is not None and today > window.end_date:
        return False
    return True


def evaluate_promotion(
    promotion: SquareLoyaltyPromotion,
    *,
    birth_month: int | None,
    today: date,
) -> EvaluatedPromotion:
    if (promotion.status or "").upper() != ACTIVE_STATUS:
        return EvaluatedPromotion(promotion, False, REASON_INACTIVE)
    if not _within_window(promotion, today):
        return EvaluatedPromotion(promotion, False, REASON_OUTSIDE_WINDOW)
    if "birthday" in promotion.name.lower():
        if birth_month is None:
            return EvaluatedPromotion(promotion, False, REASON_BIRTHDAY_UNKNOWN)
        if birth_month == today.month:
            return EvaluatedPromotion(promotion, True, REASON_BIRTHDAY_MONTH)
        return EvaluatedPromotion(promotion, False, REASON_NOT_BIRTHDAY_MONTH)
    return EvaluatedPromotion(promotion, True, REASON_GENERAL)


def evaluate_promotions(
    promotions: Iterable[SquareLoyaltyPromotion],
    *,
    birth_month: int | None,
    today: date,
) -> list[EvaluatedPromotion]:
    """Annotate each promotion with customer eligibility. Pure; no I/O."""

    return [evaluate_promotion(promotion, birth_month=birth_month, today=today) for promotion in promotions]


@dataclass(slots=True)
class PromotionRedemption:
    square_reward_id: str
    discount_code: str | None
    discount_expires_at: datetime | None
    promotion: SquareLoyaltyPromotion


class PromotionService:
    def __init__(self, context: LoyaltyContext) -> None:
        self._context = context
        self._session = context.session
        self._square = context.square
        self._shopify = context.shopify
        self._settings = context.settings
        self._binder = LoyaltyAccountBinder(context)
        self._store = get_loyalty_store()

    async def customer_birth_month(self, square_customer_id: str | None) -> int | None:
        if not square_customer_id:
            return None
        try:
            customer = await self._square.retrieve_customer(square_customer_id)
        except UpstreamTimeoutError:
            raise
        except UpstreamError as exc:
            if exc.upstream_status != 404:
                raise
            logger.info("Square customer not found for promotions", square_customer_id=square_customer_id)
            return None
        return customer.birth_month

    async def list_for_customer(
        self,
        *,
        program_id: str | None = None,
        square_customer_id: str | None = None,
        today: date | None = None,
    ) -> list[EvaluatedPromotion]:
        target_program = program_id or await self._context.program_id()
        promotions = await self._square.list_promotions(target_program)
        birth_month = await self.customer_birth_month(square_customer_id)
        return evaluate_promotions(
            promotions,
            birth_month=birth_month,
            today=today or datetime.now(timezone.utc).date(),
        )

    async def redeem(
        self,
        *,
        account_ref: str,
        promotion_id: str,
        program_id: str | None = None,
        square_customer_id: str | None = None,
        today: date | None = None,
    ) -> PromotionRedemption:
        account = await self._binder.get_account(account_ref)
        square_account_id = account.square_loyalty_account_id if account is not None else account_ref
        if square_customer_id is None and account is not None:
            square_customer_id = await self._profile_square_customer_id(account)

        target_program = program_id or await self._context.program_id()
        promotion = await self._square.retrieve_promotion(target_program, promotion_id)
        evaluation = evaluate_promotion(
            promotion,
            birth_month=await self.customer_birth_month(square_customer_id),
            today=today or datetime.now(timezone.utc).date(),
        )
        if not evaluation.customer_eligible:
            raise LoyaltyValidationError(
                "Promotion is not available for this customer",
                code="promotion_ineligible",
                details={"reason": evaluation.eligibility_reason},
            )

        try:
            square_reward = await self._square.create_reward(
                account_id=square_account_id,
                promotion_id=promotion.id,
                idempotency_key=f"promotion-{promotion.id}-{square_account_id}-{uuid4().hex[:12]}",
            )
        except UpstreamError as exc:
            self._store.record_upstream_failure("square", "create_promotion_reward")
            if isinstance(exc, UpstreamTimeoutError):
                raise
            raise UpstreamError(
                "Failed to create promotion reward in Square",
                service="square",
                upstream_status=exc.upstream_status,
                body=exc.body,
                code="reserve_failed",
                status_code=exc.status_code if exc.status_code >= 500 else 400,
            ) from exc

        code = f"{self._settings.promotion_code_prefix}{square_reward.id[:8]}"
        price_rule = build_promotion_price_rule(
            promotion,
            now=datetime.now(timezone.utc),
            validity_days=self._settings.discount_validity_days,
        )
        try:
            issued = await DiscountIssuer(self._shopify).issue(price_rule, code)
        except UpstreamError as exc:
            self._store.record_upstream_failure("shopify", "issue_promotion_discount")
            try:
                await self._square.delete_reward(square_reward.id)
            except UpstreamError as cleanup_error:
                logger.error(
                    "Failed to clean up Square promotion reward",
                    square_reward_id=square_reward.id,
                    error=str(cleanup_error),
                )
            raise UpstreamError(
                "Failed to create promotion discount code",
                service="shopify",
                upstream_status=exc.upstream_status,
                body=exc.body,
                code="discount_failed",
                status_code=500,
            ) from exc

        if account is not None:
            self._session.add(
                LoyaltyTransaction(
                    loyalty_account_id=account.id,
                    transaction_type=LoyaltyTransactionType.REDEEM,
                    points=0,
                    description=f"Redeemed promotion: {promotion.name}",
                    square_transaction_id=square_reward.id,
                )
            )
            await self._session.commit()

        logger.info(
            "Redeemed loyalty promotion",
            promotion_id=promotion.id,
            square_reward_id=square_reward.id,
            discount_code=issued.code,
        )
        return PromotionRedemption(
            square_reward_id=square_reward.id,
            discount_code=issued.code,
            discount_expires_at=issued.expires_at,
            promotion=promotion,
        )

    async def _profile_square_customer_id(self, account: LoyaltyAccount) -> str | None:
        profile = await self._session.get(CustomerProfile, account.profile_id)
        return profile.square_customer_id if profile is not None else None


__all__ = [
    "EvaluatedPromotion",
    "PromotionRedemption",
    "PromotionService",
    "evaluate_promotion",
    "evaluate_promotions",
]
