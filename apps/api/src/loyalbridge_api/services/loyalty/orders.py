"""Shopify ``orders/create`` webhook handling: finalize redemptions, award points."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import Decimal

from loguru import logger
from sqlalchemy import select

from loyalbridge_api.models.customer_profile import CustomerProfile
from loyalbridge_api.models.loyalty import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionType
from loyalbridge_api.observability.loyalty import get_loyalty_store
from loyalbridge_api.schemas.shopify import ShopifyOrder
from loyalbridge_api.services.shopify.discounts import CODE_PATTERN_SUFFIX

from .accounts import LoyaltyAccountBinder
from .context import LoyaltyContext
from .identity import normalize_email, normalize_phone
from .redemption import RedemptionOrchestrator


@dataclass(slots=True)
class OrderWebhookResult:
    order_id: str
    processed_discounts: int
    finalize_failures: int
    points_eligible: bool
    points_awarded: int


class OrderWebhookProcessor:
    """Never raises for per-item failures."""

    def __init__(self, context: LoyaltyContext) -> None:
        self._context = context
        self._session = context.session
        self._square = context.square
        self._settings = context.settings
        self._orchestrator = RedemptionOrchestrator(context)
        self._binder = LoyaltyAccountBinder(context)
        self._store = get_loyalty_store()
        self._code_pattern = re.compile(
            rf"^{re.escape(self._settings.discount_code_prefix)}{CODE_PATTERN_SUFFIX}$"
        )

    def reward_codes(self, order: ShopifyOrder) -> list[str]:
        return [code for code in order.applied_codes() if self._code_pattern.match(code)]

    async def process(self, order: ShopifyOrder) -> OrderWebhookResult:
        order_id = str(order.id)
        codes = self.reward_codes(order)
        failures = 0
        for code in codes:
            try:
                await self._orchestrator.finalize(
                    success=True,
                    discount_code=code,
                    shopify_order_id=order_id,
                )
            except Exception as exc:
                # Shopify retries the whole webhook on any non-2xx
                failures += 1
                await self._session.rollback()
                logger.opt(exception=exc).error(
                    "Failed to finalize reward from order webhook",
                    order_id=order_id,
                    discount_code=code,
                    error=str(exc),
                )

        points_eligible = order.total_price > 0 and order.customer is not None
        points_awarded = 0
        if points_eligible:
            try:
                points_awarded = await self._accumulate(order)
            except Exception as exc:
                await self._session.rollback()
                logger.opt(exception=exc).error(
                    "Points accumulation failed",
                    order_id=order_id,
                    error=str(exc),
                )

        self._store.record_webhook(
            processed_discounts=len(codes),
            finalize_failures=failures,
            points_awarded=points_awarded > 0,
        )
        logger.info(
            "Processed order webhook",
            order_id=order_id,
            processed_discounts=len(codes),
            finalize_failures=failures,
            points_awarded=points_awarded,
        )
        return OrderWebhookResult(
            order_id=order_id,
            processed_discounts=len(codes),
            finalize_failures=failures,
            points_eligible=points_eligible,
            points_awarded=points_awarded,
        )

    def points_for_total(self, total: Decimal) -> int:
        return math.floor(total * Decimal(str(self._settings.points_per_currency_unit)))

    async def _accumulate(self, order: ShopifyOrder) -> int:
        points = self.points_for_total(order.total_price)
        if points <= 0:
            logger.info("Order total too low for points", order_id=order.id)
            return 0

        account = await self._local_account(order)
        square_account_id = account.square_loyalty_account_id if account is not None else None
        if square_account_id is None:
            square_account_id = await self._search_square_account(order)
        if square_account_id is None:
            logger.info("No loyalty account for order customer", order_id=order.id)
            return 0

        result = await self._square.accumulate_points(
            account_id=square_account_id,
            points=points,
            order_id=f"shopify-{order.id}",
            idempotency_key=f"accumulate-{order.id}",
            location_id=self._settings.square_location_id,
        )

        if account is None:
            account = await self._binder.get_account(square_account_id)
        if account is not None:
            if result.account is not None:
                account.balance = max(result.account.balance, 0)
                account.lifetime_points = result.account.lifetime_points
            else:
                await self._binder.resync(account)
            self._session.add(
                LoyaltyTransaction(
                    loyalty_account_id=account.id,
                    transaction_type=LoyaltyTransactionType.EARN,
                    points=points,
                    description=f"Order {order.name or order.id}",
                    square_transaction_id=result.event_id,
                )
            )
            await self._session.commit()

        logger.info(
            "Accumulated loyalty points",
            order_id=order.id,
            square_loyalty_account_id=square_account_id,
            points=points,
        )
        return points

    async def _local_account(self, order: ShopifyOrder) -> LoyaltyAccount | None:
        customer = order.customer
        if customer is None or customer.id is None:
            return None
        stmt = (
            select(LoyaltyAccount)
            .join(CustomerProfile, CustomerProfile.id == LoyaltyAccount.profile_id)
            .where(CustomerProfile.shopify_customer_id == str(customer.id))
        )
        return (await self._session.execute(stmt)).scalars().first()

    async def _search_square_account(self, order: ShopifyOrder) -> str | None:
        customer = order.customer
        phone = (customer.phone if customer else None) or order.phone
        email = (customer.email if customer else None) or order.email
        if phone:
            matches = await self._square.search_loyalty_accounts(phone=normalize_phone(phone))
            return matches[0].id if matches else None
        if email:
            customers = await self._square.search_customers(email=normalize_email(email))
            if not customers:
                return None
            matches = await self._square.search_loyalty_accounts(customer_ids=[customers[0].id])
            return matches[0].id if matches else None
        return None


__all__ = ["OrderWebhookProcessor", "OrderWebhookResult"]
