"""Two-phase reward redemption across Square and Shopify.

States: requested -> reserved -> discount_issued -> finalized | released.
Points are reserved on Square first, a single-use Shopify discount code is
minted second, and only then is the cached balance lowered. The order
webhook (or an explicit failure report) later finalizes or releases the
Square reservation. An upstream timeout leaves the attempt in its current
state; repeating the request with the same idempotency key resumes it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import or_, select, update

from loyalbridge_api.models.loyalty import (
    LoyaltyAccount,
    LoyaltyRedemption,
    LoyaltyRedemptionStatus,
    LoyaltyReward,
    LoyaltyTransaction,
    LoyaltyTransactionType,
)
from loyalbridge_api.observability.loyalty import get_loyalty_store
from loyalbridge_api.services.errors import (
    InsufficientPointsError,
    LoyaltyError,
    LoyaltyNotFoundError,
    LoyaltyValidationError,
    UpstreamError,
    UpstreamTimeoutError,
)
from loyalbridge_api.services.shopify.discounts import (
    DiscountIssuer,
    IssuedDiscount,
    build_reward_price_rule,
    generate_discount_code,
)

from .accounts import LoyaltyAccountBinder
from .context import LoyaltyContext


REDEEMED_REWARD_STATUS = "REDEEMED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


@dataclass(slots=True)
class RedemptionOutcome:
    redemption: LoyaltyRedemption
    reward: LoyaltyReward | None
    new_balance: int
    configuration_note: str | None = None
    replayed: bool = False


@dataclass(slots=True)
class FinalizeOutcome:
    square_reward_id: str
    status: LoyaltyRedemptionStatus
    redemption: LoyaltyRedemption | None
    already_processed: bool = False
    new_balance: int | None = None


class RedemptionOrchestrator:
    def __init__(self, context: LoyaltyContext) -> None:
        self._context = context
        self._session = context.session
        self._square = context.square
        self._shopify = context.shopify
        self._settings = context.settings
        self._binder = LoyaltyAccountBinder(context)
        self._store = get_loyalty_store()

    async def redeem(
        self,
        *,
        account_ref: str,
        reward_ref: str,
        idempotency_key: str | None = None,
    ) -> RedemptionOutcome:
        key = idempotency_key or f"redeem-{uuid4().hex}"

        existing = await self._get_by_idempotency_key(key)
        if existing is not None:
            if existing.status in (LoyaltyRedemptionStatus.REQUESTED, LoyaltyRedemptionStatus.RESERVED):
                return await self._resume(existing)
            return await self._replay(existing)

        account = await self._binder.get_account(account_ref, for_update=True)
        if account is None:
            raise LoyaltyNotFoundError("Loyalty account not found")
        reward = await self._get_reward(reward_ref)
        if reward is None:
            raise LoyaltyNotFoundError("Reward not found")

        required = int(reward.points_required)
        if account.balance < required:
            self._store.record_redemption("insufficient_points")
            raise InsufficientPointsError(balance=account.balance, required=required)

        redemption = LoyaltyRedemption(
            loyalty_account_id=account.id,
            reward_id=reward.id,
            status=LoyaltyRedemptionStatus.REQUESTED,
            points_required=required,
            idempotency_key=key,
        )
        self._session.add(redemption)
        await self._session.flush()
        return await self._advance(redemption, account, reward)

    async def _resume(self, redemption: LoyaltyRedemption) -> RedemptionOutcome:
        """Continue an attempt parked by an upstream timeout."""

        account = await self._binder.get_account(str(redemption.loyalty_account_id), for_update=True)
        reward = await self._session.get(LoyaltyReward, redemption.reward_id) if redemption.reward_id else None
        if account is None or reward is None:
            raise LoyaltyNotFoundError("Redemption target no longer exists")

        required = int(redemption.points_required)
        if redemption.status == LoyaltyRedemptionStatus.REQUESTED and account.balance < required:
            balance = account.balance
            await self._record_failure(
                account_id=account.id,
                reward_id=reward.id,
                points_required=required,
                idempotency_key=redemption.idempotency_key,
                reason="Insufficient points",
            )
            self._store.record_redemption("insufficient_points")
            raise InsufficientPointsError(balance=balance, required=required)

        logger.info(
            "Resuming loyalty redemption",
            redemption_id=str(redemption.id),
            status=redemption.status.value,
        )
        return await self._advance(redemption, account, reward)

    async def _advance(
        self,
        redemption: LoyaltyRedemption,
        account: LoyaltyAccount,
        reward: LoyaltyReward,
    ) -> RedemptionOutcome:
        account_id = account.id
        reward_id = reward.id
        balance_before = account.balance
        required = int(redemption.points_required)
        key = redemption.idempotency_key

        # requested -> reserved; Square replays the same reward for a repeated key
        if redemption.status == LoyaltyRedemptionStatus.REQUESTED:
            try:
                square_reward = await self._square.create_reward(
                    account_id=account.square_loyalty_account_id,
                    reward_tier_id=reward.square_reward_id,
                    idempotency_key=key,
                )
            except UpstreamTimeoutError:
                self._store.record_upstream_failure("square", "create_reward")
                await self._park(redemption)
                raise
            except UpstreamError as exc:
                self._store.record_upstream_failure("square", "create_reward")
                await self._record_failure(
                    account_id=account_id,
                    reward_id=reward_id,
                    points_required=required,
                    idempotency_key=key,
                    reason="Failed to reserve reward",
                )
                raise UpstreamError(
                    "Failed to reserve reward",
                    service="square",
                    upstream_status=exc.upstream_status,
                    body=exc.body,
                    code="reserve_failed",
                    status_code=exc.status_code if exc.status_code >= 500 else 400,
                ) from exc

            redemption.status = LoyaltyRedemptionStatus.RESERVED
            redemption.square_reward_id = square_reward.id
            redemption.reserved_at = _utcnow()
            await self._session.flush()
        square_reward_id = redemption.square_reward_id

        # reserved -> discount_issued
        code = generate_discount_code(self._settings.discount_code_prefix)
        price_rule, note = build_reward_price_rule(
            reward,
            code=code,
            now=_utcnow(),
            validity_days=self._settings.discount_validity_days,
        )
        try:
            issued = await DiscountIssuer(self._shopify).issue(price_rule, code)
        except UpstreamTimeoutError:
            self._store.record_upstream_failure("shopify", "issue_discount")
            await self._park(redemption)
            raise
        except UpstreamError as exc:
            self._store.record_upstream_failure("shopify", "issue_discount")
            await self._release_square_reward(square_reward_id)
            await self._record_failure(
                account_id=account_id,
                reward_id=reward_id,
                points_required=required,
                idempotency_key=key,
                reason="Failed to create discount code",
                square_reward_id=square_reward_id,
            )
            raise UpstreamError(
                "Failed to create discount code",
                service="shopify",
                upstream_status=exc.upstream_status,
                body=exc.body,
                code="discount_failed",
                status_code=exc.status_code if exc.status_code >= 500 else 400,
            ) from exc

        decremented = await self._decrement_balance(account_id, required)
        if not decremented:
            # Lost a race with another redemption on the same account
            await self._release_square_reward(square_reward_id)
            await self._delete_price_rule(issued.price_rule_id)
            await self._record_failure(
                account_id=account_id,
                reward_id=reward_id,
                points_required=required,
                idempotency_key=key,
                reason="Insufficient points",
                square_reward_id=square_reward_id,
            )
            self._store.record_redemption("insufficient_points")
            raise InsufficientPointsError(balance=balance_before, required=required)

        await self._session.refresh(account)
        self._session.add(
            LoyaltyTransaction(
                loyalty_account_id=account_id,
                transaction_type=LoyaltyTransactionType.REDEMPTION,
                points=-required,
                description=f"Redeemed: {reward.name}",
                square_transaction_id=square_reward_id,
            )
        )
        self._mark_issued(redemption, issued, note)
        await self._session.commit()

        self._store.record_redemption("discount_issued")
        logger.info(
            "Issued loyalty redemption",
            redemption_id=str(redemption.id),
            account_id=str(account_id),
            square_reward_id=square_reward_id,
            points=required,
            new_balance=account.balance,
        )
        return RedemptionOutcome(
            redemption=redemption,
            reward=reward,
            new_balance=account.balance,
            configuration_note=note,
        )

    async def _park(self, redemption: LoyaltyRedemption) -> None:
        """Keep a timed-out attempt in its current state so a retry can resume it."""

        await self._session.commit()
        self._store.record_redemption("parked")
        logger.warning(
            "Parked loyalty redemption after upstream timeout",
            redemption_id=str(redemption.id),
            status=redemption.status.value,
            idempotency_key=redemption.idempotency_key,
        )

    async def finalize(
        self,
        *,
        success: bool,
        square_reward_id: str | None = None,
        discount_code: str | None = None,
        shopify_order_id: str | None = None,
    ) -> FinalizeOutcome:
        """Redeem (``success``) or release the Square reservation behind a redemption."""

        if not (square_reward_id or discount_code):
            raise LoyaltyValidationError("rewardId or discountCode is required")

        redemption = await self._find_redemption(square_reward_id=square_reward_id, discount_code=discount_code)
        reward_id = square_reward_id or (redemption.square_reward_id if redemption else None)
        if reward_id is None:
            raise LoyaltyNotFoundError("Redemption not found")

        if success:
            return await self._complete(reward_id, redemption, shopify_order_id)
        return await self._release(reward_id, redemption)

    async def _complete(
        self,
        reward_id: str,
        redemption: LoyaltyRedemption | None,
        shopify_order_id: str | None,
    ) -> FinalizeOutcome:
        if redemption is not None:
            if redemption.status == LoyaltyRedemptionStatus.FINALIZED:
                return FinalizeOutcome(
                    square_reward_id=reward_id,
                    status=redemption.status,
                    redemption=redemption,
                    already_processed=True,
                )
            if redemption.status in (LoyaltyRedemptionStatus.RELEASED, LoyaltyRedemptionStatus.FAILED):
                raise LoyaltyValidationError(
                    f"Redemption is {redemption.status.value} and cannot be finalized",
                    code="invalid_state",
                )

        try:
            await self._square.redeem_reward(
                reward_id,
                idempotency_key=f"finalize-{reward_id}",
                location_id=self._settings.square_location_id,
            )
        except UpstreamError as exc:
            if not await self._already_redeemed(reward_id):
                self._store.record_upstream_failure("square", "redeem_reward")
                raise UpstreamError(
                    "Failed to finalize reward",
                    service="square",
                    upstream_status=exc.upstream_status,
                    body=exc.body,
                    code="finalize_failed",
                    status_code=exc.status_code,
                ) from exc
            logger.info("Square reward already redeemed", square_reward_id=reward_id)

        if redemption is not None:
            redemption.status = LoyaltyRedemptionStatus.FINALIZED
            redemption.finalized_at = _utcnow()
            if shopify_order_id:
                redemption.shopify_order_id = str(shopify_order_id)
            await self._session.commit()

        self._store.record_redemption("finalized")
        logger.info(
            "Finalized loyalty redemption",
            square_reward_id=reward_id,
            shopify_order_id=shopify_order_id,
        )
        return FinalizeOutcome(
            square_reward_id=reward_id,
            status=LoyaltyRedemptionStatus.FINALIZED,
            redemption=redemption,
        )

    async def _release(self, reward_id: str, redemption: LoyaltyRedemption | None) -> FinalizeOutcome:
        if redemption is not None:
            if redemption.status == LoyaltyRedemptionStatus.RELEASED:
                return FinalizeOutcome(
                    square_reward_id=reward_id,
                    status=redemption.status,
                    redemption=redemption,
                    already_processed=True,
                )
            if redemption.status == LoyaltyRedemptionStatus.FINALIZED:
                raise LoyaltyValidationError(
                    "Redemption is finalized and cannot be released",
                    code="invalid_state",
                )

        try:
            await self._square.delete_reward(reward_id)
        except UpstreamError as exc:
            if exc.upstream_status != 404:
                self._store.record_upstream_failure("square", "delete_reward")
                raise UpstreamError(
                    "Failed to release reward",
                    service="square",
                    upstream_status=exc.upstream_status,
                    body=exc.body,
                    code="release_failed",
                    status_code=exc.status_code,
                ) from exc
            logger.info("Square reward already released", square_reward_id=reward_id)

        new_balance: int | None = None
        if redemption is not None:
            redemption.status = LoyaltyRedemptionStatus.RELEASED
            redemption.released_at = _utcnow()
            if redemption.shopify_price_rule_id:
                await self._delete_price_rule(redemption.shopify_price_rule_id)
            new_balance = await self._resync_after_release(redemption.loyalty_account_id)
            await self._session.commit()

        self._store.record_redemption("released")
        logger.info("Released loyalty redemption", square_reward_id=reward_id, new_balance=new_balance)
        return FinalizeOutcome(
            square_reward_id=reward_id,
            status=LoyaltyRedemptionStatus.RELEASED,
            redemption=redemption,
            new_balance=new_balance,
        )

    async def _resync_after_release(self, account_id: UUID) -> int | None:
        account = await self._session.get(LoyaltyAccount, account_id)
        if account is None:
            return None
        try:
            await self._binder.resync(account)
        except UpstreamError as exc:
            # Next identify or balance call corrects the cache
            logger.warning(
                "Balance resync after release failed",
                account_id=str(account_id),
                error=str(exc),
            )
        return account.balance

    async def _already_redeemed(self, reward_id: str) -> bool:
        try:
            reward = await self._square.retrieve_reward(reward_id)
        except UpstreamError:
            return False
        return reward.status == REDEEMED_REWARD_STATUS

    async def _replay(self, redemption: LoyaltyRedemption) -> RedemptionOutcome:
        if redemption.status == LoyaltyRedemptionStatus.FAILED:
            raise LoyaltyError(
                redemption.failure_reason or "Redemption did not complete",
                code="redemption_failed",
                details={"idempotencyKey": redemption.idempotency_key},
            )
        account = await self._session.get(LoyaltyAccount, redemption.loyalty_account_id)
        reward = await self._session.get(LoyaltyReward, redemption.reward_id) if redemption.reward_id else None
        metadata = redemption.metadata_json if isinstance(redemption.metadata_json, dict) else {}
        self._store.record_redemption("replayed")
        return RedemptionOutcome(
            redemption=redemption,
            reward=reward,
            new_balance=account.balance if account is not None else 0,
            configuration_note=metadata.get("configuration_note"),
            replayed=True,
        )

    async def _decrement_balance(self, account_id: UUID, points: int) -> bool:
        stmt = (
            update(LoyaltyAccount)
            .where(LoyaltyAccount.id == account_id, LoyaltyAccount.balance >= points)
            .values(balance=LoyaltyAccount.balance - points)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def _record_failure(
        self,
        *,
        account_id: UUID,
        reward_id: UUID,
        points_required: int,
        idempotency_key: str,
        reason: str,
        square_reward_id: str | None = None,
    ) -> None:
        """Discard the in-flight work and keep only an audit row for the attempt."""

        await self._session.rollback()
        # Resumed attempts already have a committed row under this key
        redemption = await self._get_by_idempotency_key(idempotency_key)
        if redemption is None:
            redemption = LoyaltyRedemption(
                loyalty_account_id=account_id,
                reward_id=reward_id,
                points_required=points_required,
                idempotency_key=idempotency_key,
            )
            self._session.add(redemption)
        redemption.status = LoyaltyRedemptionStatus.FAILED
        redemption.square_reward_id = square_reward_id
        redemption.failure_reason = reason
        await self._session.commit()
        self._store.record_redemption("failed")
        logger.warning(
            "Loyalty redemption failed",
            account_id=str(account_id),
            reward_id=str(reward_id),
            reason=reason,
        )

    async def _release_square_reward(self, square_reward_id: str) -> None:
        try:
            await self._square.delete_reward(square_reward_id)
        except UpstreamError as exc:
            self._store.record_upstream_failure("square", "delete_reward")
            logger.error(
                "Failed to release Square reservation",
                square_reward_id=square_reward_id,
                error=str(exc),
            )

    async def _delete_price_rule(self, price_rule_id: str) -> None:
        try:
            await self._shopify.delete_price_rule(price_rule_id)
        except UpstreamError as exc:
            self._store.record_upstream_failure("shopify", "delete_price_rule")
            logger.warning("Failed to delete Shopify price rule", price_rule_id=price_rule_id, error=str(exc))

    @staticmethod
    def _mark_issued(redemption: LoyaltyRedemption, issued: IssuedDiscount, note: str | None) -> None:
        redemption.status = LoyaltyRedemptionStatus.DISCOUNT_ISSUED
        redemption.discount_code = issued.code
        redemption.shopify_price_rule_id = issued.price_rule_id
        redemption.discount_expires_at = issued.expires_at
        redemption.issued_at = _utcnow()
        metadata: dict[str, Any] = {}
        if note:
            metadata["configuration_note"] = note
        redemption.metadata_json = metadata or None

    async def _get_by_idempotency_key(self, key: str) -> LoyaltyRedemption | None:
        stmt = select(LoyaltyRedemption).where(LoyaltyRedemption.idempotency_key == key)
        return (await self._session.execute(stmt)).scalars().first()

    async def _get_reward(self, reward_ref: str) -> LoyaltyReward | None:
        reward_uuid = _parse_uuid(reward_ref)
        if reward_uuid is not None:
            stmt = select(LoyaltyReward).where(LoyaltyReward.id == reward_uuid)
        else:
            stmt = select(LoyaltyReward).where(LoyaltyReward.square_reward_id == reward_ref)
        stmt = stmt.where(LoyaltyReward.is_active.is_(True))
        return (await self._session.execute(stmt)).scalars().first()

    async def _find_redemption(
        self,
        *,
        square_reward_id: str | None,
        discount_code: str | None,
    ) -> LoyaltyRedemption | None:
        filters = []
        if square_reward_id:
            filters.append(LoyaltyRedemption.square_reward_id == square_reward_id)
        if discount_code:
            filters.append(LoyaltyRedemption.discount_code == discount_code)
        stmt = select(LoyaltyRedemption).where(or_(*filters)).order_by(LoyaltyRedemption.created_at.desc())
        return (await self._session.execute(stmt)).scalars().first()


__all__ = ["FinalizeOutcome", "RedemptionOrchestrator", "RedemptionOutcome"]
