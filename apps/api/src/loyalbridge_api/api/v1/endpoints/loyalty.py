"""Storefront widget endpoints for identification, rewards and redemption."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from loyalbridge_api.api.dependencies.clients import get_loyalty_context
from loyalbridge_api.api.dependencies.security import require_admin_api_key
from loyalbridge_api.models.loyalty import LoyaltyAccount, LoyaltyReward
from loyalbridge_api.schemas.square import SquareLoyaltyAccount
from loyalbridge_api.services.loyalty import (
    EvaluatedPromotion,
    IdentityResolver,
    LoyaltyAccountBinder,
    LoyaltyContext,
    PromotionService,
    RedemptionOrchestrator,
    RewardCatalogSync,
    normalize_email,
)


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class LoyaltyAccountPayload(BaseModel):
    id: Optional[UUID] = Field(None, description="Internal account id, null when not mirrored locally")
    squareLoyaltyAccountId: str
    programId: Optional[str]
    balance: int
    lifetimePoints: int
    lastSyncedAt: Optional[datetime] = None


class RewardPayload(BaseModel):
    id: UUID
    squareRewardId: str
    name: str
    description: Optional[str]
    pointsRequired: int
    discountType: str
    fixedAmountMinor: Optional[int]
    percentage: Optional[int]
    maxDiscountMinor: Optional[int]
    scope: str


class IdentifyRequest(BaseModel):
    phone: Optional[str] = None
    email: Optional[str] = None
    shopifyCustomerId: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None


class IdentifyResponse(BaseModel):
    profileId: UUID
    created: bool
    loyaltyAccount: LoyaltyAccountPayload
    availableRewards: list[RewardPayload]
    environment: str


class LookupRequest(BaseModel):
    phone: str = Field(..., min_length=1)


class AccountEnvelope(BaseModel):
    loyaltyAccount: Optional[LoyaltyAccountPayload]


class AccountRequest(BaseModel):
    customerId: Optional[str] = Field(None, description="Shopify customer id")
    email: Optional[str] = None


class AccountResponse(BaseModel):
    loyaltyAccount: Optional[LoyaltyAccountPayload]
    availableRewards: list[RewardPayload]


class AvailableRewardsResponse(BaseModel):
    accountId: str
    balance: Optional[int]
    availableRewards: list[RewardPayload]


class RewardTierPayload(BaseModel):
    id: str
    name: Optional[str]
    points: int
    definition: Optional[dict[str, Any]]


class TiersResponse(BaseModel):
    programId: str
    rewardTiers: list[RewardTierPayload]
    terminology: Optional[dict[str, Any]]
    accrualRules: list[dict[str, Any]]
    environment: str


class PromotionWindow(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class PromotionPayload(BaseModel):
    # Promotions keep Square's snake_case shape for the widget
    id: str
    name: str
    status: Optional[str]
    description: Optional[str]
    incentive_type: Optional[str]
    available_time: Optional[PromotionWindow]
    customer_eligible: bool
    eligibility_reason: str


class PromotionsResponse(BaseModel):
    promotions: list[PromotionPayload]
    totalActivePromotions: int
    customerEligibleCount: int
    environment: str


class RedeemRequest(BaseModel):
    loyaltyAccountId: str = Field(..., min_length=1, description="Internal or Square loyalty account id")
    rewardId: str = Field(..., min_length=1, description="Internal reward id or Square reward tier id")
    idempotencyKey: Optional[str] = Field(None, max_length=128)


class RedeemResponse(BaseModel):
    success: bool
    redemptionId: UUID
    status: str
    newBalance: int
    squareRewardId: Optional[str]
    discountCode: Optional[str]
    discountExpiresAt: Optional[datetime]
    configurationNote: Optional[str]
    replayed: bool


class PromotionRedeemRequest(BaseModel):
    loyaltyAccountId: str = Field(..., min_length=1)
    promotionId: str = Field(..., min_length=1)
    customerId: Optional[str] = Field(None, description="Square customer id")
    programId: Optional[str] = None


class PromotionRedeemResponse(BaseModel):
    rewardId: str
    discountCode: Optional[str]
    discountExpiresAt: Optional[datetime]
    promotionId: str
    promotionName: str
    environment: str
    message: str


class FinalizeRequest(BaseModel):
    rewardId: Optional[str] = Field(None, description="Square reward id")
    discountCode: Optional[str] = None
    success: bool
    shopifyOrderId: Optional[str] = None


class FinalizeResponse(BaseModel):
    squareRewardId: str
    status: str
    alreadyProcessed: bool
    newBalance: Optional[int]


class SyncRequest(BaseModel):
    programId: Optional[str] = None


class SyncResponse(BaseModel):
    success: bool
    message: str
    count: int
    created: int
    updated: int
    skipped: int
    total: int
    programId: str
    environment: str


def _account_payload(account: LoyaltyAccount) -> LoyaltyAccountPayload:
    return LoyaltyAccountPayload(
        id=account.id,
        squareLoyaltyAccountId=account.square_loyalty_account_id,
        programId=account.program_id,
        balance=account.balance,
        lifetimePoints=account.lifetime_points,
        lastSyncedAt=account.last_synced_at,
    )


def _square_account_payload(account: SquareLoyaltyAccount) -> LoyaltyAccountPayload:
    return LoyaltyAccountPayload(
        id=None,
        squareLoyaltyAccountId=account.id,
        programId=account.program_id,
        balance=account.balance,
        lifetimePoints=account.lifetime_points,
    )


def _reward_payload(reward: LoyaltyReward) -> RewardPayload:
    return RewardPayload(
        id=reward.id,
        squareRewardId=reward.square_reward_id,
        name=reward.name,
        description=reward.description,
        pointsRequired=reward.points_required,
        discountType=reward.discount_type.value,
        fixedAmountMinor=reward.fixed_amount_minor,
        percentage=reward.percentage,
        maxDiscountMinor=reward.max_discount_minor,
        scope=reward.scope.value,
    )


def _promotion_payload(evaluated: EvaluatedPromotion) -> PromotionPayload:
    promotion = evaluated.promotion
    window = promotion.available_time
    return PromotionPayload(
        id=promotion.id,
        name=promotion.name,
        status=promotion.status,
        description=promotion.description,
        incentive_type=promotion.incentive.type if promotion.incentive else None,
        available_time=PromotionWindow(start_date=window.start_date, end_date=window.end_date) if window else None,
        customer_eligible=evaluated.customer_eligible,
        eligibility_reason=evaluated.eligibility_reason,
    )


@router.post("/identify", response_model=IdentifyResponse)
async def identify_customer(
    payload: IdentifyRequest,
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> IdentifyResponse:
    profile = await IdentityResolver(context.session).resolve(
        phone=payload.phone,
        email=payload.email,
        shopify_customer_id=payload.shopifyCustomerId,
        first_name=payload.firstName,
        last_name=payload.lastName,
    )
    # Profile survives even when enrollment below fails
    await context.session.commit()

    bound = await LoyaltyAccountBinder(context).bind(profile, phone=payload.phone)
    await context.session.commit()

    return IdentifyResponse(
        profileId=profile.id,
        created=bound.created,
        loyaltyAccount=_account_payload(bound.account),
        availableRewards=[_reward_payload(reward) for reward in bound.available_rewards],
        environment=context.environment,
    )


@router.post("/lookup", response_model=AccountEnvelope)
async def lookup_by_phone(
    payload: LookupRequest,
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> AccountEnvelope:
    lookup = await LoyaltyAccountBinder(context).lookup_by_phone(payload.phone)
    if lookup is None:
        return AccountEnvelope(loyaltyAccount=None)
    await context.session.commit()
    if lookup.account is not None:
        return AccountEnvelope(loyaltyAccount=_account_payload(lookup.account))
    return AccountEnvelope(loyaltyAccount=_square_account_payload(lookup.square_account))


@router.post("/account", response_model=AccountResponse)
async def fetch_account(
    payload: AccountRequest,
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> AccountResponse:
    profile = await IdentityResolver(context.session).find(
        shopify_customer_id=payload.customerId.strip() if payload.customerId else None,
        email=normalize_email(payload.email) if payload.email else None,
    )
    if profile is None:
        return AccountResponse(loyaltyAccount=None, availableRewards=[])

    binder = LoyaltyAccountBinder(context)
    account = await binder.get_for_profile(profile)
    if account is None:
        return AccountResponse(loyaltyAccount=None, availableRewards=[])
    rewards = await binder.list_available_rewards(account)
    return AccountResponse(
        loyaltyAccount=_account_payload(account),
        availableRewards=[_reward_payload(reward) for reward in rewards],
    )


@router.get("/available-rewards", response_model=AvailableRewardsResponse)
async def available_rewards(
    account_id: str = Query(..., alias="accountId", min_length=1),
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> AvailableRewardsResponse:
    binder = LoyaltyAccountBinder(context)
    account = await binder.get_account(account_id)
    if account is None:
        return AvailableRewardsResponse(accountId=account_id, balance=None, availableRewards=[])
    rewards = await binder.list_available_rewards(account)
    return AvailableRewardsResponse(
        accountId=account_id,
        balance=account.balance,
        availableRewards=[_reward_payload(reward) for reward in rewards],
    )


@router.get("/balance", response_model=AccountEnvelope)
async def refresh_balance(
    account_id: str = Query(..., alias="accountId", min_length=1),
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> AccountEnvelope:
    binder = LoyaltyAccountBinder(context)
    account = await binder.get_account(account_id)
    if account is None:
        return AccountEnvelope(loyaltyAccount=None)
    await binder.resync(account)
    await context.session.commit()
    return AccountEnvelope(loyaltyAccount=_account_payload(account))


@router.get("/tiers", response_model=TiersResponse)
async def list_tiers(
    program_id: Optional[str] = Query(None, alias="programId"),
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> TiersResponse:
    program = await RewardCatalogSync(context).fetch_program(program_id)
    return TiersResponse(
        programId=program.id,
        rewardTiers=[
            RewardTierPayload(
                id=tier.id,
                name=tier.name,
                points=tier.points,
                definition=tier.definition.model_dump(exclude_none=True) if tier.definition else None,
            )
            for tier in program.reward_tiers
        ],
        terminology=program.terminology,
        accrualRules=program.accrual_rules,
        environment=context.environment,
    )


@router.get("/promotions", response_model=PromotionsResponse)
async def list_promotions(
    program_id: Optional[str] = Query(None, alias="programId"),
    customer_id: Optional[str] = Query(None, alias="customerId"),
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> PromotionsResponse:
    evaluated = await PromotionService(context).list_for_customer(
        program_id=program_id,
        square_customer_id=customer_id,
    )
    promotions = [_promotion_payload(item) for item in evaluated]
    return PromotionsResponse(
        promotions=promotions,
        totalActivePromotions=sum(1 for item in promotions if (item.status or "").upper() == "ACTIVE"),
        customerEligibleCount=sum(1 for item in promotions if item.customer_eligible),
        environment=context.environment,
    )


@router.post("/redeem", response_model=RedeemResponse)
async def redeem_reward(
    payload: RedeemRequest,
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> RedeemResponse:
    outcome = await RedemptionOrchestrator(context).redeem(
        account_ref=payload.loyaltyAccountId,
        reward_ref=payload.rewardId,
        idempotency_key=payload.idempotencyKey,
    )
    redemption = outcome.redemption
    return RedeemResponse(
        success=True,
        redemptionId=redemption.id,
        status=redemption.status.value,
        newBalance=outcome.new_balance,
        squareRewardId=redemption.square_reward_id,
        discountCode=redemption.discount_code,
        discountExpiresAt=redemption.discount_expires_at,
        configurationNote=outcome.configuration_note,
        replayed=outcome.replayed,
    )


@router.post("/promotions/redeem", response_model=PromotionRedeemResponse)
async def redeem_promotion(
    payload: PromotionRedeemRequest,
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> PromotionRedeemResponse:
    result = await PromotionService(context).redeem(
        account_ref=payload.loyaltyAccountId,
        promotion_id=payload.promotionId,
        program_id=payload.programId,
        square_customer_id=payload.customerId,
    )
    return PromotionRedeemResponse(
        rewardId=result.square_reward_id,
        discountCode=result.discount_code,
        discountExpiresAt=result.discount_expires_at,
        promotionId=result.promotion.id,
        promotionName=result.promotion.name,
        environment=context.environment,
        message="Promotion redeemed successfully",
    )


@router.post("/finalize", response_model=FinalizeResponse)
async def finalize_redemption(
    payload: FinalizeRequest,
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> FinalizeResponse:
    outcome = await RedemptionOrchestrator(context).finalize(
        success=payload.success,
        square_reward_id=payload.rewardId,
        discount_code=payload.discountCode,
        shopify_order_id=payload.shopifyOrderId,
    )
    return FinalizeResponse(
        squareRewardId=outcome.square_reward_id,
        status=outcome.status.value,
        alreadyProcessed=outcome.already_processed,
        newBalance=outcome.new_balance,
    )


@router.post(
    "/rewards/sync",
    response_model=SyncResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def sync_rewards(
    payload: SyncRequest | None = None,
    context: LoyaltyContext = Depends(get_loyalty_context),
) -> SyncResponse:
    result = await RewardCatalogSync(context).sync(payload.programId if payload else None)
    await context.session.commit()
    return SyncResponse(
        success=True,
        message=f"Synced {result.synced} of {result.total} reward tiers",
        count=result.synced,
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        total=result.total,
        programId=result.program_id,
        environment=result.environment,
    )
