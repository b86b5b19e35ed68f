"""Pydantic models for the subset of the Square REST API this service reads.

Unknown fields are ignored so Square can add attributes without breaking
parsing; fields the service depends on are required so malformed responses
fail at the boundary instead of deep inside a workflow.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SquareModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Money(SquareModel):
    amount: int
    currency: Optional[str] = None


class SquareCustomer(SquareModel):
    id: str
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email_address: Optional[str] = None
    phone_number: Optional[str] = None
    birthday: Optional[str] = None

    @property
    def birth_month(self) -> int | None:
        """Month from Square's ``YYYY-MM-DD`` or ``0000-MM-DD`` birthday."""

        if not self.birthday:
            return None
        parts = self.birthday.split("-")
        if len(parts) < 2:
            return None
        try:
            month = int(parts[1])
        except ValueError:
            return None
        return month if 1 <= month <= 12 else None


class LoyaltyAccountMapping(SquareModel):
    id: Optional[str] = None
    phone_number: Optional[str] = None


class SquareLoyaltyAccount(SquareModel):
    id: str
    program_id: Optional[str] = None
    customer_id: Optional[str] = None
    balance: int = 0
    lifetime_points: int = 0
    mapping: Optional[LoyaltyAccountMapping] = None


class RewardDefinition(SquareModel):
    scope: Optional[str] = None
    discount_type: Optional[str] = None
    percentage_discount: Optional[str] = None
    fixed_discount_money: Optional[Money] = None
    max_discount_money: Optional[Money] = None
    catalog_object_ids: list[str] = Field(default_factory=list)


class RewardTier(SquareModel):
    id: str
    name: Optional[str] = None
    points: int
    definition: Optional[RewardDefinition] = None
    # Older program payloads nest the discount directly on the tier
    discount: Optional[dict[str, Any]] = None
    reward: Optional[dict[str, Any]] = None
    pricing_rule_reference: Optional[dict[str, Any]] = None


class SquareLoyaltyProgram(SquareModel):
    id: str
    status: Optional[str] = None
    reward_tiers: list[RewardTier] = Field(default_factory=list)
    terminology: Optional[dict[str, Any]] = None
    accrual_rules: list[dict[str, Any]] = Field(default_factory=list)
    location_ids: list[str] = Field(default_factory=list)


class SquareLoyaltyReward(SquareModel):
    id: str
    status: Optional[str] = None
    loyalty_account_id: Optional[str] = None
    reward_tier_id: Optional[str] = None
    loyalty_promotion_id: Optional[str] = None
    points: Optional[int] = None
    order_id: Optional[str] = None


class PromotionAvailableTime(SquareModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _date_prefix(cls, value: object) -> object:
        # Square returns either a bare date or an RFC 3339 timestamp
        if isinstance(value, str) and len(value) > 10:
            return value[:10]
        return value or None


class PromotionIncentive(SquareModel):
    type: Optional[str] = None
    percentage_discount: Optional[float] = None
    fixed_discount_money: Optional[Money] = None


class SquareLoyaltyPromotion(SquareModel):
    id: str
    name: str = ""
    status: Optional[str] = None
    description: Optional[str] = None
    loyalty_program_id: Optional[str] = None
    incentive: Optional[PromotionIncentive] = None
    available_time: Optional[PromotionAvailableTime] = None
    minimum_spend_amount_money: Optional[Money] = None


class SquareLoyaltyEvent(SquareModel):
    id: str
    type: Optional[str] = None
    loyalty_account_id: Optional[str] = None


class AccumulatePointsResult(SquareModel):
    account: Optional[SquareLoyaltyAccount] = Field(default=None, alias="loyalty_account")
    events: list[SquareLoyaltyEvent] = Field(default_factory=list)
    event: Optional[SquareLoyaltyEvent] = Field(default=None, alias="loyalty_event")

    @property
    def event_id(self) -> str | None:
        if self.event is not None:
            return self.event.id
        if self.events:
            return self.events[0].id
        return None


class SquareLocation(SquareModel):
    id: str
    name: Optional[str] = None
    status: Optional[str] = None
