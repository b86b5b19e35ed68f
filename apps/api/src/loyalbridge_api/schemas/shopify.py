"""Pydantic models for Shopify Admin REST payloads."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ShopifyModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PriceRule(ShopifyModel):
    id: int
    title: Optional[str] = None
    value_type: Optional[str] = None
    value: Optional[str] = None
    ends_at: Optional[str] = None


class DiscountCode(ShopifyModel):
    id: Optional[int] = None
    price_rule_id: Optional[int] = None
    code: str


class ProductVariant(ShopifyModel):
    id: Optional[int] = None
    sku: Optional[str] = None
    price: Optional[str] = None


class ShopifyProduct(ShopifyModel):
    id: int
    title: Optional[str] = None
    handle: Optional[str] = None
    vendor: Optional[str] = None
    body_html: Optional[str] = None
    tags: Optional[str] = ""
    variants: list[ProductVariant] = Field(default_factory=list)

    @property
    def tag_list(self) -> list[str]:
        return [tag.strip() for tag in (self.tags or "").split(",") if tag.strip()]

    def search_text(self) -> str:
        parts = (self.title, self.body_html, self.tags, self.vendor)
        return " ".join(part for part in parts if part).lower()


class ShopifyShop(ShopifyModel):
    id: int
    name: Optional[str] = None
    domain: Optional[str] = None


class OrderDiscountCode(ShopifyModel):
    code: str = ""
    amount: Optional[str] = None
    type: Optional[str] = None


class OrderDiscountApplication(ShopifyModel):
    type: Optional[str] = None
    code: Optional[str] = None
    title: Optional[str] = None


class OrderCustomer(ShopifyModel):
    id: Optional[int] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ShopifyOrder(ShopifyModel):
    """Subset of the ``orders/create`` webhook body."""

    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    total_price: Decimal = Decimal("0")
    currency: Optional[str] = None
    customer: Optional[OrderCustomer] = None
    discount_codes: list[OrderDiscountCode] = Field(default_factory=list)
    discount_applications: list[OrderDiscountApplication] = Field(default_factory=list)
    note_attributes: list[dict[str, Any]] = Field(default_factory=list)

    def applied_codes(self) -> list[str]:
        codes = [item.code for item in self.discount_codes if item.code]
        codes.extend(item.code for item in self.discount_applications if item.code)
        seen: set[str] = set()
        unique: list[str] = []
        for code in codes:
            if code not in seen:
                seen.add(code)
                unique.append(code)
        return unique
