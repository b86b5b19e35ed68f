"""Loyalty tags on Shopify products."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal, Optional

from loguru import logger

from loyalbridge_api.models.product_mapping import ProductMapping
from loyalbridge_api.schemas.shopify import ShopifyProduct
from loyalbridge_api.services.errors import LoyaltyValidationError, UpstreamError

from .client import ShopifyClient


LOYALTY_TAG_PREFIX = "loyalty-"

AutoTagStatus = Literal["tagged", "already_tagged", "failed", "no_match"]


@dataclass(slots=True)
class AutoTagEntry:
    mapping_name: str
    tag: str
    status: AutoTagStatus
    product_id: Optional[int] = None
    product_title: Optional[str] = None
    error: Optional[str] = None


@dataclass(slots=True)
class AutoTagResult:
    total_mappings: int
    total_products: int
    entries: list[AutoTagEntry] = field(default_factory=list)

    @property
    def tagged_count(self) -> int:
        return sum(1 for entry in self.entries if entry.status == "tagged")


class ProductTagService:
    def __init__(self, client: ShopifyClient) -> None:
        self._client = client

    async def list_products(self) -> list[ShopifyProduct]:
        return await self._client.list_products()

    async def update_tags(
        self,
        product_id: str,
        *,
        action: Literal["add", "remove"],
        tag: str | None = None,
    ) -> ShopifyProduct:
        """Add ``tag``, remove ``tag``, or strip every loyalty tag when removing without one."""

        cleaned = tag.strip() if tag else None
        if action == "add" and not cleaned:
            raise LoyaltyValidationError("Tag is required when adding")

        product = await self._client.get_product(product_id)
        tags = product.tag_list

        if action == "add":
            updated = tags if cleaned in tags else [*tags, cleaned]
        elif cleaned:
            updated = [item for item in tags if item != cleaned]
        else:
            updated = [item for item in tags if not item.startswith(LOYALTY_TAG_PREFIX)]

        result = await self._save(product, updated)
        if result is not product:
            logger.info(
                "Updated product loyalty tags",
                product_id=product_id,
                action=action,
                tag=cleaned,
                tag_count=len(updated),
            )
        return result

    async def auto_tag(self, mappings: Iterable[ProductMapping]) -> AutoTagResult:
        """Tag every product whose text mentions a mapping keyword.

        Per-product Shopify failures are reported in the result, not raised.
        """

        active = [mapping for mapping in mappings if mapping.is_active]
        products = {product.id: product for product in await self._client.list_products()}
        result = AutoTagResult(total_mappings=len(active), total_products=len(products))

        for mapping in active:
            terms = mapping.match_terms()
            matches = [
                product
                for product in products.values()
                if any(term in product.search_text() for term in terms)
            ]
            if not matches:
                result.entries.append(
                    AutoTagEntry(
                        mapping_name=mapping.product_name,
                        tag=mapping.shopify_tag,
                        status="no_match",
                        error=f"No products found containing: {', '.join(terms)}",
                    )
                )
                continue

            for product in matches:
                entry = AutoTagEntry(
                    mapping_name=mapping.product_name,
                    tag=mapping.shopify_tag,
                    status="already_tagged",
                    product_id=product.id,
                    product_title=product.title,
                )
                if mapping.shopify_tag not in product.tag_list:
                    try:
                        products[product.id] = await self._save(product, [*product.tag_list, mapping.shopify_tag])
                    except UpstreamError as exc:
                        logger.warning(
                            "Failed to auto-tag product",
                            product_id=product.id,
                            tag=mapping.shopify_tag,
                            error=exc.message,
                        )
                        entry.status = "failed"
                        entry.error = exc.message
                    else:
                        entry.status = "tagged"
                result.entries.append(entry)

        logger.info(
            "Auto-tagged products",
            tagged=result.tagged_count,
            mappings=result.total_mappings,
            products=result.total_products,
        )
        return result

    async def _save(self, product: ShopifyProduct, tags: list[str]) -> ShopifyProduct:
        if tags == product.tag_list:
            return product
        return await self._client.update_product_tags(product.id, tags)


__all__ = ["AutoTagEntry", "AutoTagResult", "ProductTagService"]
