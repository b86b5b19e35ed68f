"""Admin operations against the Shopify store."""

from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalbridge_api.api.dependencies.clients import get_shopify_client
from loyalbridge_api.api.dependencies.security import require_admin_api_key
from loyalbridge_api.db.session import get_session
from loyalbridge_api.models.product_mapping import ProductMapping
from loyalbridge_api.schemas.shopify import ShopifyProduct
from loyalbridge_api.services.shopify import ProductTagService, ShopifyClient


router = APIRouter(
    prefix="/shopify",
    tags=["shopify"],
    dependencies=[Depends(require_admin_api_key)],
)


class ProductTagRequest(BaseModel):
    action: Literal["add", "remove"]
    tag: Optional[str] = None


class ProductTagResponse(BaseModel):
    productId: int
    title: Optional[str]
    tags: list[str]


class VariantPayload(BaseModel):
    id: Optional[int]
    sku: Optional[str]
    price: Optional[str]


class ProductPayload(BaseModel):
    id: int
    title: Optional[str]
    handle: Optional[str]
    tags: list[str]
    variants: list[VariantPayload]

    @classmethod
    def from_product(cls, product: ShopifyProduct) -> "ProductPayload":
        return cls(
            id=product.id,
            title=product.title,
            handle=product.handle,
            tags=product.tag_list,
            variants=[VariantPayload(id=item.id, sku=item.sku, price=item.price) for item in product.variants],
        )


class ProductListResponse(BaseModel):
    products: list[ProductPayload]
    totalCount: int


class ProductMappingRequest(BaseModel):
    productName: str = Field(min_length=1)
    shopifyTag: str = Field(min_length=1)
    mappingType: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    isActive: bool = True


class ProductMappingPayload(BaseModel):
    id: UUID
    productName: str
    shopifyTag: str
    mappingType: Optional[str]
    keywords: list[str]
    isActive: bool

    @classmethod
    def from_model(cls, mapping: ProductMapping) -> "ProductMappingPayload":
        return cls(
            id=mapping.id,
            productName=mapping.product_name,
            shopifyTag=mapping.shopify_tag,
            mappingType=mapping.mapping_type,
            keywords=list(mapping.keywords or []),
            isActive=mapping.is_active,
        )


class AutoTagEntryPayload(BaseModel):
    mappingName: str
    tag: str
    status: str
    productId: Optional[int] = None
    productTitle: Optional[str] = None
    error: Optional[str] = None


class AutoTagResponse(BaseModel):
    message: str
    taggedCount: int
    totalMappings: int
    totalProducts: int
    results: list[AutoTagEntryPayload]


@router.get("/products", response_model=ProductListResponse)
async def list_products(client: ShopifyClient = Depends(get_shopify_client)) -> ProductListResponse:
    products = await ProductTagService(client).list_products()
    return ProductListResponse(
        products=[ProductPayload.from_product(product) for product in products],
        totalCount=len(products),
    )


@router.post("/products/{product_id}/tags", response_model=ProductTagResponse)
async def update_product_tags(
    product_id: int,
    payload: ProductTagRequest,
    client: ShopifyClient = Depends(get_shopify_client),
) -> ProductTagResponse:
    product = await ProductTagService(client).update_tags(
        str(product_id),
        action=payload.action,
        tag=payload.tag,
    )
    return ProductTagResponse(productId=product.id, title=product.title, tags=product.tag_list)


@router.get("/product-mappings", response_model=list[ProductMappingPayload])
async def list_product_mappings(db: AsyncSession = Depends(get_session)) -> list[ProductMappingPayload]:
    result = await db.execute(select(ProductMapping).order_by(ProductMapping.created_at))
    return [ProductMappingPayload.from_model(mapping) for mapping in result.scalars().all()]


@router.post(
    "/product-mappings",
    response_model=ProductMappingPayload,
    status_code=status.HTTP_201_CREATED,
)
async def create_product_mapping(
    payload: ProductMappingRequest,
    db: AsyncSession = Depends(get_session),
) -> ProductMappingPayload:
    mapping = ProductMapping(
        product_name=payload.productName.strip(),
        shopify_tag=payload.shopifyTag.strip(),
        mapping_type=payload.mappingType,
        keywords=[keyword.strip() for keyword in payload.keywords if keyword.strip()],
        is_active=payload.isActive,
    )
    db.add(mapping)
    await db.commit()
    return ProductMappingPayload.from_model(mapping)


@router.post("/products/auto-tag", response_model=AutoTagResponse)
async def auto_tag_products(
    db: AsyncSession = Depends(get_session),
    client: ShopifyClient = Depends(get_shopify_client),
) -> AutoTagResponse:
    result = await db.execute(select(ProductMapping).where(ProductMapping.is_active.is_(True)))
    outcome = await ProductTagService(client).auto_tag(result.scalars().all())
    return AutoTagResponse(
        message=f"Tagged {outcome.tagged_count} products with loyalty tags",
        taggedCount=outcome.tagged_count,
        totalMappings=outcome.total_mappings,
        totalProducts=outcome.total_products,
        results=[
            AutoTagEntryPayload(
                mappingName=entry.mapping_name,
                tag=entry.tag,
                status=entry.status,
                productId=entry.product_id,
                productTitle=entry.product_title,
                error=entry.error,
            )
            for entry in outcome.entries
        ],
    )
