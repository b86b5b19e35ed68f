"""Async client for the Shopify Admin REST API."""

from __future__ import annotations

from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from loyalbridge_api.schemas.shopify import DiscountCode, PriceRule, ShopifyProduct, ShopifyShop
from loyalbridge_api.services.errors import UpstreamError, UpstreamTimeoutError


ModelT = TypeVar("ModelT", bound=BaseModel)

_BODY_PREVIEW_LIMIT = 512


class ShopifyAPIError(UpstreamError):
    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        body: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, service="shopify", upstream_status=upstream_status, body=body, code=code)


class ShopifyClient:
    def __init__(
        self,
        *,
        store_url: str,
        access_token: str,
        api_version: str,
        timeout_seconds: float,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store_url = store_url
        self._access_token = access_token
        self._api_version = api_version
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self._store_url and self._access_token)

    @property
    def store_url(self) -> str:
        return self._store_url

    def _url(self, path: str) -> str:
        return f"https://{self._store_url}/admin/api/{self._api_version}/{path.lstrip('/')}"

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.request(method, url, timeout=self._timeout_seconds, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            return await client.request(method, url, **kwargs)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.is_configured:
            raise ShopifyAPIError("Shopify store is not configured", code="shopify_not_configured")

        headers = {
            "X-Shopify-Access-Token": self._access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            response = await self._send(method, self._url(path), json=json, params=params, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("Shopify request timed out", method=method, path=path, error=str(exc))
            raise UpstreamTimeoutError("Shopify request timed out", service="shopify") from exc
        except httpx.HTTPStatusError as exc:
            body = exc.response.text[:_BODY_PREVIEW_LIMIT] if exc.response is not None else None
            logger.warning(
                "Shopify returned HTTP error",
                method=method,
                path=path,
                status=exc.response.status_code,
                body=body,
            )
            raise ShopifyAPIError(
                f"Shopify request failed with status {exc.response.status_code}",
                upstream_status=exc.response.status_code,
                body=body,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Shopify request failed", method=method, path=path, error=str(exc))
            raise ShopifyAPIError("Shopify request failed") from exc

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise ShopifyAPIError("Shopify returned a non-JSON body", upstream_status=response.status_code) from exc
        if not isinstance(data, dict):
            raise ShopifyAPIError("Shopify returned an unexpected body", upstream_status=response.status_code)
        return data

    @staticmethod
    def _parse(model: type[ModelT], payload: Any, *, field: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Malformed Shopify payload", field=field, errors=exc.error_count())
            raise ShopifyAPIError(f"Malformed Shopify response: {field}") from exc

    async def create_price_rule(self, price_rule: dict[str, Any]) -> PriceRule:
        data = await self._request("POST", "price_rules.json", json={"price_rule": price_rule})
        return self._parse(PriceRule, data.get("price_rule"), field="price_rule")

    async def delete_price_rule(self, price_rule_id: int | str) -> None:
        await self._request("DELETE", f"price_rules/{price_rule_id}.json")

    async def create_discount_code(self, price_rule_id: int | str, code: str) -> DiscountCode:
        data = await self._request(
            "POST",
            f"price_rules/{price_rule_id}/discount_codes.json",
            json={"discount_code": {"code": code}},
        )
        return self._parse(DiscountCode, data.get("discount_code"), field="discount_code")

    async def get_product(self, product_id: int | str) -> ShopifyProduct:
        data = await self._request("GET", f"products/{product_id}.json")
        return self._parse(ShopifyProduct, data.get("product"), field="product")

    async def list_products(self, *, limit: int = 250) -> list[ShopifyProduct]:
        """First page of products; Shopify caps a page at 250."""

        data = await self._request("GET", "products.json", params={"limit": min(limit, 250)})
        products = data.get("products")
        if products is None:
            return []
        if not isinstance(products, list):
            raise ShopifyAPIError("Malformed Shopify response: products")
        return [self._parse(ShopifyProduct, item, field="products") for item in products]

    async def update_product_tags(self, product_id: int | str, tags: list[str]) -> ShopifyProduct:
        data = await self._request(
            "PUT",
            f"products/{product_id}.json",
            json={"product": {"id": int(product_id), "tags": ", ".join(tags)}},
        )
        return self._parse(ShopifyProduct, data.get("product"), field="product")

    async def get_shop(self) -> ShopifyShop:
        data = await self._request("GET", "shop.json")
        return self._parse(ShopifyShop, data.get("shop"), field="shop")


__all__ = ["ShopifyAPIError", "ShopifyClient"]
