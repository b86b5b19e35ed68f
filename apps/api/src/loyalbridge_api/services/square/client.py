"""Thin async client over the Square Customers and Loyalty REST APIs."""

from __future__ import annotations

import json
from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from loyalbridge_api.schemas.square import (
    AccumulatePointsResult,
    SquareCustomer,
    SquareLocation,
    SquareLoyaltyAccount,
    SquareLoyaltyProgram,
    SquareLoyaltyPromotion,
    SquareLoyaltyReward,
)
from loyalbridge_api.services.errors import UpstreamError, UpstreamTimeoutError


ModelT = TypeVar("ModelT", bound=BaseModel)

_BODY_PREVIEW_LIMIT = 512


class SquareAPIError(UpstreamError):
    """Non-2xx answer from Square."""

    def __init__(self, message: str, *, upstream_status: int | None = None, body: str | None = None) -> None:
        super().__init__(message, service="square", upstream_status=upstream_status, body=body)

    @property
    def error_codes(self) -> list[str]:
        return _extract_error_codes(self.body)


def _extract_error_codes(body: str | None) -> list[str]:
    if not body:
        return []
    try:
        payload = json.loads(body)
    except ValueError:
        return []
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if not isinstance(errors, list):
        return []
    return [str(item.get("code")) for item in errors if isinstance(item, dict) and item.get("code")]


class SquareClient:
    """HTTP client for Square. One instance per request and environment."""

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str,
        api_version: str,
        timeout_seconds: float,
        environment: str = "sandbox",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._api_version = api_version
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client
        self.environment = environment

    @property
    def is_configured(self) -> bool:
        return bool(self._access_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Square-Version": self._api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

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
        url = f"{self._base_url}{path}"
        try:
            response = await self._send(method, url, json=json, params=params, headers=self._headers())
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("Square request timed out", method=method, path=path, error=str(exc))
            raise UpstreamTimeoutError("Square request timed out", service="square") from exc
        except httpx.HTTPStatusError as exc:
            body = exc.response.text[:_BODY_PREVIEW_LIMIT] if exc.response is not None else None
            logger.warning(
                "Square returned HTTP error",
                method=method,
                path=path,
                status=exc.response.status_code,
                body=body,
            )
            raise SquareAPIError(
                f"Square request failed with status {exc.response.status_code}",
                upstream_status=exc.response.status_code,
                body=body,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Square request failed", method=method, path=path, error=str(exc))
            raise SquareAPIError("Square request failed") from exc

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise SquareAPIError("Square returned a non-JSON body", upstream_status=response.status_code) from exc
        if not isinstance(data, dict):
            raise SquareAPIError("Square returned an unexpected body", upstream_status=response.status_code)
        return data

    @staticmethod
    def _parse(model: type[ModelT], payload: Any, *, field: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Malformed Square payload", field=field, errors=exc.error_count())
            raise SquareAPIError(f"Malformed Square response: {field}") from exc

    def _parse_list(self, model: type[ModelT], payload: Any, *, field: str) -> list[ModelT]:
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise SquareAPIError(f"Malformed Square response: {field}")
        return [self._parse(model, item, field=field) for item in payload]

    # Customers

    async def search_customers(self, *, phone: str | None = None, email: str | None = None) -> list[SquareCustomer]:
        if phone:
            query_filter = {"phone_number": {"exact": phone}}
        elif email:
            query_filter = {"email_address": {"exact": email}}
        else:
            return []
        data = await self._request("POST", "/v2/customers/search", json={"query": {"filter": query_filter}})
        return self._parse_list(SquareCustomer, data.get("customers"), field="customers")

    async def create_customer(
        self,
        *,
        idempotency_key: str,
        phone: str | None = None,
        email: str | None = None,
        given_name: str | None = None,
        family_name: str | None = None,
    ) -> SquareCustomer:
        body: dict[str, Any] = {"idempotency_key": idempotency_key}
        if phone:
            body["phone_number"] = phone
        if email:
            body["email_address"] = email
        if given_name:
            body["given_name"] = given_name
        if family_name:
            body["family_name"] = family_name
        data = await self._request("POST", "/v2/customers", json=body)
        return self._parse(SquareCustomer, data.get("customer"), field="customer")

    async def retrieve_customer(self, customer_id: str) -> SquareCustomer:
        data = await self._request("GET", f"/v2/customers/{customer_id}")
        return self._parse(SquareCustomer, data.get("customer"), field="customer")

    # Loyalty accounts

    async def search_loyalty_accounts(
        self,
        *,
        customer_ids: list[str] | None = None,
        phone: str | None = None,
        limit: int = 1,
    ) -> list[SquareLoyaltyAccount]:
        if customer_ids:
            query: dict[str, Any] = {"customer_ids": customer_ids}
        elif phone:
            query = {"mappings": [{"phone_number": phone}]}
        else:
            return []
        data = await self._request("POST", "/v2/loyalty/accounts/search", json={"query": query, "limit": limit})
        return self._parse_list(SquareLoyaltyAccount, data.get("loyalty_accounts"), field="loyalty_accounts")

    async def create_loyalty_account(
        self,
        *,
        program_id: str,
        phone: str,
        idempotency_key: str,
    ) -> SquareLoyaltyAccount:
        body = {
            "loyalty_account": {"program_id": program_id, "mapping": {"phone_number": phone}},
            "idempotency_key": idempotency_key,
        }
        data = await self._request("POST", "/v2/loyalty/accounts", json=body)
        return self._parse(SquareLoyaltyAccount, data.get("loyalty_account"), field="loyalty_account")

    async def retrieve_loyalty_account(self, account_id: str) -> SquareLoyaltyAccount:
        data = await self._request("GET", f"/v2/loyalty/accounts/{account_id}")
        return self._parse(SquareLoyaltyAccount, data.get("loyalty_account"), field="loyalty_account")

    async def accumulate_points(
        self,
        *,
        account_id: str,
        points: int,
        order_id: str,
        idempotency_key: str,
        location_id: str | None,
    ) -> AccumulatePointsResult:
        body: dict[str, Any] = {
            "accumulate_points": {"points": points, "order_id": order_id},
            "idempotency_key": idempotency_key,
        }
        if location_id:
            body["location_id"] = location_id
        data = await self._request("POST", f"/v2/loyalty/accounts/{account_id}/accumulate", json=body)
        return self._parse(AccumulatePointsResult, data, field="accumulate")

    # Programs and promotions

    async def retrieve_program(self, program_id: str) -> SquareLoyaltyProgram:
        data = await self._request("GET", f"/v2/loyalty/programs/{program_id}")
        return self._parse(SquareLoyaltyProgram, data.get("program"), field="program")

    async def list_promotions(self, program_id: str, *, status: str | None = "ACTIVE") -> list[SquareLoyaltyPromotion]:
        params = {"status": status} if status else None
        data = await self._request("GET", f"/v2/loyalty/programs/{program_id}/promotions", params=params)
        return self._parse_list(SquareLoyaltyPromotion, data.get("loyalty_promotions"), field="loyalty_promotions")

    async def retrieve_promotion(self, program_id: str, promotion_id: str) -> SquareLoyaltyPromotion:
        data = await self._request("GET", f"/v2/loyalty/programs/{program_id}/promotions/{promotion_id}")
        return self._parse(SquareLoyaltyPromotion, data.get("loyalty_promotion"), field="loyalty_promotion")

    # Rewards

    async def create_reward(
        self,
        *,
        account_id: str,
        idempotency_key: str,
        reward_tier_id: str | None = None,
        promotion_id: str | None = None,
    ) -> SquareLoyaltyReward:
        reward: dict[str, Any] = {"loyalty_account_id": account_id}
        if reward_tier_id:
            reward["reward_tier_id"] = reward_tier_id
        if promotion_id:
            reward["loyalty_promotion_id"] = promotion_id
        data = await self._request(
            "POST",
            "/v2/loyalty/rewards",
            json={"reward": reward, "idempotency_key": idempotency_key},
        )
        return self._parse(SquareLoyaltyReward, data.get("reward"), field="reward")

    async def retrieve_reward(self, reward_id: str) -> SquareLoyaltyReward:
        data = await self._request("GET", f"/v2/loyalty/rewards/{reward_id}")
        return self._parse(SquareLoyaltyReward, data.get("reward"), field="reward")

    async def redeem_reward(self, reward_id: str, *, idempotency_key: str, location_id: str | None) -> dict[str, Any]:
        body: dict[str, Any] = {"idempotency_key": idempotency_key}
        if location_id:
            body["location_id"] = location_id
        data = await self._request("POST", f"/v2/loyalty/rewards/{reward_id}/redeem", json=body)
        event = data.get("event")
        return event if isinstance(event, dict) else {}

    async def delete_reward(self, reward_id: str) -> None:
        await self._request("DELETE", f"/v2/loyalty/rewards/{reward_id}")

    # Connection test

    async def list_locations(self) -> list[SquareLocation]:
        data = await self._request("GET", "/v2/locations")
        return self._parse_list(SquareLocation, data.get("locations"), field="locations")


__all__ = ["SquareAPIError", "SquareClient"]
