import httpx
import pytest

from loyalbridge_api.services.errors import UpstreamTimeoutError
from loyalbridge_api.services.shopify import ShopifyAPIError, ShopifyClient
from loyalbridge_api.services.square import SquareAPIError, SquareClient


def _square(handler) -> SquareClient:
    return SquareClient(
        base_url="https://square.test/",
        access_token="sq-token",
        api_version="2024-10-17",
        timeout_seconds=2,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_square_sends_auth_and_version_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"loyalty_account": {"id": "ACCT-1", "balance": 12}})

    account = await _square(handler).retrieve_loyalty_account("ACCT-1")

    assert account.balance == 12
    assert account.lifetime_points == 0
    assert seen[0].headers["Authorization"] == "Bearer sq-token"
    assert seen[0].headers["Square-Version"] == "2024-10-17"
    assert str(seen[0].url) == "https://square.test/v2/loyalty/accounts/ACCT-1"


@pytest.mark.parametrize(("upstream_status", "expected"), [(400, 400), (404, 404), (500, 502), (503, 502)])
@pytest.mark.asyncio
async def test_square_http_errors_map_to_statuses(upstream_status: int, expected: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(upstream_status, json={"errors": [{"code": "NOT_FOUND", "detail": "nope"}]})

    with pytest.raises(SquareAPIError) as excinfo:
        await _square(handler).retrieve_reward("RWD-1")

    assert excinfo.value.status_code == expected
    assert excinfo.value.upstream_status == upstream_status
    assert excinfo.value.error_codes == ["NOT_FOUND"]


@pytest.mark.asyncio
async def test_square_timeout_is_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(UpstreamTimeoutError) as excinfo:
        await _square(handler).list_locations()

    assert excinfo.value.as_payload() == {
        "error": "Square request timed out",
        "code": "upstream_timeout",
        "retryable": True,
    }


@pytest.mark.asyncio
async def test_square_malformed_payload_is_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"program": {"status": "ACTIVE"}})

    with pytest.raises(SquareAPIError) as excinfo:
        await _square(handler).retrieve_program("main")

    assert excinfo.value.message == "Malformed Square response: program"


@pytest.mark.asyncio
async def test_unconfigured_shopify_fails_without_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = ShopifyClient(
        store_url="",
        access_token="",
        api_version="2024-10",
        timeout_seconds=2,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    with pytest.raises(ShopifyAPIError) as excinfo:
        await client.get_shop()

    assert excinfo.value.code == "shopify_not_configured"
