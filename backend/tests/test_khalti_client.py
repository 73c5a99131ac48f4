"""
Tests for the Khalti HTTP client against a mocked transport.
"""

import json

import httpx
import pytest

from carrental.core.errors import GatewayRejected, GatewayUnavailable
from carrental.infrastructure.khalti_client import KhaltiGateway


def _gateway(handler) -> KhaltiGateway:
    return KhaltiGateway(
        secret_key="test-key",
        base_url="https://khalti.test/api/v2/",
        website_url="http://shop.test",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_initiate_sends_amount_and_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"pidx": "P1", "payment_url": "https://pay.khalti.test/P1"})

    gateway = _gateway(handler)
    initiated = await gateway.initiate(
        amount_paisa=700000,
        purchase_order_id="42",
        purchase_order_name="Car Rental: Corolla (42)",
        return_url="http://shop.test/return",
        customer_info={"name": "Test"},
    )
    await gateway.close()

    assert initiated.pidx == "P1"
    assert seen["url"] == "https://khalti.test/api/v2/epayment/initiate/"
    assert seen["auth"] == "Key test-key"
    assert seen["body"]["amount"] == 700000
    assert seen["body"]["website_url"] == "http://shop.test"
    assert seen["body"]["product_details"][0]["total_price"] == 700000


@pytest.mark.asyncio
async def test_lookup_parses_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"pidx": "P1", "status": "Completed", "transaction_id": "T1", "total_amount": 700000},
        )

    gateway = _gateway(handler)
    looked_up = await gateway.lookup("P1")
    await gateway.close()

    assert looked_up.status == "Completed"
    assert looked_up.transaction_id == "T1"


@pytest.mark.asyncio
async def test_verify_without_idx_is_not_a_success():
    gateway = _gateway(lambda request: httpx.Response(200, json={"state": {"name": "Pending"}}))
    verified = await gateway.verify("tok", 1000)
    await gateway.close()

    assert verified.succeeded is False


@pytest.mark.asyncio
async def test_timeout_is_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = _gateway(handler)
    with pytest.raises(GatewayUnavailable):
        await gateway.verify("tok", 1000)
    await gateway.close()


@pytest.mark.asyncio
async def test_connection_error_is_gateway_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    gateway = _gateway(handler)
    with pytest.raises(GatewayUnavailable):
        await gateway.lookup("P1")
    await gateway.close()


@pytest.mark.asyncio
async def test_server_error_is_gateway_unavailable():
    gateway = _gateway(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(GatewayUnavailable):
        await gateway.lookup("P1")
    await gateway.close()


@pytest.mark.asyncio
async def test_client_error_is_gateway_rejected():
    gateway = _gateway(lambda request: httpx.Response(400, json={"detail": "Invalid token."}))
    with pytest.raises(GatewayRejected) as exc_info:
        await gateway.verify("tok", 1000)
    await gateway.close()

    assert exc_info.value.detail == {"error": "GatewayRejected", "message": "Invalid token."}


@pytest.mark.asyncio
async def test_initiate_without_pidx_is_rejected():
    gateway = _gateway(lambda request: httpx.Response(200, json={}))
    with pytest.raises(GatewayRejected):
        await gateway.initiate(
            amount_paisa=100,
            purchase_order_id="1",
            purchase_order_name="x",
            return_url="http://shop.test/return",
            customer_info={},
        )
    await gateway.close()
