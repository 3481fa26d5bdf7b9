import json

import httpx
import pytest

fastapi = pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from starknet_x402.encoding import decode_payment_response_header, encode_payment_header
from starknet_x402.http import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    create_facilitator_app,
    fastapi_payment_middleware,
)
from starknet_x402.settle import SettleOptions

from fakes import PAYER, TOKEN, FakeChainReader, make_payload, make_requirements


def _relay_options():
    def handler(request):
        body = json.loads(request.content.decode())
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"transaction_hash": "0xfeed"}}
        )

    async_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SettleOptions(http_client=async_client)


# =========================================================================
# Facilitator
# =========================================================================


def test_supported_and_health():
    client = TestClient(create_facilitator_app(FakeChainReader(), networks=["starknet-sepolia"]))

    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/supported").json() == {
        "kinds": [{"x402Version": 1, "scheme": "exact", "network": "starknet-sepolia"}]
    }


def test_verify_endpoint():
    client = TestClient(create_facilitator_app(FakeChainReader(balances={TOKEN: 5000})))

    response = client.post(
        "/verify",
        json={"paymentPayload": make_payload(), "paymentRequirements": make_requirements()},
    )

    assert response.status_code == 200
    assert response.json() == {"isValid": True, "payer": PAYER, "details": {"balance": "5000"}}


def test_verify_endpoint_reports_malformed_body():
    client = TestClient(create_facilitator_app(FakeChainReader()))

    response = client.post("/verify", content=b"not json")

    body = response.json()
    assert body["isValid"] is False
    assert body["invalidReason"] == "invalid_payload"


def test_settle_endpoint():
    app = create_facilitator_app(
        FakeChainReader(balances={TOKEN: 5000}), settle_options=_relay_options()
    )
    client = TestClient(app)

    response = client.post(
        "/settle",
        json={"paymentPayload": make_payload(), "paymentRequirements": make_requirements()},
    )

    body = response.json()
    assert body["success"] is True
    assert body["transaction"] == "0xfeed"
    assert body["status"] == "accepted_on_l2"
    assert body["blockNumber"] == 42


# =========================================================================
# Resource server middleware
# =========================================================================


def _protected_app(reader, options=None):
    app = fastapi.FastAPI()
    middleware = fastapi_payment_middleware(
        {"GET /premium": make_requirements()}, reader, options
    )

    @app.middleware("http")
    async def x402_mw(request, call_next):
        return await middleware(request, call_next)

    @app.get("/premium")
    async def premium():
        return {"secret": "42"}

    @app.get("/free")
    async def free():
        return {"ok": True}

    return app


def test_unprotected_routes_pass_through():
    client = TestClient(_protected_app(FakeChainReader()))
    assert client.get("/free").json() == {"ok": True}


def test_missing_payment_returns_402_with_requirements():
    client = TestClient(_protected_app(FakeChainReader()))

    response = client.get("/premium")

    assert response.status_code == 402
    body = response.json()
    assert body["x402Version"] == 1
    assert body["error"] == "X-PAYMENT header is required"
    assert body["accepts"][0]["maxAmountRequired"] == "1000"


def test_undecodable_payment_returns_402():
    client = TestClient(_protected_app(FakeChainReader()))
    response = client.get("/premium", headers={PAYMENT_HEADER: "%%%"})
    assert response.status_code == 402


def test_insufficient_funds_returns_402():
    client = TestClient(_protected_app(FakeChainReader(balances={TOKEN: 1})))

    response = client.get("/premium", headers={PAYMENT_HEADER: encode_payment_header(make_payload())})

    assert response.status_code == 402
    assert response.json()["error"] == "insufficient_funds"


def test_paid_request_is_settled():
    reader = FakeChainReader(balances={TOKEN: 5000})
    client = TestClient(_protected_app(reader, _relay_options()))

    response = client.get("/premium", headers={PAYMENT_HEADER: encode_payment_header(make_payload())})

    assert response.status_code == 200
    assert response.json() == {"secret": "42"}
    settlement = decode_payment_response_header(response.headers[PAYMENT_RESPONSE_HEADER])
    assert settlement["success"] is True
    assert settlement["transaction"] == "0xfeed"
    assert reader.waited
