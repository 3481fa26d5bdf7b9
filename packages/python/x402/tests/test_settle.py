import json

import httpx
import pytest

from starknet_x402.settle import SettleOptions, settle_payment
from starknet_x402.types import SUCCESS_STATES

from fakes import PAY_TO, PAYER, RELAY_URL, TOKEN, FakeChainReader, make_payload, make_requirements


def _transport(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _executed(bodies, tx_hash="0xfeed"):
    def handler(request):
        body = json.loads(request.content.decode())
        bodies.append(body)
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"transaction_hash": tx_hash}}
        )

    return handler


@pytest.mark.asyncio
async def test_settles_through_relay_and_waits_for_acceptance():
    bodies = []
    async_client = _transport(_executed(bodies))
    reader = FakeChainReader(balances={TOKEN: 5000})
    payload = make_payload(**{"from": "0x0001234ABCD"})

    try:
        result = await settle_payment(
            reader,
            payload,
            make_requirements(),
            SettleOptions(http_client=async_client, retry_interval=0.5),
        )
    finally:
        await async_client.aclose()

    assert result.success
    assert result.transaction == "0xfeed"
    assert result.network == "starknet-sepolia"
    assert result.status == "accepted_on_l2"
    assert result.block_number == 42
    assert result.block_hash == "0xb10c"
    assert reader.waited == [("0xfeed", 0.5, SUCCESS_STATES)]

    assert len(bodies) == 1
    params = bodies[0]["params"]
    assert bodies[0]["method"] == "paymaster_executeTransaction"
    invoke = params["transaction"]["invoke"]
    assert invoke["user_address"] == PAYER
    assert invoke["typed_data"] == payload["typedData"]
    assert invoke["calls"][0]["to"] == TOKEN
    assert invoke["calls"][0]["calldata"] == [PAY_TO, "0x3e8", "0x0"]
    assert params["parameters"]["fee_mode"] == {"mode": "sponsored"}
    assert params["signature"] == ["0xaa", "0xbb"]


@pytest.mark.asyncio
async def test_failed_verification_skips_relay():
    bodies = []
    async_client = _transport(_executed(bodies))
    reader = FakeChainReader(balances={TOKEN: 10})

    try:
        result = await settle_payment(
            reader, make_payload(), make_requirements(), SettleOptions(http_client=async_client)
        )
    finally:
        await async_client.aclose()

    assert not result.success
    assert result.error_reason == "insufficient_funds"
    assert result.transaction == ""
    assert result.payer == PAYER
    assert result.network == "starknet-sepolia"
    assert bodies == []


@pytest.mark.asyncio
async def test_structural_failure_has_empty_payer():
    data = make_payload()
    del data["payload"]["authorization"]
    result = await settle_payment(FakeChainReader(), data, make_requirements())
    assert not result.success
    assert result.error_reason == "invalid_payload"
    assert result.payer == ""


@pytest.mark.asyncio
async def test_missing_endpoint_is_reported():
    data = make_payload()
    del data["paymasterEndpoint"]
    result = await settle_payment(FakeChainReader(balances={TOKEN: 5000}), data, make_requirements())
    assert not result.success
    assert result.error_reason == "Paymaster endpoint not provided"
    assert result.payer == PAYER


@pytest.mark.asyncio
async def test_missing_typed_data_is_reported():
    data = make_payload()
    del data["typedData"]
    result = await settle_payment(FakeChainReader(balances={TOKEN: 5000}), data, make_requirements())
    assert not result.success
    assert result.error_reason.startswith("Typed data not found in payment payload")


@pytest.mark.asyncio
async def test_relay_rejection_becomes_failure_result():
    def handler(request):
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": 1, "error": {"code": 163, "message": "Invalid signature"}},
        )

    async_client = _transport(handler)
    try:
        result = await settle_payment(
            FakeChainReader(balances={TOKEN: 5000}),
            make_payload(),
            make_requirements(),
            SettleOptions(http_client=async_client),
        )
    finally:
        await async_client.aclose()

    assert not result.success
    assert result.error_reason == "Invalid signature"
    assert result.transaction == ""


@pytest.mark.asyncio
async def test_missing_transaction_hash_is_failure():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {}})

    async_client = _transport(handler)
    reader = FakeChainReader(balances={TOKEN: 5000})
    try:
        result = await settle_payment(
            reader, make_payload(), make_requirements(), SettleOptions(http_client=async_client)
        )
    finally:
        await async_client.aclose()

    assert not result.success
    assert "transaction_hash" in result.error_reason
    assert reader.waited == []


@pytest.mark.asyncio
async def test_confirmation_failure_becomes_failure_result():
    class RevertingReader(FakeChainReader):
        async def wait_for_transaction(self, tx_hash, retry_interval, success_states):
            raise RuntimeError(f"Transaction {tx_hash} was rejected: REVERTED")

    bodies = []
    async_client = _transport(_executed(bodies))
    try:
        result = await settle_payment(
            RevertingReader(balances={TOKEN: 5000}),
            make_payload(),
            make_requirements(),
            SettleOptions(http_client=async_client),
        )
    finally:
        await async_client.aclose()

    assert not result.success
    assert "was rejected" in result.error_reason
    assert result.transaction == ""


@pytest.mark.asyncio
async def test_option_endpoint_and_api_key_bind_the_relay_client():
    seen = []

    def handler(request):
        seen.append(request)
        body = json.loads(request.content.decode())
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"transaction_hash": "0xfeed"}}
        )

    async_client = _transport(handler)
    try:
        result = await settle_payment(
            FakeChainReader(balances={TOKEN: 5000}),
            make_payload(),
            make_requirements(),
            SettleOptions(
                endpoint="https://backup-relay.test/rpc",
                api_key="relay-secret",
                http_client=async_client,
            ),
        )
        assert not async_client.is_closed
    finally:
        await async_client.aclose()

    assert result.success
    assert len(seen) == 1
    assert seen[0].url.host == "backup-relay.test"
    assert seen[0].url.path == "/rpc"
    assert seen[0].headers["x-paymaster-api-key"] == "relay-secret"


@pytest.mark.asyncio
async def test_payload_endpoint_used_without_override():
    seen = []

    def handler(request):
        seen.append(request)
        body = json.loads(request.content.decode())
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"transaction_hash": "0xfeed"}}
        )

    async_client = _transport(handler)
    try:
        result = await settle_payment(
            FakeChainReader(balances={TOKEN: 5000}),
            make_payload(),
            make_requirements(),
            SettleOptions(http_client=async_client),
        )
    finally:
        await async_client.aclose()

    assert result.success
    assert seen[0].url.host == httpx.URL(RELAY_URL).host
    assert "x-paymaster-api-key" not in seen[0].headers
