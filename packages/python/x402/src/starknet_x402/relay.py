"""JSON-RPC client for the fee-sponsoring relay (SNIP-29 paymaster)."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from .encoding import felt_to_hex, get_selector_from_name, u256_to_limbs
from .errors import (
    RelayError,
    RelayHTTPError,
    RelayRetryError,
    RelayRPCError,
    RelayTransportError,
)

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-paymaster-api-key"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 10
TRANSACTION_VERSION = "0x1"

JsonDict = Dict[str, Any]


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after the 0-based ``attempt`` failed.

    1s, 2s, 4s absorb transient blips; 8s, 15s, 22s let an upstream circuit
    breaker trip; 30s, 45s, 60s... cover failover to a backup relay.
    """
    if attempt < 3:
        delay_ms = 1000 * 2**attempt
    elif attempt < 6:
        delay_ms = 8000 + (attempt - 3) * 7000
    else:
        delay_ms = min(30000 + (attempt - 6) * 15000, 60000)
    return delay_ms / 1000


@dataclass
class RelayConfig:
    endpoint: str
    network: str
    api_key: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    http_client: Optional[httpx.AsyncClient] = field(default=None, repr=False)


@dataclass(frozen=True)
class FeeMode:
    mode: str
    gas_token: Optional[str] = None

    @classmethod
    def sponsored(cls) -> "FeeMode":
        return cls(mode="sponsored")

    @classmethod
    def default(cls, gas_token: str) -> "FeeMode":
        return cls(mode="default", gas_token=gas_token)

    def to_dict(self) -> JsonDict:
        if self.gas_token is None:
            return {"mode": self.mode}
        return {"mode": self.mode, "gas_token": self.gas_token}


@dataclass(frozen=True)
class Call:
    contract_address: str
    entrypoint: str
    calldata: List[str]

    def to_dict(self) -> JsonDict:
        return {
            "to": self.contract_address,
            "selector": get_selector_from_name(self.entrypoint),
            "calldata": list(self.calldata),
        }


class RelayClient:
    """Async relay client with tiered retry.

    4xx responses, JSON-RPC errors and responses without a ``result`` fail
    immediately. 5xx responses and transport failures are retried up to
    ``max_retries`` times following :func:`backoff_delay`.
    """

    def __init__(self, config: RelayConfig | Dict[str, Any]) -> None:
        if isinstance(config, dict):
            config = RelayConfig(**config)
        self._config = config
        self._ids = itertools.count(1)
        self._owned_client: Optional[httpx.AsyncClient] = None
        self._sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @property
    def endpoint(self) -> str:
        return self._config.endpoint

    @property
    def network(self) -> str:
        return self._config.network

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._config.http_client is not None:
            return self._config.http_client
        if self._owned_client is None:
            self._owned_client = httpx.AsyncClient()
        return self._owned_client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers[API_KEY_HEADER] = self._config.api_key
        return headers

    async def _post_once(self, body: JsonDict) -> Any:
        client = self._get_async_client()
        try:
            response = await client.post(
                self._config.endpoint,
                json=body,
                headers=self._headers(),
                timeout=self._config.timeout,
            )
        except httpx.TransportError as exc:
            raise RelayTransportError(f"RPC call failed: {exc}") from exc

        if not response.is_success:
            raise RelayHTTPError(response.status_code, response.reason_phrase)

        try:
            payload = response.json()
        except ValueError as exc:
            raise RelayError(f"Relay returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise RelayError("Relay returned a non-object JSON-RPC response")

        error = payload.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RelayRPCError(
                    str(error.get("message", "unknown error")),
                    error.get("code"),
                    error.get("data"),
                )
            raise RelayRPCError(str(error))

        if "result" not in payload:
            raise RelayError("No result in RPC response")
        return payload["result"]

    async def _call(self, method: str, params: Any) -> Any:
        body = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        attempts = max(self._config.max_retries, 0) + 1

        for attempt in range(attempts):
            try:
                return await self._post_once(body)
            except RelayError as exc:
                if not exc.retryable:
                    logger.warning("Relay call %s failed: %s", method, exc)
                    raise
                if attempt + 1 == attempts:
                    logger.warning("Relay call %s gave up after %d attempts", method, attempts)
                    raise RelayRetryError(method, attempts, exc) from exc
                delay = backoff_delay(attempt)
                logger.debug(
                    "Relay call %s attempt %d failed (%s); retrying in %.0fs",
                    method,
                    attempt + 1,
                    exc,
                    delay,
                )
            await self._sleep(delay)
        raise RelayError(f"Relay call {method} made no attempts")

    async def build_transaction(self, request: JsonDict) -> JsonDict:
        return await self._call("paymaster_buildTransaction", request)

    async def execute_transaction(self, request: JsonDict) -> JsonDict:
        return await self._call("paymaster_executeTransaction", request)

    async def get_supported_tokens(self) -> JsonDict:
        return await self._call("paymaster_getSupportedTokens", {})

    async def is_available(self) -> JsonDict:
        return await self._call("paymaster_isAvailable", {})


def create_relay_client(config: RelayConfig | Dict[str, Any]) -> RelayClient:
    return RelayClient(config)


# =========================================================================
# Helpers
# =========================================================================


def create_transfer_call(token_address: str, recipient: str, amount: str) -> Call:
    """ERC20 ``transfer(recipient, amount)`` with ``amount`` split into u256 limbs."""
    low, high = u256_to_limbs(amount)
    return Call(
        contract_address=token_address,
        entrypoint="transfer",
        calldata=[recipient, felt_to_hex(low), felt_to_hex(high)],
    )


def _invoke(user_address: str, calls: Sequence[Call]) -> JsonDict:
    return {
        "user_address": user_address,
        "calls": [call.to_dict() for call in calls],
    }


def _parameters(fee_mode: FeeMode) -> JsonDict:
    return {"version": TRANSACTION_VERSION, "fee_mode": fee_mode.to_dict()}


async def build_transaction(
    client: RelayClient,
    user_address: str,
    calls: Sequence[Call],
    fee_mode: FeeMode,
) -> JsonDict:
    return await client.build_transaction(
        {
            "transaction": {"type": "invoke", "invoke": _invoke(user_address, calls)},
            "parameters": _parameters(fee_mode),
        }
    )


async def execute_transaction(
    client: RelayClient,
    user_address: str,
    calls: Sequence[Call],
    fee_mode: FeeMode,
    typed_data: JsonDict,
    signature: Sequence[str],
) -> JsonDict:
    invoke = _invoke(user_address, calls)
    invoke["typed_data"] = typed_data
    return await client.execute_transaction(
        {
            "transaction": {"type": "invoke", "invoke": invoke},
            "parameters": _parameters(fee_mode),
            "signature": list(signature),
        }
    )


def extract_typed_data(response: JsonDict) -> JsonDict:
    if response.get("type") in ("invoke", "deploy_and_invoke") and "typed_data" in response:
        return response["typed_data"]
    raise RelayError("No typed data in deploy-only transaction")
