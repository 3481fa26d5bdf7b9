"""Chain reads: balances, chain id and transaction confirmation."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, TypedDict

import httpx

from .constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BASE_DELAY,
    get_network_config,
)
from .encoding import get_selector_from_name, parse_uint, u256_from_limbs
from .errors import NetworkError, err
from .types import SUCCESS_STATES

logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]

REJECTED_STATES = ("REJECTED", "REVERTED")


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


async def retry_rpc_call(
    fn: Callable[[], Awaitable[Any]],
    max_retries: int = DEFAULT_RETRY_ATTEMPTS,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    *,
    should_retry: Callable[[BaseException], bool] = lambda exc: True,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Await ``fn()`` up to ``max_retries`` times with exponential backoff.

    The delay after the 0-based attempt ``i`` is
    ``base_delay * DEFAULT_BACKOFF_MULTIPLIER ** i``. Errors rejected by
    ``should_retry`` and the error of the final attempt propagate unchanged.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            attempt += 1
            if attempt >= max_retries or not should_retry(exc):
                raise
            delay = base_delay * DEFAULT_BACKOFF_MULTIPLIER ** (attempt - 1)
            logger.debug("RPC attempt %d failed (%s); retrying in %.1fs", attempt, exc, delay)
            await sleep(delay)


class ChainReader(Protocol):
    """What verification, selection and settlement need from the chain."""

    async def get_chain_id(self) -> str: ...

    async def call_contract(
        self, contract_address: str, entrypoint: str, calldata: Sequence[str]
    ) -> List[str]: ...

    async def wait_for_transaction(
        self,
        tx_hash: str,
        retry_interval: float,
        success_states: Sequence[str],
    ) -> JsonDict: ...


class StarknetRpcProvider:
    """Minimal Starknet JSON-RPC provider over httpx."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        wait_timeout: float = 300.0,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.wait_timeout = wait_timeout
        self._http_client = http_client
        self._owned_client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @classmethod
    def for_network(cls, network: str, **kwargs: Any) -> "StarknetRpcProvider":
        return cls(get_network_config(network)["rpc_url"], **kwargs)

    async def aclose(self) -> None:
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        if self._owned_client is None:
            self._owned_client = httpx.AsyncClient()
        return self._owned_client

    async def _rpc_request(self, method: str, params: Any) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        client = self._get_async_client()

        async def send() -> Any:
            response = await client.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        try:
            data = await retry_rpc_call(
                send,
                self.retry_attempts,
                self.retry_base_delay,
                should_retry=_is_transient,
                sleep=self._sleep,
            )
        except httpx.HTTPError as exc:
            raise NetworkError.rpc_failed(f"{method}: {exc}") from exc
        except ValueError as exc:
            raise NetworkError.rpc_failed(f"{method} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise NetworkError.rpc_failed(f"{method} returned a non-object response")
        if "error" in data:
            error = data["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise NetworkError.rpc_failed(f"{method}: {message}")
        return data.get("result")

    async def get_chain_id(self) -> str:
        return str(await self._rpc_request("starknet_chainId", []))

    async def call_contract(
        self, contract_address: str, entrypoint: str, calldata: Sequence[str]
    ) -> List[str]:
        request = {
            "contract_address": contract_address,
            "entry_point_selector": get_selector_from_name(entrypoint),
            "calldata": list(calldata),
        }
        result = await self._rpc_request("starknet_call", {"request": request, "block_id": "latest"})
        return list(result or [])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[JsonDict]:
        try:
            return await self._rpc_request(
                "starknet_getTransactionReceipt", {"transaction_hash": tx_hash}
            )
        except NetworkError as exc:
            # TXN_HASH_NOT_FOUND while the relay's transaction propagates.
            if "not found" in exc.message.lower():
                return None
            raise

    async def wait_for_transaction(
        self,
        tx_hash: str,
        retry_interval: float = 2.0,
        success_states: Sequence[str] = SUCCESS_STATES,
    ) -> JsonDict:
        deadline = time.monotonic() + self.wait_timeout
        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt:
                status = receipt.get("finality_status") or receipt.get("status")
                execution = receipt.get("execution_status")
                if execution == "REVERTED" or status in REJECTED_STATES:
                    reason = receipt.get("revert_reason") or status or execution
                    raise err.conflict(
                        f"Transaction {tx_hash} was rejected: {reason}",
                        {"transaction": tx_hash},
                    )
                if status in success_states:
                    return receipt
            if time.monotonic() >= deadline:
                raise err.timeout(int(self.wait_timeout * 1000))
            logger.debug("Transaction %s not final yet; polling again", tx_hash)
            await asyncio.sleep(retry_interval)


async def get_token_balance(reader: ChainReader, token_address: str, account_address: str) -> str:
    """ERC20 ``balanceOf`` decoded from its ``[low, high]`` u256 limbs."""
    result = await reader.call_contract(token_address, "balanceOf", [account_address])
    if len(result) >= 2:
        return str(u256_from_limbs(result[0], result[1]))
    if result:
        return str(u256_from_limbs(result[0]))
    return "0"


class TokenMetadata(TypedDict):
    name: str
    symbol: str
    decimals: int


_SHORT_STRING_BYTES = 31


def _felt_bytes(felt: Any, length: Optional[int] = None) -> bytes:
    value = parse_uint(felt)
    if length is None:
        length = (value.bit_length() + 7) // 8
    return value.to_bytes(length, "big")


def decode_string_result(result: Sequence[str]) -> str:
    """Decode a Cairo short string or ``ByteArray`` returned by a view call.

    ``ByteArray`` results are ``[n, word_1..word_n, pending_word, pending_len]``
    with 31-byte words. Anything that is not valid UTF-8 comes back as the
    decimal value of the first felt.
    """
    if not result:
        return ""
    try:
        count = parse_uint(result[0])
        if len(result) >= 3 and len(result) == count + 3:
            words = [_felt_bytes(word, _SHORT_STRING_BYTES) for word in result[1 : 1 + count]]
            pending_len = parse_uint(result[-1])
            words.append(_felt_bytes(result[-2], pending_len) if pending_len else b"")
            return b"".join(words).decode("utf-8")
        return _felt_bytes(result[0]).decode("utf-8")
    except (UnicodeDecodeError, OverflowError):
        return str(parse_uint(result[0]))


async def get_token_metadata(reader: ChainReader, token_address: str) -> TokenMetadata:
    """ERC20 ``name``, ``symbol`` and ``decimals``, read concurrently."""
    name, symbol, decimals = await asyncio.gather(
        reader.call_contract(token_address, "name", []),
        reader.call_contract(token_address, "symbol", []),
        reader.call_contract(token_address, "decimals", []),
    )
    return {
        "name": decode_string_result(name) or "Unknown",
        "symbol": decode_string_result(symbol) or "UNK",
        "decimals": parse_uint(decimals[0]) if decimals else 18,
    }
