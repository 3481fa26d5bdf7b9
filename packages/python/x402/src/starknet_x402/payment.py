"""Client side: choosing a requirement and creating a payment payload."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .constants import (
    FALLBACK_NETWORK,
    SCHEME_EXACT,
    UnsupportedNetworkError,
    get_default_relay_endpoint,
    get_network_from_chain_id,
)
from .encoding import compare_amounts, felt_to_hex, parse_uint
from .errors import NetworkError, PaymentError, err
from .provider import ChainReader, get_token_balance
from .relay import (
    FeeMode,
    RelayClient,
    RelayConfig,
    build_transaction,
    create_transfer_call,
)
from .types import (
    PaymentPayload,
    PaymentRequirements,
    RequirementsLike,
    parse_payment_requirements,
)

logger = logging.getLogger(__name__)

__all__ = [
    "Signer",
    "create_payment_payload",
    "get_account_network",
    "get_default_relay_endpoint",
    "select_payment_requirements",
]


class Signer(Protocol):
    """Account abstraction that signs relay typed data."""

    address: str

    async def sign_message(self, typed_data: Dict[str, Any]) -> Any: ...


async def get_account_network(provider: ChainReader) -> str:
    """Resolve the network the provider is connected to.

    Unknown chain ids are treated as a local devnet; if the chain id cannot be
    read at all, sepolia is assumed.
    """
    try:
        chain_id = await provider.get_chain_id()
    except Exception as exc:
        logger.debug("Could not read chain id (%s); assuming %s", exc, FALLBACK_NETWORK)
        return FALLBACK_NETWORK
    try:
        return get_network_from_chain_id(str(chain_id))
    except UnsupportedNetworkError:
        return "starknet-devnet"


async def _balance_or_zero(
    provider: ChainReader, requirement: PaymentRequirements, account_address: str
) -> Tuple[PaymentRequirements, str, bool]:
    try:
        balance = await get_token_balance(provider, requirement.asset, account_address)
        affordable = compare_amounts(balance, requirement.max_amount_required) >= 0
        return requirement, balance, affordable
    except Exception as exc:
        logger.debug("Balance check for %s failed: %s", requirement.asset, exc)
        return requirement, "0", False


def _offered_network(requirement: RequirementsLike) -> Any:
    if isinstance(requirement, dict):
        return requirement.get("network")
    return getattr(requirement, "network", None)


def _sort_key(requirement: PaymentRequirements) -> Tuple[int, float]:
    timeout = requirement.max_timeout_seconds
    return (
        parse_uint(requirement.max_amount_required),
        float("inf") if timeout is None else timeout,
    )


async def select_payment_requirements(
    requirements: Sequence[RequirementsLike],
    account_address: str,
    provider: ChainReader,
) -> PaymentRequirements:
    """Pick the cheapest requirement the account can pay on its own network.

    Ties on amount go to the shorter ``max_timeout_seconds``.

    Raises:
        X402Error: ``EINVALID_INPUT`` for an empty list.
        NetworkError: No requirement matches the account's network.
        PaymentError: No compatible requirement is affordable.
    """
    if not requirements:
        raise err.invalid("No payment requirements provided")

    account_network = await get_account_network(provider)

    # Other chains' requirements are skipped before validation.
    compatible = [
        parse_payment_requirements(req)
        for req in requirements
        if _offered_network(req) == account_network
    ]
    if not compatible:
        offered = ", ".join(str(_offered_network(req)) for req in requirements)
        raise NetworkError.network_mismatch(account_network, offered)

    checked = await asyncio.gather(
        *(_balance_or_zero(provider, req, account_address) for req in compatible)
    )
    affordable = [req for req, _, ok in checked if ok]
    if not affordable:
        first, balance, _ = checked[0]
        raise PaymentError.insufficient_balance(first.max_amount_required, balance)

    return sorted(affordable, key=_sort_key)[0]


# =========================================================================
# Payload creation
# =========================================================================


def _signature_components(signature: Any) -> List[str]:
    if isinstance(signature, (list, tuple)):
        return [felt_to_hex(part) for part in signature]
    return [felt_to_hex(signature.r), felt_to_hex(signature.s)]


def _as_decimal(value: Any) -> str:
    if isinstance(value, str) and value.lower().startswith("0x"):
        return str(int(value, 16))
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)
    return "0"


async def create_payment_payload(
    signer: Signer,
    x402_version: int,
    payment_requirements: RequirementsLike,
    relay_config: RelayConfig | Dict[str, Any],
    relay_client: Optional[RelayClient] = None,
) -> PaymentPayload:
    """Build a sponsored transfer through the relay and sign it.

    The relay's typed data and endpoint travel inside the payload so the
    facilitator can execute exactly what was signed.
    """
    requirements = parse_payment_requirements(payment_requirements)
    if isinstance(relay_config, dict):
        relay_config = RelayConfig(**relay_config)

    transfer_call = create_transfer_call(
        requirements.asset,
        requirements.pay_to,
        requirements.max_amount_required,
    )

    client = relay_client or RelayClient(relay_config)
    try:
        build_result = await build_transaction(
            client, signer.address, [transfer_call], FeeMode.sponsored()
        )
    finally:
        if relay_client is None:
            await client.aclose()

    if build_result.get("type") != "invoke":
        raise err.internal(
            "Expected invoke transaction from paymaster",
            {"receivedType": build_result.get("type")},
        )
    typed_data = build_result["typed_data"]

    signature = _signature_components(await signer.sign_message(typed_data))
    message = typed_data.get("message") or {}

    nonce = message.get("nonce", "0x0")
    nonce = str(nonce) if isinstance(nonce, str) else felt_to_hex(nonce)
    valid_until = _as_decimal(message.get("valid_until", message.get("validUntil", "0x0")))

    return PaymentPayload.model_validate(
        {
            "x402Version": x402_version,
            "scheme": SCHEME_EXACT,
            "network": requirements.network,
            "payload": {
                "signature": {
                    "r": signature[0] if signature else "0x0",
                    "s": signature[1] if len(signature) > 1 else "0x0",
                },
                "authorization": {
                    "from": signer.address,
                    "to": requirements.pay_to,
                    "amount": requirements.max_amount_required,
                    "token": requirements.asset,
                    "nonce": nonce,
                    "validUntil": valid_until,
                },
            },
            "typedData": typed_data,
            "paymasterEndpoint": relay_config.endpoint,
        }
    )
