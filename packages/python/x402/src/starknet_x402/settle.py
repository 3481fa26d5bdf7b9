"""Payment settlement through the sponsoring relay."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import httpx
from pydantic import ValidationError

from .encoding import normalize_address
from .errors import SettlementError
from .provider import ChainReader
from .relay import (
    FeeMode,
    RelayClient,
    RelayConfig,
    create_transfer_call,
    execute_transaction,
)
from .types import (
    SUCCESS_STATES,
    PayloadLike,
    RequirementsLike,
    SettleResponse,
    parse_payment_payload,
    parse_payment_requirements,
)
from .verify import verify_payment

logger = logging.getLogger(__name__)

DEFAULT_RETRY_INTERVAL = 2.0


@dataclass
class SettleOptions:
    """Overrides for settlement. ``endpoint`` wins over the payload's own.

    ``http_client`` is only the transport for the relay client built per
    settlement; it is never closed here.
    """

    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    retry_interval: float = DEFAULT_RETRY_INTERVAL
    http_client: Optional[httpx.AsyncClient] = field(default=None, repr=False)


async def wait_for_settlement(
    provider: ChainReader,
    transaction_hash: str,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    success_states: Sequence[str] = SUCCESS_STATES,
) -> Dict[str, Any]:
    return await provider.wait_for_transaction(
        transaction_hash,
        retry_interval=retry_interval,
        success_states=success_states,
    )


def _requirements_network(payment_requirements: RequirementsLike) -> str:
    try:
        return str(parse_payment_requirements(payment_requirements).network)
    except ValidationError:
        if isinstance(payment_requirements, dict):
            return str(payment_requirements.get("network", ""))
        return ""


async def settle_payment(
    provider: ChainReader,
    payload: PayloadLike,
    payment_requirements: RequirementsLike,
    options: Optional[SettleOptions] = None,
) -> SettleResponse:
    """Verify, then execute the signed transfer through the relay.

    There is no locking or deduplication here: concurrent settlement of one
    authorization relies on the chain nonce, so at most one attempt succeeds.
    Never raises; failures are returned with ``success=False``.
    """
    options = options or SettleOptions()
    network = _requirements_network(payment_requirements)

    verification = await verify_payment(provider, payload, payment_requirements)
    if not verification.is_valid:
        return SettleResponse(
            success=False,
            error_reason=verification.invalid_reason,
            transaction="",
            network=network,
            payer=verification.payer,
        )

    payer = verification.payer
    try:
        parsed = parse_payment_payload(payload)
        requirements = parse_payment_requirements(payment_requirements)

        endpoint = options.endpoint or parsed.paymaster_endpoint
        if not endpoint:
            raise SettlementError("Paymaster endpoint not provided")
        typed_data = parsed.typed_data
        if not typed_data:
            raise SettlementError(
                "Typed data not found in payment payload - client must store it "
                "during payment creation"
            )

        relay_config = RelayConfig(
            endpoint=endpoint,
            network=network,
            api_key=options.api_key,
            http_client=options.http_client,
        )
        async with RelayClient(relay_config) as client:
            transfer_call = create_transfer_call(
                requirements.asset,
                requirements.pay_to,
                requirements.max_amount_required,
            )
            signature = parsed.payload.signature
            logger.info("Submitting settlement for %s on %s via %s", payer, network, endpoint)
            result = await execute_transaction(
                client,
                normalize_address(payer),
                [transfer_call],
                FeeMode.sponsored(),
                typed_data,
                [signature.r, signature.s],
            )

        transaction_hash = result.get("transaction_hash") if isinstance(result, dict) else None
        if not transaction_hash:
            raise SettlementError("Relay response missing transaction_hash")

        receipt = await wait_for_settlement(
            provider, transaction_hash, retry_interval=options.retry_interval
        )

        return SettleResponse(
            success=True,
            transaction=transaction_hash,
            network=network,
            payer=payer,
            status=_status(receipt),
            block_number=receipt.get("block_number"),
            block_hash=receipt.get("block_hash"),
        )
    except Exception as exc:
        logger.warning("Settlement for %s failed: %s", payer, exc)
        return SettleResponse(
            success=False,
            error_reason=str(exc),
            transaction="",
            network=network,
            payer=payer,
        )


def _status(receipt: Dict[str, Any]) -> Optional[str]:
    status = receipt.get("finality_status") or receipt.get("status")
    return str(status).lower() if status else None
