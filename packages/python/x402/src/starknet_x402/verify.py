"""Payment verification against requirements and chain state."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from pydantic import ValidationError

from .encoding import compare_amounts, normalize_address
from .provider import ChainReader, get_token_balance
from .types import (
    EXPIRED,
    INSUFFICIENT_FUNDS,
    INVALID_AMOUNT,
    INVALID_NETWORK,
    INVALID_PAYLOAD,
    UNEXPECTED_VERIFY_ERROR,
    PaymentPayload,
    PayloadLike,
    RequirementsLike,
    VerifyDetails,
    VerifyResponse,
    check_payment_payload,
    parse_payment_requirements,
)

logger = logging.getLogger(__name__)


def extract_payer_address(payload: PaymentPayload) -> str:
    return payload.payload.authorization.from_


def _invalid(reason: str, payer: str, **details: Any) -> VerifyResponse:
    return VerifyResponse(
        is_valid=False,
        invalid_reason=reason,
        payer=payer,
        details=VerifyDetails(**details) if details else None,
    )


async def verify_payment(
    provider: ChainReader,
    payload: PayloadLike,
    payment_requirements: RequirementsLike,
) -> VerifyResponse:
    """Verify a payment payload without executing anything.

    Checks run in a fixed order and the first failure is returned:
    structure, network, asset, recipient, amount, expiry, balance.
    The signature itself is not checked here; it is enforced when the relay
    executes the transaction during settlement.

    Never raises: unexpected failures come back as
    ``unexpected_verify_error`` with the message in ``details.error``.
    """
    parsed, problem = check_payment_payload(payload)
    if parsed is None:
        return _invalid(INVALID_PAYLOAD, "", error=problem)
    try:
        requirements = parse_payment_requirements(payment_requirements)
    except ValidationError as exc:
        return _invalid(INVALID_PAYLOAD, "", error=str(exc))

    payer = ""
    try:
        payer = extract_payer_address(parsed)
        authorization = parsed.payload.authorization

        if parsed.network != requirements.network:
            return _invalid(INVALID_NETWORK, payer)

        # Scheme check intentionally skipped: "exact" is the only scheme.
        # Re-enable together with real multi-scheme handling.

        # Asset and recipient mismatches reuse the network/amount codes so
        # existing clients keep seeing the reasons they already handle.
        if normalize_address(authorization.token) != normalize_address(requirements.asset):
            return _invalid(INVALID_NETWORK, payer)

        if normalize_address(authorization.to) != normalize_address(requirements.pay_to):
            return _invalid(INVALID_AMOUNT, payer)

        if compare_amounts(authorization.amount, requirements.max_amount_required) != 0:
            return _invalid(INVALID_AMOUNT, payer)

        current_timestamp = int(time.time())
        valid_until = int(authorization.valid_until, 10)
        if current_timestamp > valid_until:
            return _invalid(
                EXPIRED,
                payer,
                valid_until=str(valid_until),
                current_timestamp=str(current_timestamp),
            )

        balance = await get_token_balance(provider, requirements.asset, payer)
        if compare_amounts(balance, requirements.max_amount_required) < 0:
            return _invalid(INSUFFICIENT_FUNDS, payer, balance=balance)

        return VerifyResponse(
            is_valid=True,
            payer=payer,
            details=VerifyDetails(balance=balance),
        )
    except Exception as exc:
        logger.debug("Verification of payment from %s failed unexpectedly", payer, exc_info=True)
        return _invalid(UNEXPECTED_VERIFY_ERROR, payer, error=str(exc))
