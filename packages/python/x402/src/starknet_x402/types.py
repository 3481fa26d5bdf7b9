"""Pydantic models for Starknet x402 payloads, requirements and results."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

HEX_PATTERN = r"^0x[0-9a-fA-F]+$"
DIGITS_PATTERN = r"^[0-9]+$"

StarknetNetwork = Literal["starknet-mainnet", "starknet-sepolia", "starknet-devnet"]
PaymentScheme = Literal["exact"]

# Reason codes reported in VerifyResponse.invalid_reason.
INVALID_PAYLOAD = "invalid_payload"
INVALID_NETWORK = "invalid_network"
INVALID_AMOUNT = "invalid_amount"
EXPIRED = "expired"
INSUFFICIENT_FUNDS = "insufficient_funds"
UNEXPECTED_VERIFY_ERROR = "unexpected_verify_error"

# Terminal transaction states accepted as settled.
ACCEPTED_ON_L2 = "ACCEPTED_ON_L2"
ACCEPTED_ON_L1 = "ACCEPTED_ON_L1"
SUCCESS_STATES: Tuple[str, ...] = (ACCEPTED_ON_L2, ACCEPTED_ON_L1)


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class _FrozenWireModel(_WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True,
    )


# =========================================================================
# Requirements
# =========================================================================


class RequirementExtra(_FrozenWireModel):
    token_name: Optional[str] = None
    token_symbol: Optional[str] = None
    token_decimals: Optional[int] = Field(None, ge=0)
    payment_contract: Optional[str] = Field(None, pattern=HEX_PATTERN)


class PaymentRequirements(_FrozenWireModel):
    """What a resource server demands before releasing ``resource``.

    ``scheme`` and ``network`` stay open strings: a server may advertise
    requirements for other chains next to its Starknet ones.
    """

    scheme: str = Field(min_length=1)
    network: str = Field(min_length=1)
    max_amount_required: str = Field(pattern=DIGITS_PATTERN)
    asset: str = Field(pattern=HEX_PATTERN)
    pay_to: str = Field(pattern=HEX_PATTERN)
    resource: str = Field(min_length=1)
    description: Optional[str] = None
    mime_type: Optional[str] = None
    output_schema: Optional[Dict[str, Any]] = None
    max_timeout_seconds: Optional[int] = Field(None, gt=0)
    extra: Optional[RequirementExtra] = None


class PaymentRequirementsResponse(_FrozenWireModel):
    """Body (or header) of a 402 response."""

    x402_version: Literal[1]
    error: str = Field(min_length=1)
    accepts: List[PaymentRequirements] = Field(min_length=1)


# =========================================================================
# Payload
# =========================================================================


class Signature(_FrozenWireModel):
    r: str = Field(pattern=HEX_PATTERN)
    s: str = Field(pattern=HEX_PATTERN)


class PaymentAuthorization(_FrozenWireModel):
    from_: str = Field(alias="from", pattern=HEX_PATTERN)
    to: str = Field(pattern=HEX_PATTERN)
    amount: str = Field(pattern=DIGITS_PATTERN)
    token: str = Field(pattern=HEX_PATTERN)
    nonce: str = Field(pattern=HEX_PATTERN)
    valid_until: str = Field(pattern=DIGITS_PATTERN)


class ExactPayload(_FrozenWireModel):
    signature: Signature
    authorization: PaymentAuthorization


class PaymentPayload(_FrozenWireModel):
    """Signed payment sent by the client in the ``X-PAYMENT`` header.

    ``typed_data`` and ``paymaster_endpoint`` are attached during creation so
    the facilitator can later execute the exact transaction that was signed.
    Unknown keys are kept for forward compatibility.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        frozen=True,
        extra="allow",
    )

    x402_version: Literal[1]
    scheme: PaymentScheme
    network: StarknetNetwork
    payload: ExactPayload
    settlement_transaction: Optional[str] = Field(None, pattern=HEX_PATTERN)
    typed_data: Optional[Dict[str, Any]] = None
    paymaster_endpoint: Optional[str] = None

    @field_validator("paymaster_endpoint")
    @classmethod
    def validate_endpoint(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("Invalid paymaster endpoint URL")
        return v


# =========================================================================
# Results
# =========================================================================


class VerifyDetails(_WireModel):
    balance: Optional[str] = None
    valid_until: Optional[str] = None
    current_timestamp: Optional[str] = None
    error: Optional[str] = None


class VerifyResponse(_WireModel):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: str = ""
    details: Optional[VerifyDetails] = None


class SettleResponse(_WireModel):
    success: bool
    error_reason: Optional[str] = None
    transaction: str = ""
    network: str
    payer: str = ""
    status: Optional[str] = None
    block_number: Optional[int] = None
    block_hash: Optional[str] = None


class SupportedKind(_WireModel):
    x402_version: int = 1
    scheme: str
    network: str


class SupportedKindsResponse(_WireModel):
    kinds: List[SupportedKind]


# =========================================================================
# Structural validation
# =========================================================================

PayloadLike = Union[PaymentPayload, Dict[str, Any]]
RequirementsLike = Union[PaymentRequirements, Dict[str, Any]]


def _coerce(model: type, value: Any) -> Any:
    if isinstance(value, model):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump(by_alias=True, exclude_none=True)
    return model.model_validate(value)


def parse_payment_payload(value: PayloadLike) -> PaymentPayload:
    """Validate ``value``; raises :class:`pydantic.ValidationError`."""
    return _coerce(PaymentPayload, value)


def parse_payment_requirements(value: RequirementsLike) -> PaymentRequirements:
    return _coerce(PaymentRequirements, value)


def check_payment_payload(
    value: Any,
) -> Tuple[Optional[PaymentPayload], Optional[str]]:
    """Pass/fail structural check returning ``(payload, diagnostic)``."""
    try:
        return parse_payment_payload(value), None
    except ValidationError as exc:
        return None, str(exc)
