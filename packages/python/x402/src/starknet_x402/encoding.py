"""Address, amount and header encoding helpers."""

from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any, Dict, Tuple, Union

from eth_utils import keccak
from pydantic import BaseModel

from .errors import err

U128 = 1 << 128
U128_MASK = U128 - 1
_MASK_250 = (1 << 250) - 1

_HEX_DIGITS = re.compile(r"[0-9a-fA-F]+")
_FORBIDDEN_KEYS = frozenset({"__proto__", "constructor", "prototype"})

IntLike = Union[str, int]


def normalize_address(address: str) -> str:
    """Canonical lowercase hex form without leading zeros.

    Malformed input comes back unchanged so the caller can report a more
    specific mismatch later.
    """
    if not isinstance(address, str):
        return address
    raw = address[2:] if address[:2].lower() == "0x" else address
    if not _HEX_DIGITS.fullmatch(raw):
        return address
    return hex(int(raw, 16))


def parse_uint(value: IntLike) -> int:
    """Parse a decimal or ``0x`` hex string (or int) as an unsigned integer."""
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer value")
    if isinstance(value, int):
        parsed = value
    else:
        trimmed = str(value).strip()
        if trimmed.lower().startswith("0x"):
            parsed = int(trimmed, 16)
        else:
            parsed = int(trimmed, 10)
    if parsed < 0:
        raise ValueError(f"{value!r} must be non-negative")
    return parsed


def compare_amounts(a: IntLike, b: IntLike) -> int:
    left = parse_uint(a)
    right = parse_uint(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def u256_from_limbs(low: IntLike, high: IntLike = 0) -> int:
    return parse_uint(low) + (parse_uint(high) << 128)


def u256_to_limbs(value: IntLike) -> Tuple[str, str]:
    """Split into decimal ``(low, high)`` 128-bit limbs."""
    parsed = parse_uint(value)
    return str(parsed & U128_MASK), str(parsed >> 128)


def hex_to_felt(value: str) -> str:
    clean = value[2:] if value.startswith("0x") else value
    return str(int(clean, 16))


def felt_to_hex(felt: IntLike) -> str:
    return hex(parse_uint(felt))


def encode_base64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def decode_base64(encoded: str) -> str:
    return base64.b64decode(encoded, validate=True).decode("utf-8")


# =========================================================================
# Header framing
# =========================================================================


def _to_json(value: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True, exclude_none=True)
    return json.dumps(value, separators=(",", ":"))


def _reject_polluting_keys(value: Any) -> None:
    if isinstance(value, dict):
        for key, nested in value.items():
            if key in _FORBIDDEN_KEYS:
                raise err.invalid(f"Forbidden key in header payload: {key}")
            _reject_polluting_keys(nested)
    elif isinstance(value, list):
        for item in value:
            _reject_polluting_keys(item)


def _decode_object(encoded: str, what: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(decode_base64(encoded))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise err.invalid(f"Invalid {what}: not base64-encoded JSON") from exc
    if not isinstance(parsed, dict):
        raise err.invalid(f"Invalid {what}: must be an object")
    _reject_polluting_keys(parsed)
    return parsed


def encode_payment_header(payload: Union[BaseModel, Dict[str, Any]]) -> str:
    """Encode a payment payload for the ``X-PAYMENT`` header."""
    return encode_base64(_to_json(payload))


def decode_payment_header(encoded: str) -> Dict[str, Any]:
    """Decode an ``X-PAYMENT`` header into a plain dict.

    Structural validation is left to :func:`starknet_x402.verify.verify_payment`.
    """
    return _decode_object(encoded, "payment payload")


def encode_payment_response_header(response: Union[BaseModel, Dict[str, Any]]) -> str:
    return encode_base64(_to_json(response))


def decode_payment_response_header(encoded: str) -> Dict[str, Any]:
    return _decode_object(encoded, "payment response")


def get_selector_from_name(entrypoint: str) -> str:
    """Starknet entry point selector: ``keccak(name)`` truncated to 250 bits."""
    digest = int.from_bytes(keccak(text=entrypoint), "big")
    return hex(digest & _MASK_250)
