"""Typed errors with stable codes for Starknet x402."""

from __future__ import annotations

from typing import Any, Dict, Optional

EINVALID_INPUT = "EINVALID_INPUT"
ENOT_FOUND = "ENOT_FOUND"
ETIMEOUT = "ETIMEOUT"
ECONFLICT = "ECONFLICT"
ECANCELLED = "ECANCELLED"
EINTERNAL = "EINTERNAL"
ENETWORK = "ENETWORK"
EPAYMASTER = "EPAYMASTER"

ERROR_CODES = (
    EINVALID_INPUT,
    ENOT_FOUND,
    ETIMEOUT,
    ECONFLICT,
    ECANCELLED,
    EINTERNAL,
    ENETWORK,
    EPAYMASTER,
)


class X402Error(Exception):
    """Base error raised at public boundaries of this package.

    ``details`` must stay safe to serialize: no secrets, keys or raw causes.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class _ErrorFactory:
    """Factories for the common error shapes."""

    @staticmethod
    def invalid(message: str, details: Optional[Dict[str, Any]] = None) -> X402Error:
        return X402Error(EINVALID_INPUT, message, details=details)

    @staticmethod
    def not_found(what: str) -> X402Error:
        return X402Error(ENOT_FOUND, f"{what} not found")

    @staticmethod
    def timeout(ms: int) -> X402Error:
        return X402Error(ETIMEOUT, f"Timed out after {ms} ms", details={"ms": ms})

    @staticmethod
    def conflict(message: str, details: Optional[Dict[str, Any]] = None) -> X402Error:
        return X402Error(ECONFLICT, message, details=details)

    @staticmethod
    def cancelled() -> X402Error:
        return X402Error(ECANCELLED, "Operation cancelled")

    @staticmethod
    def internal(message: str, details: Optional[Dict[str, Any]] = None) -> X402Error:
        return X402Error(EINTERNAL, message, details=details)

    @staticmethod
    def network(message: str, details: Optional[Dict[str, Any]] = None) -> X402Error:
        return X402Error(ENETWORK, message, details=details)

    @staticmethod
    def paymaster(message: str, details: Optional[Dict[str, Any]] = None) -> X402Error:
        return X402Error(EPAYMASTER, message, details=details)


err = _ErrorFactory()


class PaymentError(X402Error):
    @classmethod
    def invalid_payload(cls, details: Optional[str] = None) -> "PaymentError":
        suffix = f": {details}" if details else ""
        return cls(EINVALID_INPUT, f"Invalid payment payload{suffix}")

    @classmethod
    def insufficient_balance(cls, required: str, available: str) -> "PaymentError":
        return cls(
            ECONFLICT,
            f"Insufficient balance: required {required}, available {available}",
            details={"required": required, "available": available},
        )

    @classmethod
    def verification_failed(cls, reason: str) -> "PaymentError":
        return cls(EINVALID_INPUT, f"Payment verification failed: {reason}")

    @classmethod
    def settlement_failed(cls, reason: str) -> "PaymentError":
        return cls(EINTERNAL, f"Payment settlement failed: {reason}")


class NetworkError(X402Error):
    @classmethod
    def unsupported_network(cls, network: str) -> "NetworkError":
        return cls(
            EINVALID_INPUT,
            f"Unsupported network: {network}",
            details={"network": network},
        )

    @classmethod
    def network_mismatch(cls, expected: str, actual: str) -> "NetworkError":
        return cls(
            ECONFLICT,
            f"Network mismatch: expected {expected}, got {actual}",
            details={"expected": expected, "actual": actual},
        )

    @classmethod
    def rpc_failed(cls, details: str) -> "NetworkError":
        return cls(ENETWORK, f"RPC call failed: {details}")


class SettlementError(X402Error):
    """Raised inside settlement after verification; folded into a SettleResponse."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(EINTERNAL, message, details=details)


# =========================================================================
# Relay errors
# =========================================================================


class RelayError(X402Error):
    """Error talking to the sponsoring relay (paymaster)."""

    retryable = False

    def __init__(
        self,
        message: str,
        rpc_code: Optional[int] = None,
        data: Any = None,
    ) -> None:
        super().__init__(EPAYMASTER, message)
        self.rpc_code = rpc_code
        self.data = data


class RelayRPCError(RelayError):
    """JSON-RPC error object returned by the relay. Never retried."""


class RelayHTTPError(RelayError):
    def __init__(self, status: int, reason: str = "") -> None:
        super().__init__(f"HTTP error: {status} {reason}".rstrip(), rpc_code=status)
        self.status = status
        self.retryable = status >= 500


class RelayTransportError(RelayError):
    """Connection-level failure (DNS, reset, timeout)."""

    retryable = True


class RelayRetryError(RelayError):
    def __init__(self, method: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Relay call {method} failed after {attempts} attempts: {last_error}",
            data={"method": method, "attempts": attempts},
        )
        self.method = method
        self.attempts = attempts
        self.last_error = last_error


# =========================================================================
# Helpers
# =========================================================================


def wrap_unknown(
    exc: BaseException,
    code: str = EINTERNAL,
    note: str = "Unexpected failure",
) -> X402Error:
    if isinstance(exc, X402Error):
        return exc
    wrapped = X402Error(code, note)
    wrapped.__cause__ = exc
    return wrapped


def to_dto(exc: BaseException) -> Dict[str, Any]:
    """Serializable error shape for the wire; the cause is never included."""
    error = wrap_unknown(exc)
    dto: Dict[str, Any] = {
        "name": "X402Error",
        "code": error.code,
        "message": error.message,
    }
    if error.details is not None:
        dto["details"] = error.details
    return dto


def is_x402_error(exc: Any) -> bool:
    return isinstance(exc, X402Error)
