import httpx
import pytest

from starknet_x402.errors import (
    ECONFLICT,
    EINTERNAL,
    ENETWORK,
    EPAYMASTER,
    ETIMEOUT,
    NetworkError,
    PaymentError,
    RelayHTTPError,
    RelayRetryError,
    SettlementError,
    X402Error,
    err,
    is_x402_error,
    to_dto,
    wrap_unknown,
)


def test_factories_set_codes_and_details():
    timeout = err.timeout(1500)
    assert timeout.code == ETIMEOUT
    assert timeout.details == {"ms": 1500}
    assert err.not_found("Receipt").message == "Receipt not found"
    assert err.paymaster("down").code == EPAYMASTER


def test_payment_and_network_errors():
    error = PaymentError.insufficient_balance("100", "5")
    assert error.code == ECONFLICT
    assert str(error) == "Insufficient balance: required 100, available 5"

    mismatch = NetworkError.network_mismatch("starknet-mainnet", "starknet-sepolia")
    assert mismatch.code == ECONFLICT
    assert mismatch.details == {"expected": "starknet-mainnet", "actual": "starknet-sepolia"}
    assert NetworkError.rpc_failed("boom").code == ENETWORK


def test_settlement_error_is_internal():
    assert SettlementError("no endpoint").code == EINTERNAL


def test_relay_http_error_retryability():
    assert RelayHTTPError(503, "Service Unavailable").retryable
    assert not RelayHTTPError(404, "Not Found").retryable
    assert str(RelayHTTPError(404, "Not Found")) == "HTTP error: 404 Not Found"


def test_relay_retry_error_message():
    error = RelayRetryError("paymaster_isAvailable", 11, RelayHTTPError(503, "Service Unavailable"))
    assert error.attempts == 11
    assert "failed after 11 attempts" in str(error)


def test_wrap_unknown_and_dto_hide_causes():
    cause = httpx.ConnectError("secret-host:1234 refused")
    wrapped = wrap_unknown(cause)
    assert wrapped.code == EINTERNAL
    assert wrapped.__cause__ is cause

    dto = to_dto(cause)
    assert dto == {"name": "X402Error", "code": EINTERNAL, "message": "Unexpected failure"}
    assert "secret-host" not in repr(dto)


def test_wrap_unknown_passes_through_x402_errors():
    error = err.conflict("taken", {"nonce": "0x1"})
    assert wrap_unknown(error) is error
    assert to_dto(error)["details"] == {"nonce": "0x1"}
    assert is_x402_error(error)
    assert not is_x402_error(ValueError("nope"))


def test_x402_error_is_an_exception():
    with pytest.raises(X402Error):
        raise err.invalid("bad")
