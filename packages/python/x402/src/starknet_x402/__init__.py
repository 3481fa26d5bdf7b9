"""x402 payments on Starknet (Python)."""

from __future__ import annotations

from .constants import (
    CHAIN_IDS,
    DEFAULT_RELAY_ENDPOINTS,
    DEFAULT_RPC_URLS,
    SUPPORTED_NETWORKS,
    UnsupportedNetworkError,
    get_default_relay_endpoint,
    get_network_config,
    get_network_from_chain_id,
)
from .encoding import (
    compare_amounts,
    decode_payment_header,
    decode_payment_response_header,
    encode_payment_header,
    encode_payment_response_header,
    normalize_address,
)
from .errors import (
    NetworkError,
    PaymentError,
    RelayError,
    RelayRetryError,
    SettlementError,
    X402Error,
    err,
    to_dto,
)
from .payment import (
    Signer,
    create_payment_payload,
    get_account_network,
    select_payment_requirements,
)
from .provider import (
    ChainReader,
    StarknetRpcProvider,
    TokenMetadata,
    get_token_balance,
    get_token_metadata,
    retry_rpc_call,
)
from .relay import (
    Call,
    FeeMode,
    RelayClient,
    RelayConfig,
    create_relay_client,
    create_transfer_call,
)
from .settle import SettleOptions, settle_payment, wait_for_settlement
from .types import (
    PaymentPayload,
    PaymentRequirements,
    PaymentRequirementsResponse,
    SettleResponse,
    SupportedKindsResponse,
    VerifyResponse,
)
from .verify import extract_payer_address, verify_payment

__all__ = [
    "CHAIN_IDS",
    "DEFAULT_RELAY_ENDPOINTS",
    "DEFAULT_RPC_URLS",
    "SUPPORTED_NETWORKS",
    "UnsupportedNetworkError",
    "get_default_relay_endpoint",
    "get_network_config",
    "get_network_from_chain_id",
    "compare_amounts",
    "decode_payment_header",
    "decode_payment_response_header",
    "encode_payment_header",
    "encode_payment_response_header",
    "normalize_address",
    "NetworkError",
    "PaymentError",
    "RelayError",
    "RelayRetryError",
    "SettlementError",
    "X402Error",
    "err",
    "to_dto",
    "Signer",
    "create_payment_payload",
    "get_account_network",
    "select_payment_requirements",
    "ChainReader",
    "StarknetRpcProvider",
    "TokenMetadata",
    "get_token_balance",
    "get_token_metadata",
    "retry_rpc_call",
    "Call",
    "FeeMode",
    "RelayClient",
    "RelayConfig",
    "create_relay_client",
    "create_transfer_call",
    "SettleOptions",
    "settle_payment",
    "wait_for_settlement",
    "PaymentPayload",
    "PaymentRequirements",
    "PaymentRequirementsResponse",
    "SettleResponse",
    "SupportedKindsResponse",
    "VerifyResponse",
    "extract_payer_address",
    "verify_payment",
]

try:  # Optional: HTTP surface depends on fastapi
    from .http import (
        create_facilitator_app,
        create_facilitator_router,
        fastapi_payment_middleware,
    )

    __all__.extend(
        [
            "create_facilitator_app",
            "create_facilitator_router",
            "fastapi_payment_middleware",
        ]
    )
except ImportError:
    create_facilitator_app = None  # type: ignore[assignment]
    create_facilitator_router = None  # type: ignore[assignment]
    fastapi_payment_middleware = None  # type: ignore[assignment]
