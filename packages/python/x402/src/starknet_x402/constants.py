"""Shared network constants for Starknet x402."""

from __future__ import annotations

from typing import Dict, List, Optional, TypedDict


SUPPORTED_NETWORKS: List[str] = [
    "starknet-mainnet",
    "starknet-sepolia",
    "starknet-devnet",
]

CHAIN_IDS: Dict[str, str] = {
    "starknet-mainnet": "0x534e5f4d41494e",  # SN_MAIN
    "starknet-sepolia": "0x534e5f5345504f4c4941",  # SN_SEPOLIA
    "starknet-devnet": "0x534e5f474f45524c49",  # SN_GOERLI, reused by devnet
}

DEFAULT_RPC_URLS: Dict[str, str] = {
    "starknet-mainnet": "https://starknet-mainnet.public.blastapi.io",
    "starknet-sepolia": "https://starknet-sepolia.public.blastapi.io",
    "starknet-devnet": "http://localhost:5050",
}

# SNIP-29 relay endpoints; the older starknet.api.avnu.fi hosts are deprecated.
DEFAULT_RELAY_ENDPOINTS: Dict[str, str] = {
    "starknet-mainnet": "https://starknet.paymaster.avnu.fi",
    "starknet-sepolia": "https://sepolia.paymaster.avnu.fi",
    "starknet-devnet": "http://localhost:5555",
}

EXPLORER_URLS: Dict[str, Optional[str]] = {
    "starknet-mainnet": "https://starkscan.co",
    "starknet-sepolia": "https://sepolia.starkscan.co",
    "starknet-devnet": None,
}

NETWORK_NAMES: Dict[str, str] = {
    "starknet-mainnet": "Starknet Mainnet",
    "starknet-sepolia": "Starknet Sepolia Testnet",
    "starknet-devnet": "Starknet Devnet (Local)",
}

SCHEME_EXACT = "exact"
X402_VERSION = 1

# Network assumed when the chain id cannot be read at all.
FALLBACK_NETWORK = "starknet-sepolia"

# Chain reads: attempts per call and exponential backoff from a 1s base.
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_BACKOFF_MULTIPLIER = 2
DEFAULT_RETRY_BASE_DELAY = 1.0


class NetworkConfig(TypedDict):
    network: str
    chain_id: str
    rpc_url: str
    explorer_url: Optional[str]
    name: str


NETWORK_CONFIGS: Dict[str, NetworkConfig] = {
    network: {
        "network": network,
        "chain_id": CHAIN_IDS[network],
        "rpc_url": DEFAULT_RPC_URLS[network],
        "explorer_url": EXPLORER_URLS[network],
        "name": NETWORK_NAMES[network],
    }
    for network in SUPPORTED_NETWORKS
}


class UnsupportedNetworkError(ValueError):
    """Raised when a network or chain id is not one of the Starknet networks."""


def get_network_config(network: str) -> NetworkConfig:
    try:
        return NETWORK_CONFIGS[network]
    except KeyError as exc:
        raise UnsupportedNetworkError(f"Unsupported network: {network}") from exc


def get_network_from_chain_id(chain_id: str) -> str:
    """Map a hex chain id to its network identifier.

    Raises:
        UnsupportedNetworkError: If the chain id is not recognized.
    """
    normalized = chain_id.lower()
    for network, known in CHAIN_IDS.items():
        if known == normalized:
            return network
    raise UnsupportedNetworkError(f"Unknown chain ID: {chain_id}")


def is_testnet(network: str) -> bool:
    return network in ("starknet-sepolia", "starknet-devnet")


def is_mainnet(network: str) -> bool:
    return network == "starknet-mainnet"


def get_transaction_url(network: str, tx_hash: str) -> Optional[str]:
    explorer = get_network_config(network)["explorer_url"]
    if not explorer:
        return None
    return f"{explorer}/tx/{tx_hash}"


def get_address_url(network: str, address: str) -> Optional[str]:
    explorer = get_network_config(network)["explorer_url"]
    if not explorer:
        return None
    return f"{explorer}/contract/{address}"


def get_default_relay_endpoint(network: str) -> str:
    try:
        return DEFAULT_RELAY_ENDPOINTS[network]
    except KeyError as exc:
        raise UnsupportedNetworkError(
            f"No default relay endpoint configured for network {network}"
        ) from exc
