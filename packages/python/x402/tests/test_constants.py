import pytest

from starknet_x402.constants import (
    CHAIN_IDS,
    DEFAULT_RELAY_ENDPOINTS,
    SUPPORTED_NETWORKS,
    UnsupportedNetworkError,
    get_address_url,
    get_default_relay_endpoint,
    get_network_config,
    get_network_from_chain_id,
    get_transaction_url,
    is_mainnet,
    is_testnet,
)


def test_supported_networks_match_expected():
    assert SUPPORTED_NETWORKS == ["starknet-mainnet", "starknet-sepolia", "starknet-devnet"]


def test_chain_ids_match_expected():
    assert CHAIN_IDS["starknet-mainnet"] == "0x534e5f4d41494e"
    assert CHAIN_IDS["starknet-sepolia"] == "0x534e5f5345504f4c4941"


def test_network_from_chain_id_round_trips_and_ignores_case():
    for network in SUPPORTED_NETWORKS:
        assert get_network_from_chain_id(CHAIN_IDS[network]) == network
    assert get_network_from_chain_id("0x534E5F4D41494E") == "starknet-mainnet"


def test_network_from_unknown_chain_id_raises():
    with pytest.raises(UnsupportedNetworkError):
        get_network_from_chain_id("0x1")


def test_network_config_fields():
    config = get_network_config("starknet-sepolia")
    assert config["chain_id"] == CHAIN_IDS["starknet-sepolia"]
    assert config["name"] == "Starknet Sepolia Testnet"
    with pytest.raises(UnsupportedNetworkError):
        get_network_config("eip155:1")


def test_testnet_and_mainnet_flags():
    assert is_mainnet("starknet-mainnet")
    assert not is_testnet("starknet-mainnet")
    assert is_testnet("starknet-sepolia")
    assert is_testnet("starknet-devnet")


def test_explorer_urls():
    assert get_transaction_url("starknet-mainnet", "0xabc") == "https://starkscan.co/tx/0xabc"
    assert get_address_url("starknet-sepolia", "0x1") == "https://sepolia.starkscan.co/contract/0x1"
    assert get_transaction_url("starknet-devnet", "0xabc") is None


def test_default_relay_endpoint():
    assert get_default_relay_endpoint("starknet-mainnet") == DEFAULT_RELAY_ENDPOINTS["starknet-mainnet"]
    with pytest.raises(UnsupportedNetworkError):
        get_default_relay_endpoint("starknet-goerli")
