import asyncio
import os

import httpx
from dotenv import load_dotenv

from starknet_x402 import (
    RelayConfig,
    StarknetRpcProvider,
    create_payment_payload,
    decode_payment_response_header,
    encode_payment_header,
    get_default_relay_endpoint,
    select_payment_requirements,
)

load_dotenv()

ACCOUNT_ADDRESS = os.getenv("ACCOUNT_ADDRESS")
SIGNER_URL = os.getenv("SIGNER_URL")
if not ACCOUNT_ADDRESS or not ACCOUNT_ADDRESS.startswith("0x"):
    raise SystemExit("ACCOUNT_ADDRESS env var must be set and start with 0x")
if not SIGNER_URL:
    raise SystemExit("SIGNER_URL env var must point at a wallet signing service")

API_URL = os.getenv("API_URL", "http://localhost:3000")
ENDPOINT = f"{API_URL}/api/premium-data"
NETWORK = os.getenv("NETWORK", "starknet-sepolia")
PAYMASTER_API_KEY = os.getenv("PAYMASTER_API_KEY")


class RemoteSigner:
    """Delegates SNIP-12 signing to a wallet service that holds the account key."""

    def __init__(self, address, url, http_client):
        self.address = address
        self.url = url
        self.http_client = http_client

    async def sign_message(self, typed_data):
        response = await self.http_client.post(
            self.url, json={"address": self.address, "typedData": typed_data}
        )
        response.raise_for_status()
        return response.json()["signature"]


async def main():
    provider = StarknetRpcProvider.for_network(NETWORK)
    async with httpx.AsyncClient() as http:
        response = await http.get(ENDPOINT)
        if response.status_code != 402:
            print("Status:", response.status_code)
            print("Body:", response.text)
            return

        accepts = response.json()["accepts"]
        requirements = await select_payment_requirements(accepts, ACCOUNT_ADDRESS, provider)
        print("Paying", requirements.max_amount_required, "of", requirements.asset)

        relay_config = RelayConfig(
            endpoint=get_default_relay_endpoint(requirements.network),
            network=requirements.network,
            api_key=PAYMASTER_API_KEY,
        )
        signer = RemoteSigner(ACCOUNT_ADDRESS, SIGNER_URL, http)
        payload = await create_payment_payload(signer, 1, requirements, relay_config)

        response = await http.get(
            ENDPOINT,
            headers={"X-PAYMENT": encode_payment_header(payload)},
            timeout=300,
        )
        print("Status:", response.status_code)
        print("Body:", response.text)
        settlement = response.headers.get("X-PAYMENT-RESPONSE")
        if settlement:
            print("Settlement:", decode_payment_response_header(settlement))
    await provider.aclose()


if __name__ == "__main__":
    asyncio.run(main())
