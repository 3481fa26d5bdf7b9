import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI

from starknet_x402 import SettleOptions, StarknetRpcProvider
from starknet_x402.http import create_facilitator_router, fastapi_payment_middleware

load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

app = FastAPI()

NETWORK = os.getenv("NETWORK", "starknet-sepolia")
PAY_TO_ADDRESS = os.getenv("PAY_TO_ADDRESS")
TOKEN_ADDRESS = os.getenv(
    "TOKEN_ADDRESS",
    "0x4718f5a0fc34cc1af16a1cdee98ffb20c31f5cd61d6ab07201858f4287c938d",  # STRK
)
PRICE = os.getenv("PRICE", "10000000000000000")  # 0.01 STRK
RPC_URL = os.getenv("RPC_URL")
PAYMASTER_API_KEY = os.getenv("PAYMASTER_API_KEY")

if not PAY_TO_ADDRESS:
    raise SystemExit("PAY_TO_ADDRESS env var is required")

provider = (
    StarknetRpcProvider(RPC_URL) if RPC_URL else StarknetRpcProvider.for_network(NETWORK)
)
settle_options = SettleOptions(api_key=PAYMASTER_API_KEY)

routes = {
    "GET /api/premium-data": {
        "scheme": "exact",
        "network": NETWORK,
        "maxAmountRequired": PRICE,
        "asset": TOKEN_ADDRESS,
        "payTo": PAY_TO_ADDRESS,
        "resource": "/api/premium-data",
        "description": "Access to premium data endpoint",
        "mimeType": "application/json",
        "maxTimeoutSeconds": 300,
    }
}

middleware = fastapi_payment_middleware(routes, provider, settle_options)


@app.middleware("http")
async def x402_middleware(request, call_next):
    return await middleware(request, call_next)


app.include_router(create_facilitator_router(provider, settle_options=settle_options), prefix="/facilitator")


@app.on_event("shutdown")
async def close_provider():
    await provider.aclose()


@app.get("/api/premium-data")
async def premium_data():
    return {
        "message": "Success! You've accessed the premium data.",
        "data": {
            "secret": "This is protected content behind a paywall",
        },
    }


@app.get("/")
async def root():
    return {
        "message": "x402 Starknet Demo Server",
        "endpoints": {
            "free": ["/", "/facilitator/health", "/facilitator/supported"],
            "protected": [
                {
                    "path": "/api/premium-data",
                    "price": PRICE,
                    "network": NETWORK,
                    "description": "Premium data endpoint (requires payment)",
                }
            ],
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
