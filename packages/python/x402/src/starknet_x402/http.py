"""FastAPI facilitator endpoints and payment middleware."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .constants import SCHEME_EXACT, SUPPORTED_NETWORKS, X402_VERSION
from .encoding import decode_payment_header, encode_payment_response_header
from .errors import X402Error
from .provider import ChainReader
from .settle import SettleOptions, settle_payment
from .types import (
    PaymentRequirements,
    PaymentRequirementsResponse,
    RequirementsLike,
    SupportedKind,
    SupportedKindsResponse,
    parse_payment_requirements,
)
from .verify import verify_payment

logger = logging.getLogger(__name__)

PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

RouteRequirements = Dict[str, Union[RequirementsLike, Sequence[RequirementsLike]]]


# =========================================================================
# Facilitator endpoints
# =========================================================================


def create_facilitator_router(
    provider: ChainReader,
    networks: Sequence[str] = SUPPORTED_NETWORKS,
    settle_options: Optional[SettleOptions] = None,
) -> APIRouter:
    router = APIRouter()

    @router.get("/supported")
    async def supported() -> Dict[str, Any]:
        kinds = [SupportedKind(scheme=SCHEME_EXACT, network=network) for network in networks]
        return SupportedKindsResponse(kinds=kinds).to_wire()

    @router.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @router.post("/verify")
    async def verify(request: Request) -> JSONResponse:
        body = await _json_object(request)
        result = await verify_payment(
            provider,
            body.get("paymentPayload"),
            body.get("paymentRequirements"),
        )
        return JSONResponse(content=result.to_wire())

    @router.post("/settle")
    async def settle(request: Request) -> JSONResponse:
        body = await _json_object(request)
        result = await settle_payment(
            provider,
            body.get("paymentPayload"),
            body.get("paymentRequirements"),
            settle_options,
        )
        return JSONResponse(content=result.to_wire())

    return router


def create_facilitator_app(
    provider: ChainReader,
    networks: Sequence[str] = SUPPORTED_NETWORKS,
    settle_options: Optional[SettleOptions] = None,
) -> FastAPI:
    app = FastAPI(title="x402 Starknet facilitator")
    app.include_router(create_facilitator_router(provider, networks, settle_options))
    return app


async def _json_object(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


# =========================================================================
# Resource server middleware
# =========================================================================


def _normalize_routes(routes: RouteRequirements) -> Dict[str, List[PaymentRequirements]]:
    normalized: Dict[str, List[PaymentRequirements]] = {}
    for route, accepts in routes.items():
        items = accepts if isinstance(accepts, (list, tuple)) else [accepts]
        normalized[route.strip()] = [parse_payment_requirements(item) for item in items]
    return normalized


def _payment_required(accepts: List[PaymentRequirements], error: str) -> JSONResponse:
    body = PaymentRequirementsResponse(x402_version=X402_VERSION, error=error, accepts=accepts)
    return JSONResponse(content=body.to_wire(), status_code=402)


def fastapi_payment_middleware(
    routes: RouteRequirements,
    provider: ChainReader,
    settle_options: Optional[SettleOptions] = None,
):
    """Protect ``"METHOD /path"`` routes with x402 payments.

    Requests without a valid ``X-PAYMENT`` header get a 402 listing the
    accepted requirements. Paid requests are settled before the handler's
    response is released, with the result in ``X-PAYMENT-RESPONSE``.
    """
    protected = _normalize_routes(routes)

    async def middleware(request, call_next):
        accepts = protected.get(f"{request.method} {request.url.path}")
        if accepts is None:
            return await call_next(request)

        header = request.headers.get(PAYMENT_HEADER)
        if not header:
            return _payment_required(accepts, f"{PAYMENT_HEADER} header is required")
        try:
            payload = decode_payment_header(header)
        except X402Error as exc:
            return _payment_required(accepts, exc.message)

        network = payload.get("network")
        requirements = next((req for req in accepts if req.network == network), accepts[0])

        verification = await verify_payment(provider, payload, requirements)
        if not verification.is_valid:
            return _payment_required(accepts, verification.invalid_reason or "invalid payment")

        response = await call_next(request)
        if response.status_code >= 400:
            return response

        settlement = await settle_payment(provider, payload, requirements, settle_options)
        if not settlement.success:
            logger.warning("Settlement failed for %s: %s", request.url.path, settlement.error_reason)
            return _payment_required(accepts, settlement.error_reason or "settlement failed")
        response.headers[PAYMENT_RESPONSE_HEADER] = encode_payment_response_header(settlement)
        return response

    return middleware
