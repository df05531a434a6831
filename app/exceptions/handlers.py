import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from .custom import PricingSessionNotFoundError, PricingTransportError, RateLimitError

logger = logging.getLogger(__name__)


async def pricing_transport_error_handler(_request: Request, exc: PricingTransportError) -> JSONResponse:
    logger.error("Pricing transport error: %s (status=%s)", exc.message, exc.status_code)
    return JSONResponse(
        status_code=502,
        content={"detail": f"Pricing service error: {exc.message}"},
    )


async def session_not_found_handler(_request: Request, exc: PricingSessionNotFoundError) -> JSONResponse:
    logger.info("Unknown pricing session %s", exc.session_id)
    return JSONResponse(
        status_code=404,
        content={"detail": "Pricing session not found"},
    )


async def rate_limit_error_handler(_request: Request, exc: RateLimitError) -> JSONResponse:
    logger.warning("Rate limit hit for %s", exc.service)
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded for {exc.service}"},
    )
