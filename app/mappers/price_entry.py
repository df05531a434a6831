import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from app.schemas.pricing import PriceEntry, PricingResultPayload

logger = logging.getLogger(__name__)


def parse_result(payload: Any) -> PricingResultPayload | None:
    """Validate one oracle message. Returns None for malformed payloads."""
    if not isinstance(payload, Mapping):
        logger.debug("Dropping non-object pricing payload: %r", payload)
        return None
    try:
        return PricingResultPayload.model_validate(dict(payload))
    except ValidationError as exc:
        logger.debug(
            "Dropping malformed pricing payload for duration %r: %s",
            payload.get("duration"),
            exc.errors(include_url=False),
        )
        return None


def to_price_entry(result: PricingResultPayload) -> PriceEntry:
    return PriceEntry(
        days=result.duration,
        total_price=result.finalPrice,
        original_price=result.totalCost,
        discount_amount=result.discountValue,
        has_discount=result.discountValue > 0,
        daily_price=result.finalPrice / result.duration,
        currency=result.currency,
        bundle=result.bundle,
        country=result.country,
        pricing_steps=result.pricingSteps,
        savings_amount=result.savingsAmount,
        savings_percentage=result.savingsPercentage,
        customer_discounts=result.customerDiscounts or [],
    )


def map_result(payload: Any) -> PriceEntry | None:
    result = parse_result(payload)
    if result is None:
        return None
    return to_price_entry(result)
