from functools import lru_cache

from app.schemas.pricing import PaymentMethod, PricingRequest

RequestKey = tuple[str, PaymentMethod | None, int, str]


def normalize_destination(destination_id: str | None) -> str | None:
    if not destination_id or not destination_id.strip():
        return None
    return destination_id.strip().upper()


def request_set_key(
    destination_id: str | None,
    payment_method: PaymentMethod | None,
    max_days: int,
    group: str,
) -> RequestKey | None:
    """Structural key deciding whether the channel must be reopened.

    The priority duration is deliberately absent: moving the day slider
    must never change the key.
    """
    destination = normalize_destination(destination_id)
    if destination is None or max_days < 1:
        return None
    return (destination, payment_method, max_days, group)


@lru_cache(maxsize=256)
def _build(
    destination: str,
    payment_method: PaymentMethod | None,
    max_days: int,
    group: str,
) -> tuple[PricingRequest, ...]:
    return tuple(
        PricingRequest(
            numOfDays=days,
            countryId=destination,
            paymentMethod=payment_method,
            groups=(group,),
        )
        for days in range(1, max_days + 1)
    )


def build_pricing_requests(
    destination_id: str | None,
    payment_method: PaymentMethod | None,
    max_days: int,
    group: str,
) -> tuple[PricingRequest, ...]:
    """Return one request per duration 1..max_days for the destination.

    Identical inputs return the same tuple object, so callers may compare
    request sets by identity.
    """
    key = request_set_key(destination_id, payment_method, max_days, group)
    if key is None:
        return ()
    return _build(*key)
