from collections.abc import Callable
from typing import Any, Protocol

from app.schemas.pricing import BatchPricingRequest

ResultCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]
CompleteCallback = Callable[[], None]

BATCH_STREAM_FIELD = "calculatePricesBatchStream"
BATCH_QUERY_FIELD = "calculatePrices"

_RESULT_SELECTION = """
      duration
      currency
      totalCost
      discountValue
      finalPrice
      savingsAmount
      savingsPercentage
      bundle {
        id
        name
        duration
        isUnlimited
        data
        group
        country { iso name }
      }
      country { iso name nameHebrew region flag }
      pricingSteps { order name priceBefore priceAfter impact ruleId metadata timestamp }
      customerDiscounts { name amount percentage reason }
"""

BATCH_STREAM_SUBSCRIPTION = (
    "subscription CalculatePricesBatchStream($inputs: [CalculatePriceInput!]!, $requestedDays: Int) {\n"
    "  calculatePricesBatchStream(inputs: $inputs, requestedDays: $requestedDays) {"
    + _RESULT_SELECTION
    + "  }\n}\n"
)

BATCH_PRICES_QUERY = (
    "query CalculatePricesBatch($inputs: [CalculatePriceInput!]!) {\n"
    "  calculatePrices(inputs: $inputs) {"
    + _RESULT_SELECTION
    + "  }\n}\n"
)


class ChannelSubscription(Protocol):
    def unsubscribe(self) -> None:
        """Release the subscription. Safe to call more than once."""
        ...


class PricingChannel(Protocol):
    """Push channel to the pricing oracle.

    ``subscribe`` sends the request envelope once and then calls
    ``on_result`` with each raw result object (possibly None or
    incomplete) in whatever order the oracle finishes them. ``on_error``
    reports a transport failure and ends the subscription; ``on_complete``
    reports that the oracle closed the stream normally.
    """

    def subscribe(
        self,
        request: BatchPricingRequest,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_complete: CompleteCallback,
    ) -> ChannelSubscription:
        ...
