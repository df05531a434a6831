import asyncio
import logging
from typing import Any

import httpx

from app.exceptions.custom import PricingTransportError, RateLimitError
from app.schemas.pricing import BatchPricingRequest
from app.services.pricing_channel import (
    BATCH_PRICES_QUERY,
    BATCH_QUERY_FIELD,
    CompleteCallback,
    ErrorCallback,
    ResultCallback,
)

logger = logging.getLogger(__name__)

NEARBY_DAYS = 3


def priority_order(results: list[Any], requested_days: int | None) -> list[Any]:
    """Requested duration first, then durations within 3 days of it, then the rest."""
    if not requested_days:
        return list(results)

    def rank(item: Any) -> int:
        duration = item.get("duration") if isinstance(item, dict) else None
        if not isinstance(duration, int):
            return 2
        if duration == requested_days:
            return 0
        if abs(duration - requested_days) <= NEARBY_DAYS:
            return 1
        return 2

    return sorted(results, key=rank)


class HttpBatchSubscription:
    def __init__(self) -> None:
        self.closed = False
        self._task: asyncio.Task | None = None

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class HttpBatchPricingChannel:
    """Fallback channel for deployments without the websocket endpoint.

    Issues a single ``calculatePrices`` query and replays its results one
    by one, so the cache sees the same message stream either way.
    """

    def __init__(self, client: httpx.AsyncClient, url: str, auth_token: str = ""):
        self._client = client
        self._url = url
        self._headers = {"Content-Type": "application/json"}
        if auth_token:
            self._headers["Authorization"] = f"Bearer {auth_token}"

    def subscribe(
        self,
        request: BatchPricingRequest,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_complete: CompleteCallback,
    ) -> HttpBatchSubscription:
        subscription = HttpBatchSubscription()
        task = asyncio.get_running_loop().create_task(
            self._run(subscription, request, on_result, on_error, on_complete)
        )
        subscription.attach(task)
        return subscription

    async def fetch_batch(self, request: BatchPricingRequest) -> list[Any]:
        payload = {
            "query": BATCH_PRICES_QUERY,
            "operationName": "CalculatePricesBatch",
            "variables": {"inputs": request.variables()["inputs"]},
        }
        resp = await self._client.post(self._url, json=payload, headers=self._headers)

        if resp.status_code == 429:
            raise RateLimitError("Pricing API")
        if resp.status_code >= 400:
            raise PricingTransportError(resp.text, status_code=resp.status_code)

        try:
            body = resp.json()
        except ValueError:
            raise PricingTransportError(
                f"Invalid JSON from pricing API: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not isinstance(body, dict):
            raise PricingTransportError(
                "Unexpected pricing API response shape", status_code=resp.status_code
            )

        errors = body.get("errors")
        data = body.get("data")
        results = data.get(BATCH_QUERY_FIELD) if isinstance(data, dict) else None
        if errors and not isinstance(results, list):
            if not isinstance(errors, list):
                errors = [errors]
            messages = "; ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
            )
            raise PricingTransportError(messages, status_code=resp.status_code)
        if errors:
            logger.warning("Batch pricing returned partial errors: %s", errors)
        return results if isinstance(results, list) else []

    async def _run(
        self,
        subscription: HttpBatchSubscription,
        request: BatchPricingRequest,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_complete: CompleteCallback,
    ) -> None:
        try:
            results = await self.fetch_batch(request)
        except (PricingTransportError, RateLimitError) as exc:
            logger.error("Batch pricing request failed: %s", exc)
            if not subscription.closed:
                subscription.closed = True
                on_error(exc)
            return
        except httpx.HTTPError as exc:
            logger.error("Batch pricing transport failure: %s", exc)
            if not subscription.closed:
                subscription.closed = True
                on_error(PricingTransportError(str(exc) or type(exc).__name__))
            return
        except Exception as exc:
            logger.exception("Batch pricing request crashed")
            if not subscription.closed:
                subscription.closed = True
                on_error(PricingTransportError(f"Batch pricing failed: {exc!r}"))
            return

        logger.info(
            "Batch pricing returned %d results for %d inputs",
            len(results),
            len(request.inputs),
        )
        for item in priority_order(results, request.requestedDays):
            if subscription.closed:
                return
            on_result(item)
        if not subscription.closed:
            subscription.closed = True
            on_complete()
