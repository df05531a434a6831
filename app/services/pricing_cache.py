import logging
import time
from collections.abc import Callable
from enum import StrEnum
from functools import partial
from typing import Any

from app.exceptions.custom import PricingTransportError
from app.mappers.price_entry import map_result
from app.mappers.request_builder import (
    RequestKey,
    build_pricing_requests,
    normalize_destination,
    request_set_key,
)
from app.schemas.pricing import (
    BatchPricingRequest,
    PaymentMethod,
    PriceEntry,
    PricingRequest,
    PricingSnapshot,
    SelectionParams,
)
from app.services.pricing_channel import ChannelSubscription, PricingChannel

logger = logging.getLogger(__name__)

DEFAULT_BUNDLE_GROUP = "Standard Unlimited Essential"
DEFAULT_MAX_DAYS = 30

Listener = Callable[["StreamingPricingCache"], None]


class CacheState(StrEnum):
    IDLE = "idle"
    SUBSCRIBING_NEW_CONTEXT = "subscribing_new_context"
    PRIORITY_READY = "priority_ready"
    FULLY_STREAMED = "fully_streamed"
    CHANNEL_ERROR = "channel_error"


class StreamingPricingCache:
    """Per-duration price cache fed by one streaming oracle subscription.

    The owner calls ``update`` with the current selection whenever it may
    have changed; the cache decides on its own whether that needs a new
    subscription, a wholesale invalidation, or nothing at all. Reads are
    synchronous and never raise.

    Every subscription is tagged with the generation that opened it.
    Callbacks carrying an older generation are ignored, so a late message
    from a released subscription can never land in the cache of a newer
    context, whatever the transport teardown timing.
    """

    def __init__(
        self,
        channel: PricingChannel,
        bundle_group: str = DEFAULT_BUNDLE_GROUP,
        default_max_days: int = DEFAULT_MAX_DAYS,
        stall_timeout: float = 0.0,
        invalidate_on_payment_change: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._channel = channel
        self._bundle_group = bundle_group
        self._default_max_days = default_max_days
        self._stall_timeout = stall_timeout
        self._invalidate_on_payment_change = invalidate_on_payment_change
        self._clock = clock

        self._destination: str | None = None
        self._payment_method: PaymentMethod | None = None
        self._max_days = default_max_days
        self._priority: int | None = None
        self._request_key: RequestKey | None = None
        self._requests: tuple[PricingRequest, ...] = ()

        self._subscription: ChannelSubscription | None = None
        self._channel_open = False
        self._generation = 0
        self._subscribed_at: float | None = None

        self._prices: dict[int, PriceEntry] = {}
        self._loaded: set[int] = set()
        self._priority_ready = False
        self._state = CacheState.IDLE
        self._error: Exception | None = None
        self._listeners: list[Listener] = []

    # --- Selection changes ---

    def update(self, params: SelectionParams) -> None:
        max_days = params.max_days or self._default_max_days
        key = request_set_key(
            params.destination_id, params.payment_method, max_days, self._bundle_group
        )
        destination = None
        if key is not None:
            destination = normalize_destination(params.region_id or params.destination_id)

        invalidated = False
        if destination != self._destination:
            previous, self._destination = self._destination, destination
            if destination is not None:
                logger.info(
                    "Destination changed %s -> %s, invalidating pricing cache",
                    previous,
                    destination,
                )
                invalidated = True
        elif (
            destination is not None
            and self._invalidate_on_payment_change
            and params.payment_method != self._payment_method
        ):
            logger.info(
                "Payment method changed %s -> %s, invalidating pricing cache",
                self._payment_method,
                params.payment_method,
            )
            invalidated = True

        self._payment_method = params.payment_method
        self._max_days = max_days
        self._priority = params.priority_duration

        if invalidated:
            self._reset()

        if key is None:
            if self._request_key is not None or self._state is not CacheState.IDLE:
                logger.info("No destination selected, pricing cache idle")
                self._release()
                self._request_key = None
                self._requests = ()
                self._reset()
                self._state = CacheState.IDLE
                self._notify()
            return

        if key != self._request_key or invalidated:
            self._release()
            self._request_key = key
            self._requests = build_pricing_requests(
                params.destination_id, params.payment_method, max_days, self._bundle_group
            )
            self._subscribe()
        elif self._state is CacheState.SUBSCRIBING_NEW_CONTEXT:
            # The new priority may already be cached.
            self._recompute_state()
            if self._state is not CacheState.SUBSCRIBING_NEW_CONTEXT:
                self._notify()

    def retry(self) -> None:
        """Reopen the channel for the current context, keeping cached entries."""
        if self._request_key is None:
            return
        logger.info("Retrying pricing stream for %s", self._destination)
        self._release()
        self._subscribe()

    def close(self) -> None:
        """Release the active subscription. Safe to call repeatedly."""
        if self._subscription is not None:
            logger.info("Closing pricing stream for %s", self._destination)
        self._release()
        self._request_key = None
        self._requests = ()
        self._destination = None
        self._reset()
        self._state = CacheState.IDLE

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # --- Subscription lifecycle ---

    def _subscribe(self) -> None:
        self._generation += 1
        generation = self._generation
        request = BatchPricingRequest(inputs=self._requests, requestedDays=self._priority)
        self._error = None
        self._channel_open = True
        self._subscribed_at = self._clock()
        self._recompute_state()
        logger.info(
            "Subscribing to pricing stream for %s (%d durations, priority=%s, generation=%d)",
            self._destination,
            len(self._requests),
            self._priority,
            generation,
        )
        try:
            subscription = self._channel.subscribe(
                request,
                on_result=partial(self._on_result, generation),
                on_error=partial(self._on_error, generation),
                on_complete=partial(self._on_complete, generation),
            )
        except PricingTransportError as exc:
            self._on_error(generation, exc)
            return
        if generation != self._generation:
            # The channel failed or completed before subscribe() returned.
            subscription.unsubscribe()
            return
        self._subscription = subscription
        self._notify()

    def _release(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.unsubscribe()
        if subscription is not None or self._channel_open:
            self._generation += 1
        self._channel_open = False

    def _reset(self) -> None:
        self._prices = {}
        self._loaded = set()
        self._priority_ready = False
        self._error = None
        self._subscribed_at = None
        self._state = CacheState.SUBSCRIBING_NEW_CONTEXT

    # --- Transport callbacks ---

    def _is_stale(self, generation: int, kind: str) -> bool:
        if generation == self._generation:
            return False
        logger.debug(
            "Ignoring %s from stale pricing subscription (generation %d, current %d)",
            kind,
            generation,
            self._generation,
        )
        return True

    def _on_result(self, generation: int, payload: Any) -> None:
        if self._is_stale(generation, "result"):
            return
        entry = map_result(payload)
        if entry is None:
            return

        self._prices[entry.days] = entry
        self._loaded.add(entry.days)
        self._recompute_state()
        self._notify()

    def _on_error(self, generation: int, exc: Exception) -> None:
        if self._is_stale(generation, "error"):
            return
        logger.error("Pricing stream for %s failed: %s", self._destination, exc)
        self._error = exc
        self._release()
        self._state = CacheState.CHANNEL_ERROR
        self._notify()

    def _on_complete(self, generation: int) -> None:
        if self._is_stale(generation, "completion"):
            return
        missing = self.total_count - self.loaded_count
        if missing > 0:
            logger.warning(
                "Pricing stream for %s completed with %d durations missing",
                self._destination,
                missing,
            )
        self._release()
        self._recompute_state()
        self._notify()

    # --- Derived state ---

    def _priority_satisfied(self) -> bool:
        if self._priority is None:
            return bool(self._loaded)
        return self._priority in self._loaded

    def _fully_streamed(self) -> bool:
        return all(days in self._loaded for days in range(1, self._max_days + 1))

    def _recompute_state(self) -> None:
        if self._request_key is None:
            return
        if not self._priority_ready and self._priority_satisfied():
            self._priority_ready = True
            logger.info("Priority duration %s ready for %s", self._priority, self._destination)
        if not self._priority_ready:
            self._state = CacheState.SUBSCRIBING_NEW_CONTEXT
        elif self._fully_streamed():
            self._state = CacheState.FULLY_STREAMED
        else:
            self._state = CacheState.PRIORITY_READY

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Pricing cache listener failed")

    # --- Read API ---

    def get_price(self, days: int) -> PriceEntry | None:
        return self._prices.get(days)

    def has_price(self, days: int) -> bool:
        return days in self._prices

    def is_duration_loaded(self, days: int) -> bool:
        return days in self._loaded

    def is_duration_loading(self, days: int) -> bool:
        return self._channel_open and days not in self._loaded

    def prices(self) -> dict[int, PriceEntry]:
        return dict(self._prices)

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def destination(self) -> str | None:
        return self._destination

    @property
    def priority_duration(self) -> int | None:
        return self._priority

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def requests(self) -> tuple[PricingRequest, ...]:
        return self._requests

    @property
    def is_channel_open(self) -> bool:
        return self._channel_open

    @property
    def is_priority_loading(self) -> bool:
        return self._state is CacheState.SUBSCRIBING_NEW_CONTEXT

    @property
    def loading(self) -> bool:
        return self.is_priority_loading and self._channel_open

    @property
    def is_ready(self) -> bool:
        return self._priority_ready and self._state is not CacheState.IDLE

    @property
    def is_background_streaming(self) -> bool:
        return self._channel_open and self._state is CacheState.PRIORITY_READY

    @property
    def loaded_count(self) -> int:
        return sum(1 for days in self._loaded if days <= self._max_days)

    @property
    def total_count(self) -> int:
        return self._max_days

    @property
    def loading_progress(self) -> float:
        if self._max_days <= 0:
            return 0.0
        return min(self.loaded_count / self._max_days * 100, 100.0)

    @property
    def error(self) -> Exception | None:
        return self._error

    def stalled_durations(self, now: float | None = None) -> list[int]:
        """Durations still missing ``stall_timeout`` seconds after subscribing.

        Only a report: stalled durations stay requestable and are filled in
        if their result eventually arrives.
        """
        if self._stall_timeout <= 0 or self._subscribed_at is None:
            return []
        now = self._clock() if now is None else now
        if now - self._subscribed_at < self._stall_timeout:
            return []
        return [days for days in range(1, self._max_days + 1) if days not in self._loaded]

    def snapshot(self) -> PricingSnapshot:
        return PricingSnapshot(
            state=self._state.value,
            destination=self._destination,
            priority_duration=self._priority,
            generation=self._generation,
            loading=self.loading,
            is_priority_loading=self.is_priority_loading,
            is_ready=self.is_ready,
            is_background_streaming=self.is_background_streaming,
            loading_progress=self.loading_progress,
            loaded_count=self.loaded_count,
            total_count=self.total_count,
            loaded_days=sorted(self._loaded),
            stalled_days=self.stalled_durations(),
            prices=self.prices(),
            error=str(self._error) if self._error is not None else None,
        )
