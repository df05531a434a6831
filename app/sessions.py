from __future__ import annotations

import logging
from collections import OrderedDict

from app.config import Settings
from app.exceptions.custom import PricingSessionNotFoundError
from app.schemas.pricing import SelectionParams
from app.services.pricing_cache import StreamingPricingCache
from app.services.pricing_channel import PricingChannel

logger = logging.getLogger(__name__)


class PricingSessionStore:
    """One streaming pricing cache per storefront session."""

    def __init__(self, channel: PricingChannel, settings: Settings) -> None:
        self._channel = channel
        self._settings = settings
        self._sessions: OrderedDict[str, StreamingPricingCache] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _new_cache(self) -> StreamingPricingCache:
        return StreamingPricingCache(
            self._channel,
            bundle_group=self._settings.bundle_group,
            default_max_days=self._settings.default_max_days,
            stall_timeout=self._settings.stall_timeout_seconds,
            invalidate_on_payment_change=self._settings.invalidate_on_payment_change,
        )

    def _evict(self) -> None:
        # Least recently touched sessions go first; their streams are released.
        while len(self._sessions) > self._settings.max_sessions:
            session_id, cache = self._sessions.popitem(last=False)
            logger.info("Evicting pricing session %s", session_id)
            cache.close()

    def select(self, session_id: str, params: SelectionParams) -> StreamingPricingCache:
        cache = self._sessions.get(session_id)
        if cache is None:
            cache = self._new_cache()
            self._sessions[session_id] = cache
            logger.info("Created pricing session %s", session_id)
        else:
            self._sessions.move_to_end(session_id)
        cache.update(params)
        self._evict()
        return cache

    def get(self, session_id: str) -> StreamingPricingCache:
        cache = self._sessions.get(session_id)
        if cache is None:
            raise PricingSessionNotFoundError(session_id)
        self._sessions.move_to_end(session_id)
        return cache

    def close(self, session_id: str) -> None:
        cache = self._sessions.pop(session_id, None)
        if cache is None:
            raise PricingSessionNotFoundError(session_id)
        cache.close()
        logger.info("Closed pricing session %s", session_id)

    def close_all(self) -> None:
        while self._sessions:
            _, cache = self._sessions.popitem()
            cache.close()
