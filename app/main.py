import logging
import sys
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from app.config import Settings
from app.exceptions.custom import (
    PricingSessionNotFoundError,
    PricingTransportError,
    RateLimitError,
)
from app.exceptions.handlers import (
    pricing_transport_error_handler,
    rate_limit_error_handler,
    session_not_found_handler,
)
from app.routers.pricing import router as pricing_router
from app.services.graphql_http import HttpBatchPricingChannel
from app.services.graphql_ws import GraphQLWsPricingChannel
from app.services.pricing_channel import PricingChannel
from app.sessions import PricingSessionStore


def build_pricing_channel(settings: Settings, client: httpx.AsyncClient) -> PricingChannel:
    if settings.pricing_transport == "http":
        return HttpBatchPricingChannel(
            client, settings.pricing_graphql_url, settings.pricing_auth_token
        )
    return GraphQLWsPricingChannel(settings.pricing_ws_url, settings.pricing_auth_token)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)

    async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
        channel = build_pricing_channel(settings, client)
        store = PricingSessionStore(channel, settings)
        app.state.session_store = store
        try:
            yield
        finally:
            # Open streams must not outlive the app.
            store.close_all()


app = FastAPI(title="Plan Pricing Stream", lifespan=lifespan)

app.add_exception_handler(PricingTransportError, pricing_transport_error_handler)
app.add_exception_handler(PricingSessionNotFoundError, session_not_found_handler)
app.add_exception_handler(RateLimitError, rate_limit_error_handler)

app.include_router(pricing_router)
