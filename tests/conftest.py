from unittest.mock import patch

import httpx
import pytest
from httpx import ASGITransport


class FakeSubscription:
    def __init__(self, channel, request, on_result, on_error, on_complete):
        self.channel = channel
        self.request = request
        self.on_result = on_result
        self.on_error = on_error
        self.on_complete = on_complete
        self.unsubscribed = False

    def unsubscribe(self):
        if self.unsubscribed:
            return
        self.unsubscribed = True
        self.channel.unsubscribe_calls += 1

    # Delivery keeps working after unsubscribe, like a transport whose
    # teardown has not finished yet.
    def emit(self, payload):
        self.on_result(payload)

    def fail(self, exc):
        self.on_error(exc)

    def complete(self):
        self.on_complete()


class FakeChannel:
    def __init__(self):
        self.subscriptions: list[FakeSubscription] = []
        self.unsubscribe_calls = 0

    def subscribe(self, request, on_result, on_error, on_complete):
        sub = FakeSubscription(self, request, on_result, on_error, on_complete)
        self.subscriptions.append(sub)
        return sub

    @property
    def subscribe_calls(self) -> int:
        return len(self.subscriptions)

    @property
    def latest(self) -> FakeSubscription:
        return self.subscriptions[-1]


def _pricing_payload(
    duration,
    final_price=None,
    total_cost=None,
    discount=0.0,
    country="US",
    currency="USD",
    **extra,
):
    final_price = 20 + duration if final_price is None else final_price
    total_cost = final_price + discount if total_cost is None else total_cost
    payload = {
        "duration": duration,
        "finalPrice": final_price,
        "totalCost": total_cost,
        "discountValue": discount,
        "currency": currency,
        "bundle": {
            "id": f"{country.lower()}-{duration}-day",
            "name": f"{country} {duration}-Day Unlimited",
            "duration": duration,
            "isUnlimited": True,
            "data": None,
            "group": "Standard Unlimited Essential",
            "country": {"iso": country, "name": country},
        },
        "country": {
            "iso": country,
            "name": country,
            "nameHebrew": None,
            "region": None,
            "flag": None,
        },
    }
    payload.update(extra)
    return payload


@pytest.fixture
def fake_channel():
    return FakeChannel()


@pytest.fixture
def pricing_payload():
    return _pricing_payload


@pytest.fixture
def mock_env(monkeypatch):
    monkeypatch.setenv("PRICING_WS_URL", "ws://pricing.test/graphql")
    monkeypatch.setenv("PRICING_GRAPHQL_URL", "http://pricing.test/graphql")
    monkeypatch.setenv("MAX_SESSIONS", "2")


@pytest.fixture
async def client(mock_env, fake_channel):
    from app.main import app, lifespan

    with patch("app.main.build_pricing_channel", return_value=fake_channel):
        async with lifespan(app):
            async with httpx.AsyncClient(
                transport=ASGITransport(app=app),
                base_url="http://test",
            ) as c:
                yield c
