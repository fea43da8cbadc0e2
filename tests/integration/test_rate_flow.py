"""
Integration tests for the full rate flow: token, carrier search, aggregation,
cache and cart pricing wired together over a stubbed carrier.
"""

import json
from datetime import date

import httpx
import pytest

from service_shipping.app.adapters import CarrierAuthClient, CarrierRateClient
from service_shipping.app.caching.rate_cache import RateCache
from service_shipping.app.domain.fulfillment import FulfillmentProvider
from service_shipping.app.domain.models import CartSnapshot, PackageDescriptor
from service_shipping.app.domain.package_estimator import PackageEstimator
from service_shipping.app.domain.rate_aggregator import RateAggregator


class Carrier:
    """Carrier stub that only answers scoped searches when ``require_mail_class`` is set."""

    def __init__(self, require_mail_class: bool = False):
        self.require_mail_class = require_mail_class
        self.token_requests = 0
        self.searches = []
        self.prices = {
            "PRIORITY_MAIL": 8.5,
            "PRIORITY_MAIL_EXPRESS": 31.4,
            "USPS_GROUND_ADVANTAGE": 6.2,
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/v3/token":
            self.token_requests += 1
            return httpx.Response(200, content=json.dumps({"access_token": "tok", "expires_in": 28800}))

        body = json.loads(request.content)
        self.searches.append(body)
        mail_class = body.get("mailClass")
        if mail_class is None:
            if self.require_mail_class:
                return httpx.Response(400, content=json.dumps({"error": {"message": "mailClass is required"}}))
            entries = list(self.prices.items())
        elif mail_class in self.prices:
            entries = [(mail_class, self.prices[mail_class])]
        else:
            return httpx.Response(400, content=json.dumps({"error": {"message": "unsupported"}}))

        return httpx.Response(200, content=json.dumps({
            "rateOptions": [
                {"totalBasePrice": price, "rates": [{"mailClass": name}]}
                for name, price in entries
            ]
        }))


def build(carrier: Carrier):
    transport = httpx.MockTransport(carrier)
    auth = CarrierAuthClient("https://carrier.test", "id", "secret", transport=transport)
    rates = CarrierRateClient(
        "https://carrier.test", auth, transport=transport, today=lambda: date(2026, 10, 18)
    )
    aggregator = RateAggregator(rates, RateCache(ttl_seconds=300))
    provider = FulfillmentProvider(aggregator, PackageEstimator(), origin_zip="66217")
    return aggregator, provider


CART = CartSnapshot.from_dict({
    "id": "cart_1",
    "shipping_address": {"postal_code": "66215"},
    "items": [{"quantity": 1, "weight": 2, "length": 12, "width": 9, "height": 6}],
})


class TestRateFlow:
    """End-to-end rate acquisition."""

    @pytest.mark.asyncio
    async def test_single_search_prices_every_class_for_a_cart(self):
        carrier = Carrier()
        _, provider = build(carrier)

        priority = await provider.calculate_price("PRIORITY_MAIL", CART)
        ground = await provider.calculate_price("usps-ground-advantage", CART)
        express = await provider.calculate_price("PRIORITY_MAIL_EXPRESS", CART)

        assert priority["calculated_amount"] == 850
        assert ground["calculated_amount"] == 620
        assert express["calculated_amount"] == 3140
        assert carrier.token_requests == 1
        assert len(carrier.searches) == 1
        assert carrier.searches[0]["weight"] == 2.0
        assert carrier.searches[0]["mailingDate"] == "2026-10-18"

    @pytest.mark.asyncio
    async def test_carrier_requiring_mail_class_uses_fallback(self):
        carrier = Carrier(require_mail_class=True)
        aggregator, _ = build(carrier)
        package = PackageDescriptor(weight=2.0, length=12.0, width=9.0, height=6.0)

        quote = await aggregator.get_rate_quote(package, "66217", "66215", "66217-66215-cart_2")

        assert [(r.service_id, r.price_cents) for r in quote.rates] == [
            ("USPS_GROUND_ADVANTAGE", 620),
            ("PRIORITY_MAIL", 850),
            ("PRIORITY_MAIL_EXPRESS", 3140),
        ]
        assert quote.source == "fallback"
        assert quote.degraded is False
        assert len(carrier.searches) == 4
        assert carrier.token_requests == 1

    @pytest.mark.asyncio
    async def test_missing_class_degrades_but_still_prices(self):
        carrier = Carrier(require_mail_class=True)
        del carrier.prices["PRIORITY_MAIL_EXPRESS"]
        aggregator, provider = build(carrier)

        result = await provider.calculate_price("PRIORITY_MAIL", CART)
        cached = aggregator.cache.get("66217-66215-cart_1")

        assert result["calculated_amount"] == 850
        assert cached is not None
        assert cached.degraded is True
        assert [r.service_id for r in cached.rates] == ["USPS_GROUND_ADVANTAGE", "PRIORITY_MAIL"]
