"""
Shipping service: carrier rate quotes, address standardization and cart
shipping prices for the storefront.
"""

import asyncio
import contextlib
import json
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Depends, Request

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreakerManager
from shared.config import ServiceConfig, get_config
from shared.errors import CarrierApiError, ValidationError

from service_shipping.app.adapters import (
    CarrierAddressClient,
    CarrierAuthClient,
    CarrierRateClient,
    carrier_base_url,
)
from service_shipping.app.caching.rate_cache import RateCache, make_cache_key
from service_shipping.app.domain.fulfillment import FulfillmentProvider
from service_shipping.app.domain.models import (
    DEFAULT_FALLBACK_CLASSES,
    CartSnapshot,
    MailClass,
    PackageDescriptor,
)
from service_shipping.app.domain.package_estimator import PackageEstimator
from service_shipping.app.domain.rate_aggregator import RateAggregator
from service_shipping.app.domain.validation import (
    package_from_request,
    require_fields,
    validate_package,
    validate_zip,
)
from service_shipping.app.ratelimit.fixed_window import (
    FixedWindowRateLimiter,
    RateLimitMiddleware,
    policies_for_profile,
)

# Rate checks without explicit package details quote a 1 lb small box
RATE_CHECK_PACKAGE = PackageDescriptor(weight=1.0, length=10.0, width=8.0, height=2.0)


class ShippingService(BaseService):
    """Shipping service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__("shipping", 8000, config=config or get_config("shipping", 8000))

        base_url = carrier_base_url(self.config.carrier_environment)
        timeout = self.config.carrier_timeout_seconds

        self.circuit_breakers = CircuitBreakerManager()
        self.auth_client = CarrierAuthClient(
            base_url,
            self.config.carrier_client_id,
            self.config.carrier_client_secret,
            safety_margin_seconds=self.config.token_safety_margin_seconds,
            timeout=timeout,
            transport=transport,
        )
        self.rate_client = CarrierRateClient(
            base_url,
            self.auth_client,
            timeout=timeout,
            circuit_breaker=self.circuit_breakers.get_circuit_breaker(
                "carrier_rates",
                recovery_timeout=30.0,
                expected_exception=(httpx.TransportError, CarrierApiError),
            ),
            metrics=self.metrics,
            transport=transport,
        )
        self.address_client = CarrierAddressClient(
            base_url,
            self.auth_client,
            timeout=timeout,
            circuit_breaker=self.circuit_breakers.get_circuit_breaker(
                "carrier_addresses",
                recovery_timeout=30.0,
                expected_exception=(httpx.TransportError, CarrierApiError),
            ),
            transport=transport,
        )

        self.rate_cache = RateCache(self.config.rate_cache_ttl_seconds, metrics=self.metrics)
        self.rate_limiter = FixedWindowRateLimiter(
            policies_for_profile(self.config.rate_limit_profile),
            enabled=self.config.rate_limiting_enabled,
            metrics=self.metrics,
        )
        self.rate_limit_middleware = RateLimitMiddleware(self.rate_limiter)

        mail_classes = DEFAULT_FALLBACK_CLASSES
        if self.config.include_first_class:
            mail_classes = mail_classes + (MailClass.FIRST_CLASS_PACKAGE_SERVICE,)

        self.estimator = PackageEstimator()
        self.aggregator = RateAggregator(
            self.rate_client,
            self.rate_cache,
            mail_classes=mail_classes,
            call_timeout=self.config.rate_call_timeout_seconds,
            metrics=self.metrics,
        )
        self.fulfillment = FulfillmentProvider(
            self.aggregator,
            self.estimator,
            origin_zip=self.config.origin_zip,
            default_mail_class=self.config.default_mail_class,
        )
        self._sweeper_tasks: List[asyncio.Task] = []

        @self.app.on_event("startup")
        async def _startup():
            if not self.config.carrier_client_id or not self.config.carrier_client_secret:
                self.logger.warning("Carrier credentials are not configured; rate and address calls will fail")
            # Expired cache entries and idle limiter windows are only dropped here
            self._sweeper_tasks = [
                asyncio.create_task(
                    self.rate_limiter.run_sweeper(self.config.rate_limit_sweep_interval_seconds)
                ),
                asyncio.create_task(
                    self.rate_cache.run_sweeper(self.config.rate_cache_sweep_interval_seconds)
                ),
            ]

        @self.app.on_event("shutdown")
        async def _shutdown():
            for task in self._sweeper_tasks:
                task.cancel()
            for task in self._sweeper_tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._sweeper_tasks = []

        self._setup_shipping_routes()

    async def _json_body(self, request: Request) -> Dict[str, Any]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Request body must be valid JSON") from None
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    def _setup_shipping_routes(self):
        """Set up shipping routes."""
        limit_rates = Depends(self.rate_limit_middleware.dependency("rates"))
        limit_api = Depends(self.rate_limit_middleware.dependency("api"))

        @self.app.post("/rates:calculate", dependencies=[limit_rates])
        async def calculate_rates(request: Request):
            """Quote every available mail class, cheapest first."""
            body = await self._json_body(request)
            destination_zip = validate_zip(body.get("destinationZip"), "destinationZip")

            items = body.get("items")
            if items:
                if not isinstance(items, list):
                    raise ValidationError("Items must be a list", field="items")
                package = self.estimator.estimate(items)
            else:
                package = package_from_request(body.get("weight"), body.get("dimensions"), RATE_CHECK_PACKAGE)
            package = validate_package(package)

            identity = str(body.get("cartId") or package.fingerprint())
            cache_key = make_cache_key(self.config.origin_zip, destination_zip, identity)
            quote = await self.aggregator.get_rate_quote(
                package, self.config.origin_zip, destination_zip, cache_key
            )
            return {
                "originZip": self.config.origin_zip,
                "destinationZip": destination_zip,
                "package": package.to_dict(),
                **quote.to_dict(),
            }

        @self.app.post("/address:validate", dependencies=[limit_api])
        async def validate_address(request: Request):
            """Standardize a postal address with the carrier."""
            body = await self._json_body(request)
            require_fields(body, "streetAddress", "state", "zipCode")
            validate_zip(body["zipCode"], "zipCode")

            address = await self.address_client.validate(
                street_address=str(body["streetAddress"]),
                city=body.get("city"),
                state=str(body["state"]),
                zip_code=str(body["zipCode"]),
            )
            return {"address": address.to_dict()}

        @self.app.get("/fulfillment-options")
        async def fulfillment_options():
            """Mail classes offered at checkout."""
            return {"options": self.fulfillment.list_options()}

        @self.app.post("/shipping-options:calculate-price", dependencies=[limit_api])
        async def calculate_shipping_price(request: Request):
            """Price a cart for one mail class."""
            body = await self._json_body(request)
            cart = body.get("cart")
            if not isinstance(cart, dict):
                raise ValidationError("cart is required", field="cart")
            option_data = body.get("optionData") or {}
            mail_class = body.get("mailClass") or option_data.get("mailClass")
            return await self.fulfillment.calculate_price(mail_class, CartSnapshot.from_dict(cart))

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {
            "carrier": {
                "environment": self.config.carrier_environment,
                "credentials_configured": bool(
                    self.config.carrier_client_id and self.config.carrier_client_secret
                ),
                "circuit_breakers": self.circuit_breakers.get_all_states(),
            },
            "rate_cache": self.rate_cache.stats(),
            "rate_limiter": self.rate_limiter.stats(),
        }

    def _health_status(self, dependencies: Dict[str, Any]) -> str:
        breakers = dependencies["carrier"]["circuit_breakers"].values()
        if any(breaker["state"] != "closed" for breaker in breakers):
            return "degraded"
        return "ok"


def create_app():
    """Create FastAPI application."""
    service = ShippingService()
    return service.app


if __name__ == "__main__":
    service = ShippingService()
    service.run()
