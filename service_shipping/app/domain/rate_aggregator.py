"""
Rate aggregation: cache first, then one unscoped carrier search, then
concurrent per-mail-class searches.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Tuple

from shared.errors import CarrierApiError, RateUnavailableError
from shared.logging import get_logger

from service_shipping.app.caching.rate_cache import RateCache
from service_shipping.app.domain.models import (
    DEFAULT_FALLBACK_CLASSES,
    MailClass,
    PackageDescriptor,
    PriceType,
    RateOption,
    RateQuote,
    RateQuoteRequest,
)
from service_shipping.app.domain.validation import validate_package, validate_zip

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from service_shipping.app.adapters.carrier_rate_client import CarrierRateClient


@dataclass(frozen=True)
class ClassAttempt:
    """Outcome of one per-mail-class search: an option or the reason it failed."""

    mail_class: MailClass
    option: Optional[RateOption] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.option is not None


def sort_rates(rates: Iterable[RateOption]) -> Tuple[RateOption, ...]:
    """Cheapest first; service id breaks ties so ordering is deterministic."""
    return tuple(sorted(rates, key=lambda rate: (rate.price_cents, rate.service_id)))


class RateAggregator:
    """Produces a sorted, cached rate set for a package and destination."""

    def __init__(
        self,
        rate_client: "CarrierRateClient",
        cache: RateCache,
        *,
        mail_classes: Sequence[MailClass] = DEFAULT_FALLBACK_CLASSES,
        price_type: PriceType = PriceType.RETAIL,
        call_timeout: Optional[float] = 20.0,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        if not mail_classes:
            raise ValueError("At least one fallback mail class is required")
        self.rate_client = rate_client
        self.cache = cache
        self.mail_classes = tuple(mail_classes)
        self.price_type = price_type
        self.call_timeout = call_timeout
        self.metrics = metrics
        self.logger = get_logger("shipping.rate_aggregator")

    async def get_rates(
        self,
        package: PackageDescriptor,
        origin_zip: str,
        destination_zip: str,
        cache_key: str,
    ) -> List[RateOption]:
        """Rates for ``package``, sorted ascending by price."""
        quote = await self.get_rate_quote(package, origin_zip, destination_zip, cache_key)
        return list(quote.rates)

    async def get_rate_quote(
        self,
        package: PackageDescriptor,
        origin_zip: str,
        destination_zip: str,
        cache_key: str,
    ) -> RateQuote:
        """Like ``get_rates`` but also reports where the rates came from and
        whether some mail classes were missing."""
        destination_zip = validate_zip(destination_zip, "destinationZip")
        package = validate_package(package)

        cached = self.cache.get(cache_key)
        if cached is not None:
            self.logger.info("Using cached rates", cache_key=cache_key, rate_count=len(cached.rates))
            return RateQuote(rates=cached.rates, source="cache", degraded=cached.degraded)

        request = RateQuoteRequest(
            origin_zip=origin_zip,
            destination_zip=destination_zip,
            package=package,
            price_type=self.price_type,
        )

        rates = await self._primary(request)
        if rates:
            source, degraded = "primary", False
        else:
            rates, degraded = await self._fallback(request)
            source = "fallback"

        ordered = sort_rates(rates)
        self.cache.put(cache_key, ordered, degraded=degraded)
        return RateQuote(rates=ordered, source=source, degraded=degraded)

    async def _quote(self, request: RateQuoteRequest) -> List[RateOption]:
        if self.call_timeout is None:
            return await self.rate_client.quote(request)
        return await asyncio.wait_for(self.rate_client.quote(request), timeout=self.call_timeout)

    async def _primary(self, request: RateQuoteRequest) -> List[RateOption]:
        """One search without a mail class, asking for every class at once."""
        try:
            options = await self._quote(request)
        except CarrierApiError as e:
            self.logger.warning(
                "Unscoped rate request failed, falling back to per-class requests",
                error=e.message,
                status_code=e.status_code,
            )
            return []
        except asyncio.TimeoutError:
            self.logger.warning("Unscoped rate request timed out, falling back to per-class requests")
            return []

        if not options:
            self.logger.warning("No rates returned without mail class, falling back to per-class requests")
            return []

        rates = self._dedupe(options)
        self.logger.info(
            "Rates from single carrier call",
            rate_count=len(rates),
            mail_classes=[rate.service_id for rate in rates],
        )
        return rates

    async def _fallback(self, request: RateQuoteRequest) -> Tuple[List[RateOption], bool]:
        """Concurrent per-class searches; individual failures only shrink the result."""
        attempts = await asyncio.gather(
            *(self._attempt_class(request, mail_class) for mail_class in self.mail_classes)
        )
        succeeded = [attempt.option for attempt in attempts if attempt.ok]
        failed = [attempt for attempt in attempts if not attempt.ok]

        if not succeeded:
            self._count_fallback("failed")
            self.logger.error(
                "Every rate acquisition strategy failed",
                mail_classes=[attempt.mail_class.value for attempt in failed],
            )
            raise RateUnavailableError(
                details={"mail_classes": [attempt.mail_class.value for attempt in failed]}
            )

        degraded = bool(failed)
        self._count_fallback("degraded" if degraded else "complete")
        self.logger.info(
            "Rates from per-class carrier calls",
            succeeded=[option.service_id for option in succeeded],
            failed=[attempt.mail_class.value for attempt in failed],
        )
        return self._dedupe(succeeded), degraded

    async def _attempt_class(self, request: RateQuoteRequest, mail_class: MailClass) -> ClassAttempt:
        try:
            options = await self._quote(request.with_mail_class(mail_class))
        except CarrierApiError as e:
            self.logger.warning("Failed to get rate for mail class", mail_class=mail_class.value, error=e.message)
            return ClassAttempt(mail_class=mail_class, error=e.message)
        except asyncio.TimeoutError:
            self.logger.warning("Rate request for mail class timed out", mail_class=mail_class.value)
            return ClassAttempt(mail_class=mail_class, error="timed out")

        if not options:
            self.logger.warning("No rate returned for mail class", mail_class=mail_class.value)
            return ClassAttempt(mail_class=mail_class, error="no rate returned")
        return ClassAttempt(mail_class=mail_class, option=options[0])

    def _dedupe(self, options: Iterable[RateOption]) -> List[RateOption]:
        """Keep the first price seen per service id."""
        seen = {}
        for option in options:
            kept = seen.get(option.service_id)
            if kept is None:
                seen[option.service_id] = option
            elif kept.price_cents != option.price_cents:
                self.logger.warning(
                    "Duplicate rate for service ignored",
                    service_id=option.service_id,
                    kept_price_cents=kept.price_cents,
                    ignored_price_cents=option.price_cents,
                )
        return list(seen.values())

    def _count_fallback(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("rate_fallbacks_total", outcome=outcome)
