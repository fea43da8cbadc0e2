"""
Carrier pricing client: one rate search per call, no retries.
"""

import time
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import CarrierApiError
from shared.logging import get_logger

from service_shipping.app.adapters.carrier_auth_client import CarrierAuthClient
from service_shipping.app.adapters.carrier_http import client_kwargs, upstream_error_message
from service_shipping.app.domain.models import (
    DEFAULT_ESTIMATED_DELIVERY,
    MailClass,
    RateOption,
    RateQuoteRequest,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

RATES_PATH = "/prices/v3/total-rates/search"

_CENT = Decimal("0.01")


def dollars_to_cents(amount: Any) -> int:
    """Convert a carrier dollar amount (e.g. ``8.5``) to integer cents, rounding half up."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid price {amount!r}") from None
    if not value.is_finite():
        raise ValueError(f"Invalid price {amount!r}")
    return int(value.quantize(_CENT, rounding=ROUND_HALF_UP) * 100)


def _display_name(service_id: str, rate: Dict[str, Any]) -> str:
    try:
        return MailClass.parse(service_id).display_name
    except ValueError:
        return rate.get("productName") or rate.get("description") or service_id


def parse_rate_options(payload: Any, requested: Optional[MailClass] = None) -> List[RateOption]:
    """Map a total-rates response to ``RateOption`` values.

    Each upstream ``rateOption`` becomes one option priced at its
    ``totalBasePrice``. When a mail class was requested only the first usable
    option is kept and it is labelled with that class.
    """
    if not isinstance(payload, dict):
        raise ValueError("rate response is not a JSON object")

    options: List[RateOption] = []
    for rate_option in payload.get("rateOptions") or []:
        if not isinstance(rate_option, dict):
            continue
        rates = rate_option.get("rates") or []
        first = rates[0] if rates and isinstance(rates[0], dict) else {}

        service_id = requested.value if requested is not None else first.get("mailClass")
        price = rate_option.get("totalBasePrice", first.get("price"))
        if not service_id or price is None:
            continue

        price_cents = dollars_to_cents(price)
        if price_cents < 0:
            continue

        options.append(RateOption(
            service_id=service_id,
            display_name=_display_name(service_id, first),
            price_cents=price_cents,
            estimated_delivery=(
                rate_option.get("estimatedDelivery")
                or first.get("estimatedDelivery")
                or DEFAULT_ESTIMATED_DELIVERY
            ),
        ))
        if requested is not None:
            break
    return options


class CarrierRateClient:
    """Typed wrapper over the carrier total-rates search endpoint."""

    def __init__(
        self,
        base_url: str,
        auth_client: CarrierAuthClient,
        *,
        timeout: float = 10.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional["MetricsCollector"] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        today: Callable[[], date] = date.today,
    ):
        self.base_url = base_url
        self.auth_client = auth_client
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("shipping.carrier_rates")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=(httpx.TransportError, CarrierApiError),
            name="carrier_rates",
        )
        self._transport = transport
        self._today = today

    async def quote(self, request: RateQuoteRequest) -> List[RateOption]:
        """Issue one rate search. Raises ``AuthError`` or ``CarrierApiError``."""
        token = await self.auth_client.get_token()
        payload = request.to_payload(today=self._today())
        operation = "rates" if request.mail_class is None else "rates_by_class"

        start = time.perf_counter()
        try:
            response = await self.circuit_breaker.call(self._post, payload, token.value)
        except CircuitBreakerOpenException as e:
            self._record(operation, "circuit_open", start)
            raise CarrierApiError(
                "Carrier rate service temporarily unavailable",
                status_code=503,
                details={"circuit_breaker": self.circuit_breaker.name},
            ) from e
        except CarrierApiError:
            self._record(operation, "error", start)
            raise
        except httpx.TimeoutException as e:
            self._record(operation, "timeout", start)
            raise CarrierApiError("Carrier rate request timed out") from e
        except httpx.HTTPError as e:
            self._record(operation, "error", start)
            raise CarrierApiError(f"Carrier rate request failed: {e}") from e

        if response.status_code == 401:
            self.auth_client.invalidate()

        if not response.is_success:
            self._record(operation, "error", start)
            raise CarrierApiError(
                f"USPS API Error: {upstream_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            options = parse_rate_options(response.json(), request.mail_class)
        except ValueError as e:
            self._record(operation, "malformed", start)
            raise CarrierApiError(f"Malformed carrier rate response: {e}", status_code=response.status_code) from e

        self._record(operation, "success", start)
        self.logger.debug(
            "Carrier rates received",
            mail_class=request.mail_class.value if request.mail_class else None,
            option_count=len(options),
        )
        return options

    async def _post(self, payload: Dict[str, Any], access_token: str) -> httpx.Response:
        async with httpx.AsyncClient(**client_kwargs(self.base_url, self.timeout, self._transport)) as client:
            response = await client.post(
                RATES_PATH,
                json=payload,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        # Server-side failures count towards the circuit breaker, client errors do not
        if response.status_code >= 500:
            raise CarrierApiError(
                f"USPS API Error: {upstream_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    def _record(self, operation: str, outcome: str, start: float) -> None:
        if self.metrics is None:
            return
        self.metrics.increment_counter("carrier_requests_total", operation=operation, outcome=outcome)
        self.metrics.observe_histogram(
            "carrier_request_duration_seconds", time.perf_counter() - start, operation=operation
        )
