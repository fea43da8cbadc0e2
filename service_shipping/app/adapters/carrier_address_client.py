"""
Carrier address standardization client.
"""

from typing import Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import AddressValidationError, CarrierApiError
from shared.logging import get_logger

from service_shipping.app.adapters.carrier_auth_client import CarrierAuthClient
from service_shipping.app.adapters.carrier_http import client_kwargs, upstream_error_message
from service_shipping.app.domain.models import StandardizedAddress
from service_shipping.app.domain.validation import strip_zip_plus4

ADDRESS_PATH = "/addresses/v3/address"


class CarrierAddressClient:
    """Pass-through to the carrier address endpoint; no caching, no retries."""

    def __init__(
        self,
        base_url: str,
        auth_client: CarrierAuthClient,
        *,
        timeout: float = 10.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.auth_client = auth_client
        self.timeout = timeout
        self.logger = get_logger("shipping.carrier_address")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=(httpx.TransportError, CarrierApiError),
            name="carrier_addresses",
        )
        self._transport = transport

    async def validate(
        self,
        street_address: str,
        city: Optional[str],
        state: str,
        zip_code: str,
    ) -> StandardizedAddress:
        """Standardize an address. The carrier only accepts 5-digit ZIP codes."""
        params: Dict[str, str] = {
            "streetAddress": street_address,
            "state": state,
        }
        if city:
            params["city"] = city
        if zip_code:
            params["ZIPCode"] = strip_zip_plus4(zip_code)

        token = await self.auth_client.get_token()
        try:
            response = await self.circuit_breaker.call(self._get, params, token.value)
        except CircuitBreakerOpenException as e:
            raise CarrierApiError(
                "Carrier address service temporarily unavailable",
                status_code=503,
                details={"circuit_breaker": self.circuit_breaker.name},
            ) from e
        except CarrierApiError as e:
            self.logger.error("Carrier address service failed", status_code=e.status_code, error=e.message)
            raise
        except httpx.HTTPError as e:
            self.logger.error("Carrier address request failed", error=str(e))
            raise CarrierApiError(f"Carrier address request failed: {e}") from e

        if response.status_code == 401:
            self.auth_client.invalidate()

        if not response.is_success:
            message = upstream_error_message(response)
            self.logger.warning(
                "Carrier rejected address",
                status_code=response.status_code,
                error=message,
                state=state,
                zip_code=params.get("ZIPCode"),
            )
            raise AddressValidationError(
                f"USPS Address Validation Error: {message}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AddressValidationError("USPS Address Validation Error: malformed response") from e
        if not isinstance(payload, dict) or not isinstance(payload.get("address"), dict):
            raise AddressValidationError("USPS Address Validation Error: response has no address")

        address = StandardizedAddress.from_carrier(payload)
        self.logger.info(
            "Address standardized",
            state=address.state,
            zip_code=address.zip_code,
            dpv_confirmation=address.dpv_confirmation,
        )
        return address

    async def _get(self, params: Dict[str, str], access_token: str) -> httpx.Response:
        async with httpx.AsyncClient(**client_kwargs(self.base_url, self.timeout, self._transport)) as client:
            response = await client.get(
                ADDRESS_PATH,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        # An outage is not an address problem
        if response.status_code >= 500:
            raise CarrierApiError(
                f"USPS API Error: {upstream_error_message(response)}",
                status_code=response.status_code,
            )
        return response
