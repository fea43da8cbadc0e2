"""
OAuth2 client-credentials token client for the carrier API.
"""

import asyncio
import time
from typing import Callable, Optional

import httpx

from shared.errors import AuthError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception

from service_shipping.app.adapters.carrier_http import client_kwargs, upstream_error_message
from service_shipping.app.domain.models import AccessToken

TOKEN_PATH = "/oauth2/v3/token"


class CarrierAuthClient:
    """Acquires and caches the carrier bearer token.

    The token is reused until ``now >= expires_at - safety_margin``. Refreshes
    are single-flight: callers arriving while a refresh is in progress wait
    for it instead of issuing their own token request.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        *,
        safety_margin_seconds: float = 300,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.safety_margin_seconds = safety_margin_seconds
        self.timeout = timeout
        self.logger = get_logger("shipping.carrier_auth")
        self._clock = clock
        self._transport = transport
        self._token: Optional[AccessToken] = None
        self._refresh_lock = asyncio.Lock()

    def _fresh_token(self) -> Optional[AccessToken]:
        token = self._token
        if token is not None and token.is_fresh(self._clock(), self.safety_margin_seconds):
            return token
        return None

    async def get_token(self) -> AccessToken:
        """Return a usable token, fetching a new one when the cached one is near expiry."""
        token = self._fresh_token()
        if token is not None:
            return token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            token = self._fresh_token()
            if token is not None:
                return token

            self._token = await self._fetch_token()
            return self._token

    def invalidate(self) -> None:
        """Forget the cached token, e.g. after the carrier answered 401."""
        self._token = None

    async def _fetch_token(self) -> AccessToken:
        try:
            response = await self._request_token()
        except RetryError as e:
            self.logger.error("Carrier token endpoint unreachable", error=str(e.last_exception))
            raise AuthError(
                "Failed to get carrier access token: token endpoint unreachable",
                details={"error": str(e.last_exception)},
            ) from e

        if not response.is_success:
            message = upstream_error_message(response)
            self.logger.error(
                "Carrier token request rejected",
                status_code=response.status_code,
                error=message,
            )
            raise AuthError(
                f"Failed to get carrier access token: {message}",
                details={"status_code": response.status_code},
            )

        try:
            payload = response.json()
            value = payload["access_token"]
            expires_in = float(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            self.logger.error("Malformed carrier token response", error=str(e))
            raise AuthError("Failed to get carrier access token: malformed token response") from e

        if not isinstance(value, str) or not value:
            raise AuthError("Failed to get carrier access token: empty access token")

        token = AccessToken(value=value, expires_at=self._clock() + expires_in)
        self.logger.info("Carrier access token refreshed", expires_in=expires_in)
        return token

    @retry_on_exception((httpx.TransportError,), config=RetryConfig(max_attempts=3, base_delay=0.5, max_delay=2.0))
    async def _request_token(self) -> httpx.Response:
        async with httpx.AsyncClient(**client_kwargs(self.base_url, self.timeout, self._transport)) as client:
            return await client.post(
                TOKEN_PATH,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
