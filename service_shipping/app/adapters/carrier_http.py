"""
Helpers shared by the carrier HTTP adapters.
"""

from typing import Any, Dict, Optional

import httpx

CARRIER_BASE_URLS: Dict[str, str] = {
    "production": "https://apis.usps.com",
    "testing": "https://apis-tem.usps.com",
}


def carrier_base_url(environment: str) -> str:
    """Resolve the carrier API host for ``production`` or ``testing`` (sandbox)."""
    try:
        return CARRIER_BASE_URLS[environment]
    except KeyError:
        raise ValueError(
            f"Unknown carrier environment {environment!r}; expected one of {sorted(CARRIER_BASE_URLS)}"
        ) from None


def upstream_error_message(response: httpx.Response) -> str:
    """Pull the carrier's ``error.message`` out of a failed response."""
    try:
        body: Any = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("error_description"):
            return str(body["error_description"])

    text = response.text.strip()
    if text:
        return text[:200]
    return response.reason_phrase or f"HTTP {response.status_code}"


def client_kwargs(base_url: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport]) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"base_url": base_url, "timeout": timeout}
    if transport is not None:
        kwargs["transport"] = transport
    return kwargs
