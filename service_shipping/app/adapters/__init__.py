"""
Adapters package for the Shipping Service.

Contains HTTP client wrappers for the carrier API (OAuth token, rate
search, address standardization). These adapters encapsulate:

- Base URLs and request shapes
- Token handling and circuit breakers
- Error handling that maps to shared errors
- Dollar to cent conversion of carrier prices

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .carrier_address_client import CarrierAddressClient
from .carrier_auth_client import CarrierAuthClient
from .carrier_http import carrier_base_url
from .carrier_rate_client import CarrierRateClient

__all__ = [
    "CarrierAddressClient",
    "CarrierAuthClient",
    "CarrierRateClient",
    "carrier_base_url",
]
