"""
Domain logic for the Shipping Service.

Value types, input validation, package estimation, and the rate
aggregation used by both the rate-check API and cart pricing.
"""

from .models import MailClass, PackageDescriptor, RateOption, RateQuote

__all__ = [
    "MailClass",
    "PackageDescriptor",
    "RateOption",
    "RateQuote",
]
