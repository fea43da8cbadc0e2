"""
Commerce-platform facing fulfillment provider: the mail class catalog and
per-cart shipping prices.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from shared.errors import RateUnavailableError, ValidationError
from shared.logging import get_logger

from service_shipping.app.caching.rate_cache import make_cache_key
from service_shipping.app.domain.models import CartSnapshot, MailClass
from service_shipping.app.domain.package_estimator import PackageEstimator
from service_shipping.app.domain.rate_aggregator import RateAggregator
from service_shipping.app.domain.validation import validate_zip


class FulfillmentProvider:
    """Prices a cart for one chosen mail class."""

    def __init__(
        self,
        aggregator: RateAggregator,
        estimator: PackageEstimator,
        origin_zip: str,
        default_mail_class: Optional[str] = None,
    ):
        self.aggregator = aggregator
        self.estimator = estimator
        self.origin_zip = origin_zip
        self.default_mail_class = default_mail_class
        self.logger = get_logger("shipping.fulfillment")

    @staticmethod
    def list_options() -> List[Dict[str, Any]]:
        return [
            {
                "id": mail_class.option_id,
                "name": mail_class.display_name,
                "data": {"mailClass": mail_class.value},
            }
            for mail_class in MailClass
        ]

    def _resolve_mail_class(self, mail_class: Optional[Any]) -> MailClass:
        requested = mail_class or self.default_mail_class
        if not requested:
            raise ValidationError("Mail class is required for USPS shipping", field="mailClass")
        try:
            return MailClass.parse(requested)
        except ValueError:
            raise ValidationError(f"Unknown mail class: {requested}", field="mailClass") from None

    async def calculate_price(self, mail_class: Optional[Any], cart: CartSnapshot) -> Dict[str, Any]:
        """Shipping price in cents for ``cart`` using ``mail_class``.

        Rates are fetched once per cart and destination; selecting another
        mail class for the same cart is served from the rate cache.
        """
        selected = self._resolve_mail_class(mail_class)
        if not cart.postal_code:
            raise ValidationError(
                "Shipping address with postal code is required",
                field="shipping_address.postal_code",
            )
        postal_code = validate_zip(cart.postal_code, "shipping_address.postal_code")

        package = self.estimator.estimate(cart.items)
        cache_key = make_cache_key(self.origin_zip, postal_code, cart.id or package.fingerprint())
        rates = await self.aggregator.get_rates(package, self.origin_zip, postal_code, cache_key)

        rate = next((rate for rate in rates if rate.service_id == selected.value), None)
        if rate is None:
            self.logger.warning(
                "No rate found for mail class",
                mail_class=selected.value,
                available=[r.service_id for r in rates],
                cart_id=cart.id,
            )
            raise RateUnavailableError(
                f"No rate available for {selected.value}",
                details={"mail_class": selected.value},
            )

        self.logger.info(
            "Calculated shipping price",
            mail_class=selected.value,
            price_cents=rate.price_cents,
            cart_id=cart.id,
        )
        return {
            "calculated_amount": rate.price_cents,
            "is_calculated_price_tax_inclusive": False,
        }
