"""
Value types exchanged between the shipping service components.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from shared.errors import ValidationError


class MailClass(str, Enum):
    """Carrier mail classes the service can quote."""

    PRIORITY_MAIL = "PRIORITY_MAIL"
    PRIORITY_MAIL_EXPRESS = "PRIORITY_MAIL_EXPRESS"
    USPS_GROUND_ADVANTAGE = "USPS_GROUND_ADVANTAGE"
    FIRST_CLASS_PACKAGE_SERVICE = "FIRST-CLASS_PACKAGE_SERVICE"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def option_id(self) -> str:
        return _OPTION_IDS[self]

    @classmethod
    def parse(cls, value: Any) -> "MailClass":
        """Resolve a mail class from its value, name or fulfillment option id."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for mail_class in cls:
            if text in (mail_class.value, mail_class.name, mail_class.option_id):
                return mail_class
        raise ValueError(f"Unknown mail class: {value!r}")


_DISPLAY_NAMES = {
    MailClass.PRIORITY_MAIL: "USPS Priority Mail",
    MailClass.PRIORITY_MAIL_EXPRESS: "USPS Priority Mail Express",
    MailClass.USPS_GROUND_ADVANTAGE: "USPS Ground Advantage",
    MailClass.FIRST_CLASS_PACKAGE_SERVICE: "USPS First-Class Package Service",
}

_OPTION_IDS = {
    MailClass.PRIORITY_MAIL: "usps-priority",
    MailClass.PRIORITY_MAIL_EXPRESS: "usps-priority-express",
    MailClass.USPS_GROUND_ADVANTAGE: "usps-ground-advantage",
    MailClass.FIRST_CLASS_PACKAGE_SERVICE: "usps-first-class",
}

DEFAULT_FALLBACK_CLASSES: Tuple[MailClass, ...] = (
    MailClass.PRIORITY_MAIL,
    MailClass.PRIORITY_MAIL_EXPRESS,
    MailClass.USPS_GROUND_ADVANTAGE,
)

DEFAULT_ESTIMATED_DELIVERY = "2-5 business days"


class PriceType(str, Enum):
    RETAIL = "RETAIL"
    COMMERCIAL = "COMMERCIAL"
    CONTRACT = "CONTRACT"


@dataclass(frozen=True)
class PackageDescriptor:
    """Physical package: weight in pounds, dimensions in inches."""

    weight: float
    length: float
    width: float
    height: float

    @property
    def girth(self) -> float:
        return 2 * (self.width + self.height)

    @property
    def length_plus_girth(self) -> float:
        return self.length + self.girth

    def fingerprint(self) -> str:
        """Stable identity used when no cart id is available for caching."""
        return f"{self.weight:g}x{self.length:g}x{self.width:g}x{self.height:g}"

    def to_dict(self) -> Dict[str, float]:
        return {
            "weight": self.weight,
            "length": self.length,
            "width": self.width,
            "height": self.height,
        }


DEFAULT_PACKAGE = PackageDescriptor(weight=0.5, length=10.0, width=8.0, height=2.0)


@dataclass(frozen=True)
class RateQuoteRequest:
    """A single rate search against the carrier pricing endpoint."""

    origin_zip: str
    destination_zip: str
    package: PackageDescriptor
    mail_class: Optional[MailClass] = None
    price_type: PriceType = PriceType.RETAIL
    mailing_date: Optional[date] = None

    def with_mail_class(self, mail_class: MailClass) -> "RateQuoteRequest":
        return RateQuoteRequest(
            origin_zip=self.origin_zip,
            destination_zip=self.destination_zip,
            package=self.package,
            mail_class=mail_class,
            price_type=self.price_type,
            mailing_date=self.mailing_date,
        )

    def to_payload(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Render the carrier JSON body."""
        mailing_date = self.mailing_date or today or date.today()
        payload: Dict[str, Any] = {
            "originZIPCode": self.origin_zip,
            "destinationZIPCode": self.destination_zip,
            "weight": float(self.package.weight),
            "length": float(self.package.length),
            "width": float(self.package.width),
            "height": float(self.package.height),
            "priceType": self.price_type.value,
            "mailingDate": mailing_date.isoformat(),
        }
        if self.mail_class is not None:
            payload["mailClass"] = self.mail_class.value
        return payload


@dataclass(frozen=True)
class RateOption:
    """One priced shipping service. Prices are integer cents."""

    service_id: str
    display_name: str
    price_cents: int
    estimated_delivery: str = DEFAULT_ESTIMATED_DELIVERY

    def __post_init__(self):
        if self.price_cents < 0:
            raise ValueError("price_cents must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serviceId": self.service_id,
            "displayName": self.display_name,
            "priceCents": self.price_cents,
            "estimatedDelivery": self.estimated_delivery,
        }


@dataclass(frozen=True)
class CachedRateSet:
    """Immutable cache entry; stale entries are replaced, never patched."""

    key: str
    rates: Tuple[RateOption, ...]
    fetched_at: float
    degraded: bool = False


@dataclass(frozen=True)
class RateQuote:
    """Aggregated rates plus how they were obtained."""

    rates: Tuple[RateOption, ...]
    source: str
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rates": [rate.to_dict() for rate in self.rates],
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float

    def is_fresh(self, now: float, safety_margin: float) -> bool:
        return now < self.expires_at - safety_margin


@dataclass(frozen=True)
class StandardizedAddress:
    """Carrier-standardized postal address."""

    street_address: str
    city: str
    state: str
    zip_code: str
    secondary_address: Optional[str] = None
    zip_plus4: Optional[str] = None
    firm: Optional[str] = None
    delivery_point: Optional[str] = None
    carrier_route: Optional[str] = None
    dpv_confirmation: Optional[str] = None
    business: Optional[bool] = None

    @classmethod
    def from_carrier(cls, payload: Dict[str, Any]) -> "StandardizedAddress":
        address = payload.get("address") or {}
        info = payload.get("additionalInfo") or {}
        business = info.get("business")
        return cls(
            street_address=address.get("streetAddress", ""),
            secondary_address=address.get("secondaryAddress"),
            city=address.get("city", ""),
            state=address.get("state", ""),
            zip_code=address.get("ZIPCode", ""),
            zip_plus4=address.get("ZIPPlus4"),
            firm=payload.get("firm"),
            delivery_point=info.get("deliveryPoint"),
            carrier_route=info.get("carrierRoute"),
            dpv_confirmation=info.get("DPVConfirmation"),
            business=None if business is None else business == "Y",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "streetAddress": self.street_address,
            "secondaryAddress": self.secondary_address,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "zipPlus4": self.zip_plus4,
            "firm": self.firm,
            "deliveryPoint": self.delivery_point,
            "carrierRoute": self.carrier_route,
            "dpvConfirmation": self.dpv_confirmation,
            "business": self.business,
        }


@dataclass(frozen=True)
class LineItem:
    """Cart line item as far as packaging is concerned."""

    quantity: int = 1
    weight: Optional[float] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None

    @classmethod
    def from_cart_item(cls, item: Dict[str, Any]) -> "LineItem":
        """Read an item, preferring variant attributes over product ones.

        Raises ``ValidationError`` for items that are not objects or carry a
        quantity that is not a whole number.
        """
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", field="items")
        variant = _as_dict(item.get("variant"))
        product = _as_dict(variant.get("product")) or _as_dict(item.get("product"))

        def pick(attribute: str) -> Optional[float]:
            for source in (item, variant, product):
                value = source.get(attribute)
                if value not in (None, "", 0):
                    return _to_float(value)
            return None

        return cls(
            quantity=_parse_quantity(item.get("quantity", 1)),
            weight=pick("weight"),
            length=pick("length"),
            width=pick("width"),
            height=pick("height"),
        )


@dataclass(frozen=True)
class CartSnapshot:
    """The parts of a commerce cart needed to price shipping."""

    id: str
    postal_code: Optional[str]
    items: List[LineItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CartSnapshot":
        address = _as_dict(payload.get("shipping_address") or payload.get("shippingAddress"))
        postal_code = address.get("postal_code") or address.get("postalCode")
        items = payload.get("items") or []
        if not isinstance(items, list):
            raise ValidationError("Items must be a list", field="items")
        return cls(
            id=str(payload.get("id") or payload.get("cartId") or ""),
            postal_code=postal_code,
            items=[LineItem.from_cart_item(item) for item in items],
        )


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _parse_quantity(value: Any) -> int:
    if value is None:
        return 1
    if isinstance(value, bool):
        raise ValidationError("Item quantity must be a whole number", field="items.quantity")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Item quantity must be a whole number", field="items.quantity") from None
    if not math.isfinite(number) or number != int(number):
        raise ValidationError("Item quantity must be a whole number", field="items.quantity")
    return int(number)


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
