"""
Input validation shared by every rate and address entry point.

All checks raise ``ValidationError`` naming the offending field and never
touch the carrier.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, Optional

from shared.errors import ValidationError

from service_shipping.app.domain.models import PackageDescriptor

ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")

MIN_WEIGHT_LB = 0.1
MAX_WEIGHT_LB = 70.0
MIN_DIMENSION_IN = 1.0
MAX_DIMENSION_IN = 108.0
MAX_LENGTH_PLUS_GIRTH_IN = 130.0


def validate_zip(value: Any, field: str = "destinationZip") -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)
    text = str(value).strip()
    if not ZIP_PATTERN.match(text):
        raise ValidationError(
            "Invalid ZIP code format. Must be 5 digits or ZIP+4 format (e.g., 12345 or 12345-6789)",
            field=field,
        )
    return text


def strip_zip_plus4(zip_code: str) -> str:
    return zip_code.split("-")[0].strip()


def coerce_number(value: Any, field: str) -> float:
    """Coerce caller input to a finite float."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a valid number", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a valid number", field=field) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a valid number", field=field)
    return number


def validate_package(package: PackageDescriptor) -> PackageDescriptor:
    """Check the carrier's weight, dimension and girth limits."""
    weight = coerce_number(package.weight, "weight")
    if weight < MIN_WEIGHT_LB or weight > MAX_WEIGHT_LB:
        raise ValidationError(
            f"Weight must be between {MIN_WEIGHT_LB:g} and {MAX_WEIGHT_LB:g} pounds",
            field="weight",
        )

    dimensions: Dict[str, float] = {}
    for name in ("length", "width", "height"):
        dimension = coerce_number(getattr(package, name), f"dimensions.{name}")
        if dimension < MIN_DIMENSION_IN or dimension > MAX_DIMENSION_IN:
            raise ValidationError(
                f"Each dimension must be between {MIN_DIMENSION_IN:g} and {MAX_DIMENSION_IN:g} inches",
                field=f"dimensions.{name}",
            )
        dimensions[name] = dimension

    checked = PackageDescriptor(weight=weight, **dimensions)
    if checked.length_plus_girth > MAX_LENGTH_PLUS_GIRTH_IN:
        raise ValidationError(
            f"Combined length and girth cannot exceed {MAX_LENGTH_PLUS_GIRTH_IN:g} inches",
            field="dimensions",
            details={"length_plus_girth": checked.length_plus_girth},
        )
    return checked


def package_from_request(weight: Any, dimensions: Optional[Dict[str, Any]],
                         default: PackageDescriptor) -> PackageDescriptor:
    """Build a package from a rate-check body; missing parts use ``default``."""
    package_weight = default.weight if weight is None else coerce_number(weight, "weight")
    if not dimensions:
        return PackageDescriptor(
            weight=package_weight,
            length=default.length,
            width=default.width,
            height=default.height,
        )
    if not isinstance(dimensions, dict):
        raise ValidationError("Dimensions must be an object", field="dimensions")
    return PackageDescriptor(
        weight=package_weight,
        length=coerce_number(dimensions.get("length"), "dimensions.length"),
        width=coerce_number(dimensions.get("width"), "dimensions.width"),
        height=coerce_number(dimensions.get("height"), "dimensions.height"),
    )


def require_fields(body: Dict[str, Any], *fields: str) -> None:
    missing = [name for name in fields if not body.get(name)]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
            field=missing[0],
            details={"missing": missing},
        )
