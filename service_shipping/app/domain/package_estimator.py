"""
Derive a shippable package from cart line items.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Union

from service_shipping.app.domain.models import DEFAULT_PACKAGE, LineItem, PackageDescriptor


class PackageEstimator:
    """Combine line items into a single package.

    Items are assumed to sit side by side and stack upwards: the package takes
    the longest and widest item, and the sum of item heights.
    """

    def __init__(
        self,
        *,
        default_item_weight: float = 0.5,
        default_item_length: float = 10.0,
        default_item_width: float = 8.0,
        default_item_height: float = 2.0,
        min_weight: float = 0.1,
        min_length: float = 1.0,
        min_width: float = 1.0,
        max_height: float = 20.0,
        empty_package: PackageDescriptor = DEFAULT_PACKAGE,
    ) -> None:
        self.default_item_weight = default_item_weight
        self.default_item_length = default_item_length
        self.default_item_width = default_item_width
        self.default_item_height = default_item_height
        self.min_weight = min_weight
        self.min_length = min_length
        self.min_width = min_width
        self.max_height = max_height
        self.empty_package = empty_package

    def estimate(self, line_items: Iterable[Union[LineItem, Dict[str, Any]]]) -> PackageDescriptor:
        items = [
            item if isinstance(item, LineItem) else LineItem.from_cart_item(item)
            for item in line_items
        ]
        items = [item for item in items if item.quantity > 0]
        if not items:
            return self.empty_package

        total_weight = 0.0
        max_length = 0.0
        max_width = 0.0
        total_height = 0.0

        for item in items:
            total_weight += (item.weight or self.default_item_weight) * item.quantity
            max_length = max(max_length, item.length or self.default_item_length)
            max_width = max(max_width, item.width or self.default_item_width)
            total_height += (item.height or self.default_item_height) * item.quantity

        return PackageDescriptor(
            weight=round(max(total_weight, self.min_weight), 3),
            length=max(max_length, self.min_length),
            width=max(max_width, self.min_width),
            height=max(min(total_height, self.max_height), 1.0),
        )
