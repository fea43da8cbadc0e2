"""
Unit tests for the package estimator.
"""

import pytest

from service_shipping.app.domain.models import DEFAULT_PACKAGE, LineItem, PackageDescriptor
from service_shipping.app.domain.package_estimator import PackageEstimator


class TestPackageEstimator:
    """Test cases for PackageEstimator."""

    @pytest.fixture
    def estimator(self):
        return PackageEstimator()

    def test_empty_cart_gets_default_small_package(self, estimator):
        assert estimator.estimate([]) == PackageDescriptor(weight=0.5, length=10, width=8, height=2)
        assert estimator.estimate([]) == DEFAULT_PACKAGE

    def test_weight_sums_quantity(self, estimator):
        package = estimator.estimate([
            LineItem(quantity=2, weight=1.25),
            LineItem(quantity=1, weight=0.5),
        ])

        assert package.weight == 3.0

    def test_unknown_weight_defaults_to_half_pound(self, estimator):
        assert estimator.estimate([LineItem(quantity=3)]).weight == 1.5

    def test_weight_floor(self, estimator):
        assert estimator.estimate([LineItem(weight=0.01)]).weight == 0.1

    def test_takes_longest_and_widest_and_stacks_heights(self, estimator):
        package = estimator.estimate([
            LineItem(quantity=1, length=14, width=6, height=3),
            LineItem(quantity=2, length=9, width=11, height=2),
        ])

        assert package.length == 14
        assert package.width == 11
        assert package.height == 7

    def test_small_items_keep_their_footprint(self, estimator):
        package = estimator.estimate([LineItem(quantity=2, length=4, width=4, height=1)])

        assert (package.length, package.width, package.height) == (4, 4, 2)

    def test_height_is_capped(self, estimator):
        package = estimator.estimate([LineItem(quantity=30, height=2)])

        assert package.height == 20

    def test_zero_quantity_items_are_ignored(self, estimator):
        assert estimator.estimate([LineItem(quantity=0, weight=50)]) == DEFAULT_PACKAGE

    def test_reads_variant_and_product_attributes(self, estimator):
        item = {
            "quantity": 2,
            "variant": {
                "weight": "1.5",
                "product": {"length": 12, "width": 9, "height": 3, "weight": 9},
            },
        }

        package = estimator.estimate([item])

        assert package.weight == 3.0
        assert package.length == 12
        assert package.width == 9
        assert package.height == 6
