"""Tests for the Product read model."""

import pytest
from orderflow.catalogue.product import Product, ProductStatus
from protean.exceptions import ValidationError


def _tee():
    return Product.register(
        name="Tee",
        sku="TEE",
        price=80000,
        variants=[
            {"sku": "TEE-M", "options": "Size: M"},
            {"sku": "TEE-XL", "options": "Size: XL", "price": 90000},
        ],
    )


class TestRegistration:
    def test_defaults(self):
        product = Product.register(name="Mug", sku="MUG", price=50000)
        assert product.status == ProductStatus.ACTIVE.value
        assert product.track_inventory is True
        assert product._events[-1].__class__.__name__ == "ProductRegistered"

    def test_explicit_identity(self):
        product = Product.register(name="Mug", sku="MUG", price=50000, product_id="prod-mug")
        assert product.id == "prod-mug"

    def test_variants(self):
        product = _tee()
        assert {v.sku for v in product.variants} == {"TEE-M", "TEE-XL"}
        assert product._events[-1].variant_count == 2


class TestPricing:
    def test_variant_without_price_inherits(self):
        assert _tee().unit_price("TEE-M") == 80000

    def test_variant_price_override(self):
        assert _tee().unit_price("TEE-XL") == 90000

    def test_change_product_price(self):
        product = _tee()
        product.change_price(85000)
        assert product.unit_price() == 85000
        assert product.unit_price("TEE-M") == 85000
        assert product._events[-1].previous_price == 80000

    def test_change_variant_price(self):
        product = _tee()
        product.change_price(95000, variant_sku="TEE-XL")
        assert product.unit_price("TEE-XL") == 95000
        assert product.unit_price() == 80000

    def test_change_unknown_variant(self):
        with pytest.raises(ValidationError):
            _tee().change_price(1, variant_sku="TEE-XXL")

    def test_archive(self):
        product = _tee()
        product.archive()
        assert product.status == ProductStatus.ARCHIVED.value
