"""Application tests for product registration and live line resolution."""

import json

from orderflow.catalogue.lookup import resolve_line
from orderflow.catalogue.product import Product
from orderflow.catalogue.registration import RegisterProduct, stock_product
from protean import current_domain


def _register(**overrides):
    kwargs = {"name": "Tee", "sku": "TEE", "price": 80000}
    kwargs.update(overrides)
    return current_domain.process(RegisterProduct(**kwargs), asynchronous=False)


class TestRegisterProduct:
    def test_persists_product(self):
        product_id = _register()
        product = current_domain.repository_for(Product).get(product_id)
        assert product.name == "Tee"
        assert product.price == 80000

    def test_persists_variants_from_json(self):
        product_id = _register(variants=json.dumps([{"sku": "TEE-M", "options": "Size: M", "price": 82000}]))
        product = current_domain.repository_for(Product).get(product_id)
        assert product.variant("TEE-M").price == 82000

    def test_uses_supplied_identity(self):
        assert _register(product_id="prod-tee") == "prod-tee"

    def test_stock_product_registers_each_variant(self, inventory):
        product_id = _register(variants=json.dumps([{"sku": "TEE-M"}, {"sku": "TEE-L"}]))
        product = current_domain.repository_for(Product).get(product_id)
        stock_product(inventory, product, {"TEE-M": 4})
        assert inventory.level(product_id, "TEE-M").quantity == 4
        assert inventory.level(product_id, "TEE-L").quantity == 0
        assert inventory.level(product_id, "TEE-L").is_available is False

    def test_stock_product_without_variants(self, inventory):
        product_id = _register(track_inventory=False)
        product = current_domain.repository_for(Product).get(product_id)
        stock_product(inventory, product, {None: 0})
        unit = inventory.level(product_id)
        assert unit.track_inventory is False
        assert unit.is_available is True


class TestResolveLine:
    def test_resolves_live_price(self):
        product_id = _register()
        resolution = resolve_line(product_id)
        assert resolution.unit_price == 80000
        assert resolution.is_active is True
        assert resolution.sku == "TEE"

    def test_resolves_variant(self):
        product_id = _register(variants=json.dumps([{"sku": "TEE-M", "options": "Size: M", "price": 82000}]))
        resolution = resolve_line(product_id, "TEE-M")
        assert resolution.unit_price == 82000
        assert resolution.options == "Size: M"
        assert resolution.sku == "TEE-M"

    def test_inactive_variant(self):
        product_id = _register(variants=json.dumps([{"sku": "TEE-M", "is_active": False}]))
        assert resolve_line(product_id, "TEE-M").is_active is False

    def test_missing_product(self):
        assert resolve_line("ghost") is None

    def test_missing_variant(self):
        product_id = _register()
        assert resolve_line(product_id, "TEE-XXL") is None

    def test_archived_product_is_inactive(self):
        product_id = _register()
        repo = current_domain.repository_for(Product)
        product = repo.get(product_id)
        product.archive()
        repo.add(product)
        assert resolve_line(product_id).is_active is False
