import os
from pathlib import Path

import pytest
from protean.integrations.pytest import DomainFixture


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Select the domain.toml overlay before anything imports the domain."""
    os.environ["PROTEAN_ENV"] = session.config.option.env


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def orderflow_bed():
    from orderflow.domain import orderflow

    bed = DomainFixture(orderflow)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(orderflow_bed):
    with orderflow_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def run_around_tests(_ctx):
    """Fixture to automatically cleanup infrastructure after every test"""
    yield

    from protean import current_domain

    # Clear all databases
    for _, provider in current_domain.providers.items():
        provider._data_reset()

    # Drain event stores
    current_domain.event_store.store._data_reset()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
@pytest.fixture()
def settings():
    from orderflow.config import Settings

    return Settings(
        environment="test",
        payment_methods=("cod", "razorpay"),
        shipping_method="flat",
        shipping_flat_rate=5000,
        api_tokens={"customer-token": "cust-001", "other-token": "cust-002", "admin-token": "admin-001:admin"},
    )


@pytest.fixture()
def razorpay():
    from orderflow.gateway import FakeGateway

    return FakeGateway(name="razorpay", key_secret="rzp-key-secret", webhook_secret="rzp-webhook-secret")


@pytest.fixture()
def gateways(razorpay):
    from orderflow.gateway import CashOnDeliveryGateway, GatewayRegistry

    return GatewayRegistry([CashOnDeliveryGateway(), razorpay])


@pytest.fixture()
def inventory():
    from orderflow.inventory.coordinator import InventoryCoordinator
    from orderflow.inventory.ledger import InMemoryStockLedger

    return InventoryCoordinator(InMemoryStockLedger())


@pytest.fixture()
def payment_ledger():
    from orderflow.payment.ledger import InMemoryPaymentLedger

    return InMemoryPaymentLedger()


@pytest.fixture()
def notifier():
    from orderflow.collaborators import RecordingNotifier

    return RecordingNotifier()


@pytest.fixture()
def workflow(settings, gateways, inventory, payment_ledger, notifier):
    from orderflow.workflow.orchestrator import CheckoutWorkflow
    from orderflow.workflow.pricing import PricingPolicy

    return CheckoutWorkflow(
        gateways=gateways,
        inventory=inventory,
        payments=payment_ledger,
        notifier=notifier,
        pricing=PricingPolicy.from_settings(settings),
    )


@pytest.fixture()
def customer():
    from orderflow.collaborators import Identity

    return Identity(user_id="cust-001")


@pytest.fixture()
def other_customer():
    from orderflow.collaborators import Identity

    return Identity(user_id="cust-002")


@pytest.fixture()
def admin():
    from orderflow.collaborators import Identity

    return Identity(user_id="admin-001", is_admin=True)


# ---------------------------------------------------------------------------
# Catalogue and cart helpers
# ---------------------------------------------------------------------------
class Shop:
    """Seeds products, stock and carts the way the API would."""

    def __init__(self, inventory):
        self.inventory = inventory
        self._counter = 0

    def product(self, name="Widget", price=50000, stock=10, variants=None, track_inventory=True):
        import json

        from orderflow.catalogue.product import Product
        from orderflow.catalogue.registration import RegisterProduct, stock_product
        from protean import current_domain

        self._counter += 1
        variants = variants or []
        product_id = current_domain.process(
            RegisterProduct(
                name=name,
                sku=f"SKU-{self._counter:03d}",
                price=price,
                track_inventory=track_inventory,
                variants=json.dumps([{k: v for k, v in variant.items() if k != "stock"} for variant in variants]),
            ),
            asynchronous=False,
        )
        product = current_domain.repository_for(Product).get(product_id)
        levels = {variant["sku"]: variant.get("stock", 0) for variant in variants} if variants else {None: stock}
        stock_product(self.inventory, product, levels)
        return product_id

    def cart(self, lines=(), customer_id="cust-001"):
        """``lines`` is a sequence of (product_id, quantity) or (product_id, quantity, variant_sku)."""
        from orderflow.cart.items import AddToCart, CreateCart
        from protean import current_domain

        cart_id = current_domain.process(CreateCart(customer_id=customer_id), asynchronous=False)
        for line in lines:
            product_id, quantity, *rest = line
            current_domain.process(
                AddToCart(
                    cart_id=cart_id,
                    product_id=product_id,
                    quantity=quantity,
                    variant_sku=rest[0] if rest else None,
                ),
                asynchronous=False,
            )
        return cart_id

    def level(self, product_id, variant_sku=None):
        unit = self.inventory.level(product_id, variant_sku)
        return unit.quantity if unit is not None else None

    @staticmethod
    def address(**overrides):
        address = {
            "first_name": "Asha",
            "last_name": "Rao",
            "email": "asha@example.com",
            "phone": "9999999999",
            "street": "12 MG Road",
            "city": "Bengaluru",
            "state": "KA",
            "postal_code": "560001",
        }
        address.update(overrides)
        return address


@pytest.fixture()
def shop(inventory):
    return Shop(inventory)


@pytest.fixture()
def online_checkout(workflow, shop, customer):
    """An online (razorpay) checkout totalling ₹10000 (item ₹9950 plus ₹50 shipping), stock 5."""
    from types import SimpleNamespace

    product_id = shop.product(name="Headphones", price=995_000, stock=5)
    cart_id = shop.cart([(product_id, 1)])
    result = workflow.checkout(cart_id, customer, shop.address(), "razorpay")
    return SimpleNamespace(
        order=result.order,
        payment=result.payment,
        intent=result.intent,
        cart_id=cart_id,
        product_id=product_id,
    )
