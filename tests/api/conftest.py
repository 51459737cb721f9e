import pytest
from fastapi.testclient import TestClient

CUSTOMER = {"Authorization": "Bearer customer-token"}
OTHER = {"Authorization": "Bearer other-token"}
ADMIN = {"Authorization": "Bearer admin-token"}

ADDRESS = {
    "first_name": "Asha",
    "last_name": "Rao",
    "email": "asha@example.com",
    "phone": "9999999999",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
}


class StorefrontClient:
    """Drives the API the way a storefront would."""

    def __init__(self, client):
        self.client = client

    def product(self, name="Widget", price=50000, stock=10, **extra):
        response = self.client.post(
            "/products",
            json={"name": name, "sku": name.upper(), "price": price, "stock": stock, **extra},
            headers=ADMIN,
        )
        assert response.status_code == 201, response.text
        return response.json()["product_id"]

    def cart(self, *lines, headers=CUSTOMER):
        response = self.client.post("/carts", json={}, headers=headers)
        assert response.status_code == 201, response.text
        cart_id = response.json()["cart_id"]
        for product_id, quantity in lines:
            added = self.client.post(
                f"/carts/{cart_id}/items",
                json={"product_id": product_id, "quantity": quantity},
                headers=headers,
            )
            assert added.status_code == 201, added.text
        return cart_id

    def checkout(self, cart_id, method="cod", headers=CUSTOMER):
        return self.client.post(
            "/checkout",
            json={"cart_id": cart_id, "shipping_address": ADDRESS, "payment_method": method},
            headers=headers,
        )


@pytest.fixture()
def client(settings, workflow):
    from orderflow.app import create_app
    from orderflow.collaborators import StaticTokenResolver

    app = create_app(
        settings,
        workflow=workflow,
        identity_resolver=StaticTokenResolver(settings.api_tokens),
        init_domain=False,
    )
    return TestClient(app)


@pytest.fixture()
def store(client):
    return StorefrontClient(client)
